"""Trace model — one top-level recorded execution."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


class TraceStatus(StrEnum):
    RUNNING = "running"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self is not TraceStatus.RUNNING


class Trace(BaseModel):
    """Root record of an agent invocation. Times are epoch milliseconds."""

    model_config = ConfigDict(extra="ignore")

    id: str
    project_name: str = "default"
    start_time: int
    end_time: int | None = None
    status: TraceStatus = TraceStatus.RUNNING
    total_cost: float = 0.0
    total_nodes: int = 0
    metadata: dict[str, object] = Field(default_factory=dict)
    created_at: int | None = None
    updated_at: int | None = None

    @computed_field(return_type=int | None)
    @property
    def duration_ms(self) -> int | None:
        if self.end_time is None:
            return None
        return self.end_time - self.start_time

    @model_validator(mode="after")
    def validate_time_order(self) -> Trace:
        if self.end_time is not None and self.end_time < self.start_time:
            raise ValueError(
                f"Trace end_time {self.end_time} precedes start_time {self.start_time}"
            )
        return self


def check_status_transition(current: TraceStatus, new: TraceStatus) -> bool:
    """Return True when ``current -> new`` is a legal trace status change."""
    if current == new:
        return True
    return current == TraceStatus.RUNNING
