"""Anomaly model and the severity/type enumerations."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class AnomalyType(StrEnum):
    LOOP = "loop"
    COST_SPIKE = "cost_spike"


class Severity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Anomaly(BaseModel):
    """A detected deviation attached to a trace.

    ``id`` and ``created_at`` are assigned by the store on insert. ``type``
    is a plain string so detectors can add kinds beyond ``AnomalyType``.
    """

    model_config = ConfigDict(extra="ignore")

    id: int | None = None
    trace_id: str
    type: str
    severity: Severity
    message: str
    nodes: list[str] = Field(default_factory=list)
    suggestion: str | None = None
    metadata: dict[str, object] | None = None
    created_at: int | None = None
