"""Edge model."""

from __future__ import annotations

from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


class Edge(BaseModel):
    """Directed flow relationship between two runs of the same trace."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=lambda: uuid4().hex)
    trace_id: str
    from_run: str
    to_run: str
    created_at: int | None = None
