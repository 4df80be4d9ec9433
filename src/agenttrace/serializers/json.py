"""JSON codec for wire events and event batches."""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence

from pydantic import BaseModel, ValidationError

from ..exceptions import DecodeError
from ..models.events import TraceEvent, batch_adapter, event_adapter


def event_to_wire(event: BaseModel | Mapping[str, object]) -> dict[str, object]:
    """Return the camelCase wire form of an event.

    Mappings are validated first so malformed producer input fails here
    rather than at the ingestion side.
    """
    if not isinstance(event, BaseModel):
        event = event_adapter.validate_python(dict(event))
    return event.model_dump(mode="json", by_alias=True, exclude_none=True)


def encode_batch(events: Sequence[BaseModel | Mapping[str, object]]) -> str:
    return json.dumps([event_to_wire(event) for event in events], ensure_ascii=False)


def decode_event(payload: str | bytes) -> TraceEvent:
    try:
        return event_adapter.validate_json(payload)
    except ValidationError as exc:
        raise DecodeError(f"Failed to parse trace event: {exc}") from exc


def decode_batch(payload: str | bytes) -> list[TraceEvent]:
    """Parse a JSON array of wire events.

    Raises ``DecodeError`` on invalid JSON, a non-array payload, or any
    event that does not match a known ``eventType`` shape. The batch is
    rejected as a whole.
    """
    try:
        return batch_adapter.validate_json(payload)
    except ValidationError as exc:
        raise DecodeError(f"Failed to parse trace event batch: {exc}") from exc
