from __future__ import annotations

import json

import pytest

from agenttrace.exceptions import DecodeError
from agenttrace.models import ErrorEvent, LLMEndEvent, TokenUsage, ToolStartEvent
from agenttrace.serializers import decode_batch, decode_event, encode_batch, event_to_wire


def test_event_to_wire_uses_camel_case_and_drops_nulls() -> None:
    event = ToolStartEvent(
        event_id="E1",
        trace_id="t1",
        run_id="r1",
        timestamp=1_000,
        tool_name="search",
        input={"q": "paris"},
    )

    wire = event_to_wire(event)

    assert wire == {
        "eventId": "E1",
        "eventType": "tool_start",
        "traceId": "t1",
        "runId": "r1",
        "timestamp": 1_000,
        "metadata": {},
        "toolName": "search",
        "input": {"q": "paris"},
    }


def test_encode_batch_preserves_order() -> None:
    events = [
        ToolStartEvent(event_id=f"E{index}", trace_id="t1", run_id="r1", timestamp=index, tool_name="x")
        for index in range(3)
    ]
    payload = json.loads(encode_batch(events))
    assert [item["eventId"] for item in payload] == ["E0", "E1", "E2"]


def test_decode_batch_selects_event_types() -> None:
    payload = json.dumps(
        [
            {
                "eventType": "llm_end",
                "traceId": "t1",
                "runId": "r1",
                "timestamp": 2_000,
                "tokens": {"prompt": 10, "completion": 5, "total": 15},
                "cost": 0.002,
            },
            {
                "eventType": "error",
                "traceId": "t1",
                "runId": "r2",
                "timestamp": 2_100,
                "error": "boom",
                "stackTrace": "line 1",
            },
        ]
    )

    events = decode_batch(payload)

    assert isinstance(events[0], LLMEndEvent)
    assert events[0].tokens == TokenUsage(prompt=10, completion=5, total=15)
    assert isinstance(events[1], ErrorEvent)
    assert events[1].message == "boom"
    assert events[1].stack == "line 1"


def test_decode_event_accepts_single_object() -> None:
    event = decode_event('{"eventType": "chain_start", "traceId": "t1", "runId": "c1", "timestamp": 5}')
    assert event.event_type == "chain_start"
    assert event.parent_run_id is None


@pytest.mark.parametrize(
    "payload",
    [
        "not json",
        '{"eventType": "tool_start"}',
        '[{"eventType": "unknown", "traceId": "t1", "runId": "r1", "timestamp": 1}]',
        '[{"eventType": "tool_start", "traceId": "t1", "runId": "r1"}]',
    ],
)
def test_decode_batch_rejects_malformed_payloads(payload: str) -> None:
    with pytest.raises(DecodeError):
        decode_batch(payload)


def test_event_to_wire_validates_mappings() -> None:
    with pytest.raises(ValueError):
        event_to_wire({"eventType": "tool_start", "traceId": "t1"})
