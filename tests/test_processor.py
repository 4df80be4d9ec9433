from __future__ import annotations

import pytest

from agenttrace.ingest import EventProcessor, get_trace_detail, list_traces
from agenttrace.models import (
    ChainEndEvent,
    ChainStartEvent,
    ErrorEvent,
    LLMEndEvent,
    LLMPayload,
    LLMStartEvent,
    NodeStatus,
    Severity,
    TokenUsage,
    ToolEndEvent,
    ToolPayload,
    ToolStartEvent,
    TraceStatus,
)
from agenttrace.serializers import encode_batch
from agenttrace.storage import SQLiteStore


def _tool_round_trip(
    run_id: str, start: int, *, tool_input: str = "paris", parent: str | None = "agent"
) -> list[ToolStartEvent | ToolEndEvent]:
    return [
        ToolStartEvent(
            trace_id="t1",
            run_id=run_id,
            parent_run_id=parent,
            timestamp=start,
            tool_name="search",
            input=tool_input,
        ),
        ToolEndEvent(
            trace_id="t1",
            run_id=run_id,
            timestamp=start + 50,
            output="sunny",
            cost=0.001,
        ),
    ]


@pytest.mark.asyncio
async def test_event_flow_builds_graph_and_closes_trace(store: SQLiteStore) -> None:
    processor = EventProcessor(store)
    events = [
        ChainStartEvent(
            trace_id="t1",
            run_id="agent",
            timestamp=1_000,
            chain_name="planner",
            inputs={"question": "weather in paris?"},
            metadata={"projectName": "travel"},
        ),
        *_tool_round_trip("s1", 1_100, tool_input="berlin"),
        *_tool_round_trip("s2", 1_200, tool_input="rome"),
        ChainEndEvent(trace_id="t1", run_id="agent", timestamp=1_500, outputs={"answer": "sunny"}),
    ]

    assert await processor.process_events(events) == len(events)

    detail = await get_trace_detail(store, "t1")
    assert detail is not None
    trace = detail.trace
    assert trace.project_name == "travel"
    assert trace.status == TraceStatus.COMPLETE
    assert trace.end_time == 1_500
    assert trace.total_nodes == 3
    assert trace.total_cost == pytest.approx(0.002)

    assert [node.run_id for node in detail.nodes] == ["agent", "s1", "s2"]
    assert all(node.status == NodeStatus.COMPLETE for node in detail.nodes)
    assert {(edge.from_run, edge.to_run) for edge in detail.edges} == {
        ("agent", "s1"),
        ("agent", "s2"),
    }
    search = detail.nodes[1]
    assert search.parent_run_id == "agent"
    assert search.latency == 50
    assert isinstance(search.data, ToolPayload)
    assert search.data.input == "berlin"
    assert search.data.output == "sunny"
    assert detail.anomalies == []


@pytest.mark.asyncio
async def test_repeated_tool_calls_raise_loop_anomaly(store: SQLiteStore) -> None:
    processor = EventProcessor(store)
    await processor.process_event(
        ChainStartEvent(trace_id="t1", run_id="agent", timestamp=1_000, chain_name="planner")
    )

    raised = []
    for index, run_id in enumerate(["s1", "s2", "s3"]):
        start, end = _tool_round_trip(run_id, 1_100 + index * 100, tool_input=" Paris")
        await processor.process_event(start)
        raised.append(await processor.process_event(end))

    assert raised[0] == [] and raised[1] == []
    assert len(raised[2]) == 1
    loop = raised[2][0]
    assert loop.type == "loop"
    assert loop.severity == Severity.HIGH
    assert loop.nodes == ["s1", "s2", "s3"]
    assert await store.list_anomalies_by_trace("t1") == [loop]

    trace = await store.get_trace("t1")
    assert trace is not None
    assert trace.status == TraceStatus.RUNNING


@pytest.mark.asyncio
async def test_llm_cost_spike_is_raised_on_completion(store: SQLiteStore) -> None:
    processor = EventProcessor(store)
    results = []
    for index, cost in enumerate([0.01, 0.01, 0.05]):
        run_id = f"llm{index}"
        start = 1_000 + index * 1_000
        await processor.process_event(
            LLMStartEvent(
                trace_id="t1",
                run_id=run_id,
                timestamp=start,
                model="gpt-4o",
                prompts=["Summarize the itinerary"],
            )
        )
        results.append(
            await processor.process_event(
                LLMEndEvent(
                    trace_id="t1",
                    run_id=run_id,
                    timestamp=start + 400,
                    response="done",
                    tokens=TokenUsage(prompt=100, completion=20, total=120),
                    cost=cost,
                    latency=390,
                )
            )
        )

    assert results[0] == [] and results[1] == []
    spike = results[2][0]
    assert spike.type == "cost_spike"
    assert spike.severity == Severity.CRITICAL
    assert spike.metadata is not None
    assert spike.metadata["percentIncrease"] == 400

    node = await store.get_node_by_run_id("llm2")
    assert node is not None
    assert node.latency == 390
    assert node.tokens == TokenUsage(prompt=100, completion=20, total=120)
    assert isinstance(node.data, LLMPayload)
    assert node.data.response == "done"
    assert node.data.model == "gpt-4o"


@pytest.mark.asyncio
async def test_root_error_marks_trace_errored(store: SQLiteStore) -> None:
    processor = EventProcessor(store)
    await processor.process_events(
        [
            LLMStartEvent(trace_id="t1", run_id="r1", timestamp=1_000, model="gpt-4o"),
            ErrorEvent(
                trace_id="t1",
                run_id="r1",
                timestamp=1_300,
                message="rate limited",
                stack="Traceback: ...",
            ),
        ]
    )

    node = await store.get_node_by_run_id("r1")
    assert node is not None
    assert node.status == NodeStatus.ERROR
    assert node.error == "rate limited\nTraceback: ..."
    assert node.end_time == 1_300

    trace = await store.get_trace("t1")
    assert trace is not None
    assert trace.status == TraceStatus.ERROR
    assert trace.end_time == 1_300


@pytest.mark.asyncio
async def test_child_error_does_not_fail_trace(store: SQLiteStore) -> None:
    processor = EventProcessor(store)
    start, _ = _tool_round_trip("s1", 1_100)
    await processor.process_events(
        [
            ChainStartEvent(trace_id="t1", run_id="agent", timestamp=1_000),
            start,
            ErrorEvent(trace_id="t1", run_id="s1", timestamp=1_150, message="timeout"),
            ChainEndEvent(trace_id="t1", run_id="agent", timestamp=1_400),
        ]
    )

    trace = await store.get_trace("t1")
    assert trace is not None
    assert trace.status == TraceStatus.COMPLETE


@pytest.mark.asyncio
async def test_end_without_start_is_ignored(store: SQLiteStore) -> None:
    processor = EventProcessor(store)
    orphan = ToolEndEvent(trace_id="t1", run_id="ghost", timestamp=2_000, output="x")

    assert await processor.process_event(orphan) == []
    assert await store.get_trace("t1") is None
    assert await store.get_node_by_run_id("ghost") is None


@pytest.mark.asyncio
async def test_second_end_for_finished_run_is_ignored(store: SQLiteStore) -> None:
    processor = EventProcessor(store)
    start, end = _tool_round_trip("s1", 1_000, parent=None)
    await processor.process_events([start, end])

    late_error = ErrorEvent(trace_id="t1", run_id="s1", timestamp=5_000, message="late")
    await processor.process_event(late_error)

    node = await store.get_node_by_run_id("s1")
    assert node is not None
    assert node.status == NodeStatus.COMPLETE
    assert node.error is None


@pytest.mark.asyncio
async def test_unknown_parent_is_recorded_as_root(store: SQLiteStore) -> None:
    processor = EventProcessor(store)
    start, end = _tool_round_trip("s1", 1_000, parent="missing-parent")
    await processor.process_events([start, end])

    node = await store.get_node_by_run_id("s1")
    assert node is not None
    assert node.parent_run_id is None
    assert await store.list_edges_by_trace("t1") == []


@pytest.mark.asyncio
async def test_duplicate_start_is_skipped_without_aborting_batch(store: SQLiteStore) -> None:
    processor = EventProcessor(store)
    start, end = _tool_round_trip("s1", 1_000, parent=None)

    applied = await processor.process_events([start, start, end])

    assert applied == 2
    node = await store.get_node_by_run_id("s1")
    assert node is not None
    assert node.status == NodeStatus.COMPLETE


@pytest.mark.asyncio
async def test_end_timestamp_before_start_is_clamped(store: SQLiteStore) -> None:
    processor = EventProcessor(store)
    await processor.process_events(
        [
            ToolStartEvent(trace_id="t1", run_id="s1", timestamp=2_000, tool_name="search"),
            ToolEndEvent(trace_id="t1", run_id="s1", timestamp=1_500),
        ]
    )

    node = await store.get_node_by_run_id("s1")
    assert node is not None
    assert node.end_time == 2_000
    assert node.latency == 0


@pytest.mark.asyncio
async def test_process_batch_accepts_wire_payload(store: SQLiteStore) -> None:
    processor = EventProcessor(store, default_project="fallback")
    start, end = _tool_round_trip("s1", 1_000, parent=None)

    assert await processor.process_batch(encode_batch([start, end])) == 2

    traces = await list_traces(store)
    assert [trace.project_name for trace in traces] == ["fallback"]
    assert traces[0].status == TraceStatus.COMPLETE


@pytest.mark.asyncio
async def test_malformed_batch_is_dropped(store: SQLiteStore) -> None:
    processor = EventProcessor(store)

    assert await processor.process_batch(b"not json") == 0
    assert await processor.process_batch('[{"eventType": "tool_start", "runId": "r1"}]') == 0
    assert await processor.process_batch('{"eventType": "tool_start"}') == 0
    assert await list_traces(store) == []
