"""EventProcessor — turns decoded wire events into stored runs and anomalies."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from ..detection import AnomalyDetector
from ..exceptions import DecodeError, DuplicateKeyError, StorageError
from ..models import (
    Anomaly,
    ChainEndEvent,
    ChainPayload,
    ChainStartEvent,
    EndEvent,
    ErrorEvent,
    LLMEndEvent,
    LLMPayload,
    LLMStartEvent,
    Node,
    NodePayload,
    NodeStatus,
    NodeType,
    StartEvent,
    ToolEndEvent,
    ToolPayload,
    ToolStartEvent,
    TraceEvent,
    TraceStatus,
)
from ..serializers import decode_batch
from ..storage import StorageBackend

logger = logging.getLogger(__name__)


class EventProcessor:
    """Correlates start/end/error events into runs and closes finished traces.

    Runs the anomaly detector after every successful completion. The
    processor holds no state of its own; every decision is made against the
    store.
    """

    def __init__(
        self,
        store: StorageBackend,
        detector: AnomalyDetector | None = None,
        *,
        default_project: str = "default",
    ) -> None:
        self.store = store
        self.detector = detector if detector is not None else AnomalyDetector(store)
        self.default_project = default_project

    async def process_batch(self, payload: str | bytes) -> int:
        """Decode and apply one transmitted batch. A malformed batch is dropped."""
        try:
            events = decode_batch(payload)
        except DecodeError as exc:
            logger.warning("Dropping malformed trace batch: %s", exc)
            return 0
        return await self.process_events(events)

    async def process_events(self, events: Iterable[TraceEvent]) -> int:
        """Apply events in order; a storage failure skips only the offending event."""
        processed = 0
        for event in events:
            try:
                await self.process_event(event)
            except StorageError as exc:
                logger.warning(
                    "Failed to apply %s for run %s: %s", event.event_type, event.run_id, exc
                )
                continue
            processed += 1
        return processed

    async def process_event(self, event: TraceEvent) -> list[Anomaly]:
        """Apply one event. Returns anomalies raised by a completion, if any."""
        if isinstance(event, (LLMStartEvent, ToolStartEvent, ChainStartEvent)):
            await self._handle_start(event)
            return []
        if isinstance(event, (LLMEndEvent, ToolEndEvent, ChainEndEvent)):
            return await self._handle_end(event)
        if isinstance(event, ErrorEvent):
            await self._handle_error(event)
            return []
        logger.debug("Ignoring unsupported event %r", event)
        return []

    async def _ensure_trace(self, event: StartEvent) -> None:
        if await self.store.get_trace(event.trace_id) is not None:
            return
        project = event.metadata.get("projectName") or self.default_project
        try:
            await self.store.create_trace(
                event.trace_id,
                project_name=str(project),
                start_time=event.timestamp,
                metadata=event.metadata,
            )
        except DuplicateKeyError:
            return
        logger.info("New trace %s (project %s)", event.trace_id, project)

    async def _handle_start(self, event: StartEvent) -> None:
        await self._ensure_trace(event)

        parent_run_id = event.parent_run_id
        if parent_run_id is not None:
            parent = await self.store.get_node_by_run_id(parent_run_id)
            if parent is None or parent.trace_id != event.trace_id:
                logger.warning(
                    "Run %s names unknown parent %s; recording it as a root run",
                    event.run_id,
                    parent_run_id,
                )
                parent_run_id = None

        node_type, payload = _start_payload(event)
        await self.store.create_node(
            Node(
                trace_id=event.trace_id,
                run_id=event.run_id,
                parent_run_id=parent_run_id,
                type=node_type,
                start_time=event.timestamp,
                data=payload,
            ),
            link_parent=True,
        )
        logger.debug("%s processed: %s", event.event_type, event.run_id)

    async def _handle_end(self, event: EndEvent) -> list[Anomaly]:
        node = await self._open_run(event)
        if node is None:
            return []

        end_time = max(event.timestamp, node.start_time)
        await self.store.update_node(
            node.run_id,
            status=NodeStatus.COMPLETE,
            end_time=end_time,
            cost=event.cost if isinstance(event, (LLMEndEvent, ToolEndEvent)) else None,
            tokens=event.tokens if isinstance(event, LLMEndEvent) else None,
            latency=event.latency if event.latency is not None else end_time - node.start_time,
            data=_end_payload(node.data, event),
        )

        anomalies: list[Anomaly] = []
        completed = await self.store.get_node_by_run_id(node.run_id)
        if completed is not None:
            anomalies = await self.detector.check_node(completed)
        await self._close_trace_if_finished(event.trace_id)
        return anomalies

    async def _handle_error(self, event: ErrorEvent) -> None:
        node = await self._open_run(event)
        if node is None:
            return
        end_time = max(event.timestamp, node.start_time)
        error = event.message if not event.stack else f"{event.message}\n{event.stack}"
        await self.store.update_node(
            node.run_id,
            status=NodeStatus.ERROR,
            end_time=end_time,
            latency=end_time - node.start_time,
            error=error,
        )
        await self._close_trace_if_finished(event.trace_id)

    async def _open_run(self, event: EndEvent | ErrorEvent) -> Node | None:
        node = await self.store.get_node_by_run_id(event.run_id)
        if node is None or node.trace_id != event.trace_id:
            logger.warning("No running node for %s: %s", event.event_type, event.run_id)
            return None
        if node.status.is_finished:
            logger.warning(
                "Ignoring %s for run %s, already %s", event.event_type, event.run_id, node.status
            )
            return None
        return node

    async def _close_trace_if_finished(self, trace_id: str) -> None:
        """Close the trace once none of its runs is still running.

        The trace ends in ``error`` when a root run failed, otherwise
        ``complete``. A closed trace keeps its status; later runs only move
        its roll-ups.
        """
        trace = await self.store.get_trace(trace_id)
        if trace is None or trace.status.is_terminal:
            return
        runs = await self.store.list_nodes_by_trace(trace_id)
        if not runs or any(not run.status.is_finished for run in runs):
            return
        root_failed = any(
            run.status == NodeStatus.ERROR for run in runs if run.parent_run_id is None
        )
        end_times = [run.end_time for run in runs if run.end_time is not None]
        await self.store.update_trace(
            trace_id,
            status=TraceStatus.ERROR if root_failed else TraceStatus.COMPLETE,
            end_time=max([trace.start_time, *end_times]),
        )
        logger.info("Trace %s finished with %d run(s)", trace_id, len(runs))


def _start_payload(event: StartEvent) -> tuple[str, NodePayload]:
    if isinstance(event, LLMStartEvent):
        return NodeType.LLM.value, LLMPayload(
            model=event.model,
            prompts=event.prompts,
            invocation_params=event.invocation_params,
        )
    if isinstance(event, ToolStartEvent):
        return NodeType.TOOL.value, ToolPayload(tool_name=event.tool_name, input=event.input)
    return NodeType.CHAIN.value, ChainPayload(chain_name=event.chain_name, inputs=event.inputs)


def _end_payload(data: NodePayload, event: EndEvent) -> NodePayload | None:
    if isinstance(event, LLMEndEvent) and isinstance(data, LLMPayload):
        return data.model_copy(update={"response": event.response})
    if isinstance(event, ToolEndEvent) and isinstance(data, ToolPayload):
        return data.model_copy(update={"output": event.output})
    if isinstance(event, ChainEndEvent) and isinstance(data, ChainPayload):
        return data.model_copy(update={"outputs": event.outputs})
    return None
