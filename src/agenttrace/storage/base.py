"""Storage backend abstractions."""

from __future__ import annotations

from typing import Protocol

from ..models import Anomaly, Edge, Node, NodePayload, NodeStatus, TokenUsage, Trace, TraceStatus


class StorageBackend(Protocol):
    """Protocol for persisting traces, runs, edges and anomalies.

    Every operation is a coroutine. Writes raise ``DuplicateKeyError``,
    ``NotFoundError`` or ``ConstraintViolationError`` rather than silently
    accepting bad data.
    """

    async def create_trace(
        self,
        trace_id: str,
        project_name: str,
        start_time: int,
        metadata: dict[str, object] | None = None,
    ) -> Trace: ...

    async def update_trace(
        self,
        trace_id: str,
        *,
        end_time: int | None = None,
        status: TraceStatus | None = None,
        total_cost: float | None = None,
        total_nodes: int | None = None,
    ) -> None: ...

    async def get_trace(self, trace_id: str) -> Trace | None: ...

    async def list_traces(
        self,
        project_name: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[Trace]: ...

    async def delete_trace(self, trace_id: str) -> None: ...

    async def create_node(self, node: Node, *, link_parent: bool = False) -> Node: ...

    async def update_node(
        self,
        run_id: str,
        *,
        status: NodeStatus | None = None,
        end_time: int | None = None,
        cost: float | None = None,
        tokens: TokenUsage | None = None,
        latency: int | None = None,
        error: str | None = None,
        data: NodePayload | None = None,
    ) -> None: ...

    async def get_node_by_run_id(self, run_id: str) -> Node | None: ...

    async def list_nodes_by_trace(self, trace_id: str) -> list[Node]: ...

    async def create_edge(self, edge: Edge) -> Edge: ...

    async def list_edges_by_trace(self, trace_id: str) -> list[Edge]: ...

    async def create_anomaly(self, anomaly: Anomaly) -> Anomaly: ...

    async def list_anomalies_by_trace(self, trace_id: str) -> list[Anomaly]: ...
