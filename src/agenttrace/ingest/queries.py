"""Read-only projections of the store used by dashboards and the CLI."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence

from pydantic import BaseModel, ConfigDict, Field

from ..models import Anomaly, Edge, LLMPayload, Node, Trace
from ..storage import StorageBackend


class TraceDetail(BaseModel):
    """A trace together with its runs, edges and anomalies."""

    model_config = ConfigDict(extra="ignore")

    trace: Trace
    nodes: list[Node] = Field(default_factory=list)
    edges: list[Edge] = Field(default_factory=list)
    anomalies: list[Anomaly] = Field(default_factory=list)


class RunCost(BaseModel):
    run_id: str
    name: str
    type: str
    cost: float
    tokens: int = 0


class CostBreakdown(BaseModel):
    """Where the money in a trace went."""

    total_cost: float = 0.0
    total_tokens: int = 0
    priced_runs: int = 0
    average_cost_per_run: float = 0.0
    cost_by_type: dict[str, float] = Field(default_factory=dict)
    cost_by_model: dict[str, float] = Field(default_factory=dict)
    top_runs: list[RunCost] = Field(default_factory=list)


async def list_traces(
    store: StorageBackend,
    project_name: str | None = None,
    *,
    limit: int | None = 50,
    offset: int | None = None,
) -> list[Trace]:
    return await store.list_traces(project_name=project_name, limit=limit, offset=offset)


async def get_trace_detail(store: StorageBackend, trace_id: str) -> TraceDetail | None:
    trace = await store.get_trace(trace_id)
    if trace is None:
        return None
    return TraceDetail(
        trace=trace,
        nodes=await store.list_nodes_by_trace(trace_id),
        edges=await store.list_edges_by_trace(trace_id),
        anomalies=await store.list_anomalies_by_trace(trace_id),
    )


def cost_breakdown(nodes: Sequence[Node], *, top: int = 10) -> CostBreakdown:
    """Summarise run costs: totals, per run type, per LLM model, and the ``top``
    most expensive runs (highest first, ties by start time).

    The average is taken over every run in ``nodes``, priced or not.
    """
    by_type: dict[str, float] = defaultdict(float)
    by_model: dict[str, float] = defaultdict(float)
    priced: list[Node] = []
    total_tokens = 0
    for node in nodes:
        if node.tokens is not None:
            total_tokens += node.tokens.total
        if not node.cost:
            continue
        priced.append(node)
        by_type[node.type] += node.cost
        if isinstance(node.data, LLMPayload):
            by_model[node.data.model or "unknown"] += node.cost

    total_cost = sum(by_type.values())
    priced.sort(key=lambda node: (-(node.cost or 0.0), node.start_time, node.run_id))
    return CostBreakdown(
        total_cost=total_cost,
        total_tokens=total_tokens,
        priced_runs=len(priced),
        average_cost_per_run=total_cost / len(nodes) if nodes else 0.0,
        cost_by_type=dict(sorted(by_type.items())),
        cost_by_model=dict(sorted(by_model.items())),
        top_runs=[_run_cost(node) for node in priced[:top]],
    )


def _run_cost(node: Node) -> RunCost:
    if isinstance(node.data, LLMPayload):
        name = node.data.model or node.run_id
    else:
        name = node.tool_name or node.run_id
    return RunCost(
        run_id=node.run_id,
        name=name,
        type=node.type,
        cost=node.cost or 0.0,
        tokens=node.tokens.total if node.tokens is not None else 0,
    )
