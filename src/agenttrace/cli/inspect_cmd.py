"""Inspect subcommand implementation."""

from __future__ import annotations

import asyncio
import json
import sys
from collections import Counter
from pathlib import Path
from typing import Literal

from ..ingest import TraceDetail, cost_breakdown, get_trace_detail
from ..renderers import render_trace
from ..storage import SQLiteStore

VerbosityArg = Literal["minimal", "standard", "full"]


def run_inspect(
    db_path: Path,
    trace_id: str,
    verbosity: VerbosityArg,
    *,
    as_json: bool,
) -> int:
    if not db_path.exists():
        print(f"Error: database not found: {db_path}", file=sys.stderr)
        return 1

    detail = asyncio.run(_load(db_path, trace_id))
    if detail is None:
        print(f"Error: trace not found: {trace_id}", file=sys.stderr)
        return 1

    if as_json:
        print(json.dumps(_build_summary(detail), ensure_ascii=True, sort_keys=True))
        return 0

    trace = detail.trace
    type_counts = Counter(node.type for node in detail.nodes)
    duration = f"{trace.duration_ms}ms" if trace.duration_ms is not None else "unknown"

    print(f"Trace ID: {trace.id}")
    print(f"Project: {trace.project_name}")
    print(f"Status: {trace.status.value}")
    print(f"Duration: {duration}")
    print(f"Cost: ${trace.total_cost:.4f}")
    print(f"Runs: {len(detail.nodes)}")
    print(f"Edges: {len(detail.edges)}")
    print(f"Anomalies: {len(detail.anomalies)}")
    print("Run type counts:")
    for node_type, count in sorted(type_counts.items()):
        print(f"  - {node_type}: {count}")
    costs = cost_breakdown(detail.nodes, top=3)
    if costs.priced_runs:
        print("Cost by run type:")
        for node_type, cost in costs.cost_by_type.items():
            print(f"  - {node_type}: ${cost:.4f}")
        print("Most expensive runs:")
        for run in costs.top_runs:
            print(f"  - {run.name} ({run.run_id}): ${run.cost:.4f}")
    print()
    print(render_trace(detail, verbosity=verbosity))
    return 0


async def _load(db_path: Path, trace_id: str) -> TraceDetail | None:
    async with SQLiteStore(db_path) as store:
        return await get_trace_detail(store, trace_id)


def _build_summary(detail: TraceDetail) -> dict[str, object]:
    trace = detail.trace
    status_counts = Counter(node.status.value for node in detail.nodes)
    severity_counts = Counter(anomaly.severity.value for anomaly in detail.anomalies)
    costs = cost_breakdown(detail.nodes, top=5)
    return {
        "trace_id": trace.id,
        "project_name": trace.project_name,
        "status": trace.status.value,
        "duration_ms": trace.duration_ms,
        "total_cost": trace.total_cost,
        "node_count": len(detail.nodes),
        "edge_count": len(detail.edges),
        "status_counts": dict(sorted(status_counts.items())),
        "node_type_counts": dict(sorted(Counter(node.type for node in detail.nodes).items())),
        "anomaly_count": len(detail.anomalies),
        "anomaly_severity_counts": dict(sorted(severity_counts.items())),
        "cost_by_type": costs.cost_by_type,
        "top_runs": [run.model_dump() for run in costs.top_runs],
    }
