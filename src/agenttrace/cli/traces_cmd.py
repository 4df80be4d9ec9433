"""Traces subcommand: list stored traces, newest first."""

from __future__ import annotations

import asyncio
import json
import sys
from datetime import UTC, datetime
from pathlib import Path

from rich.console import Console
from rich.table import Table

from ..ingest import list_traces
from ..models import Trace
from ..storage import SQLiteStore


def run_traces(
    db_path: Path,
    *,
    project: str | None,
    limit: int,
    offset: int,
    as_json: bool,
) -> int:
    if not db_path.exists():
        print(f"Error: database not found: {db_path}", file=sys.stderr)
        return 1

    traces, total = asyncio.run(_load(db_path, project, limit, offset))

    if as_json:
        payload = {
            "total": total,
            "traces": [trace.model_dump(mode="json") for trace in traces],
        }
        print(json.dumps(payload, ensure_ascii=True, sort_keys=True))
        return 0

    table = Table(title=f"Traces ({len(traces)} of {total})")
    for column in ("ID", "Project", "Status", "Started", "Runs", "Cost"):
        table.add_column(column)
    for trace in traces:
        started = datetime.fromtimestamp(trace.start_time / 1000, tz=UTC)
        table.add_row(
            trace.id,
            trace.project_name,
            trace.status.value,
            started.strftime("%Y-%m-%d %H:%M:%S"),
            str(trace.total_nodes),
            f"${trace.total_cost:.4f}",
        )
    Console(width=120).print(table)
    return 0


async def _load(
    db_path: Path, project: str | None, limit: int, offset: int
) -> tuple[list[Trace], int]:
    async with SQLiteStore(db_path) as store:
        traces = await list_traces(store, project, limit=limit, offset=offset)
        total = await store.count_traces(project)
    return traces, total
