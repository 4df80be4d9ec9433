from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from agenttrace.cli import main
from agenttrace.ingest import EventProcessor
from agenttrace.models import (
    ChainEndEvent,
    ChainStartEvent,
    ToolEndEvent,
    ToolStartEvent,
)
from agenttrace.storage import SQLiteStore


async def _record(db_path: Path) -> None:
    async with SQLiteStore(db_path) as store:
        processor = EventProcessor(store)
        await processor.process_events(
            [
                ChainStartEvent(
                    trace_id="t1",
                    run_id="agent",
                    timestamp=1_000,
                    chain_name="planner",
                    metadata={"projectName": "travel"},
                ),
                ToolStartEvent(
                    trace_id="t1",
                    run_id="s1",
                    parent_run_id="agent",
                    timestamp=1_100,
                    tool_name="search",
                    input="paris",
                ),
                ToolEndEvent(trace_id="t1", run_id="s1", timestamp=1_300, output="sunny", cost=0.001),
                ChainEndEvent(trace_id="t1", run_id="agent", timestamp=1_500),
                ChainStartEvent(
                    trace_id="t2",
                    run_id="other",
                    timestamp=5_000,
                    metadata={"projectName": "billing"},
                ),
            ]
        )


def _create_db(tmp_path: Path) -> Path:
    db_path = tmp_path / "traces.db"
    asyncio.run(_record(db_path))
    return db_path


def test_cli_inspect_prints_summary_and_tree(
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    db_path = _create_db(tmp_path)
    exit_code = main(["inspect", "--db", str(db_path), "t1", "--verbosity", "minimal"])

    captured = capsys.readouterr()
    assert exit_code == 0
    assert "Trace ID: t1" in captured.out
    assert "Project: travel" in captured.out
    assert "Status: complete" in captured.out
    assert "Duration: 500ms" in captured.out
    assert "Runs: 2" in captured.out
    assert "Edges: 1" in captured.out
    assert "Trace: t1 [travel]" in captured.out
    assert "[tool] search (200ms)" in captured.out
    assert "Cost by run type:\n  - tool: $0.0010" in captured.out
    assert "search (s1): $0.0010" in captured.out


def test_cli_inspect_json_summary_output(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    db_path = _create_db(tmp_path)
    exit_code = main(["inspect", "--db", str(db_path), "t1", "--json"])

    captured = capsys.readouterr()
    payload = json.loads(captured.out)
    assert exit_code == 0
    assert payload["trace_id"] == "t1"
    assert payload["project_name"] == "travel"
    assert payload["duration_ms"] == 500
    assert payload["node_count"] == 2
    assert payload["edge_count"] == 1
    assert payload["status_counts"] == {"complete": 2}
    assert payload["node_type_counts"] == {"chain": 1, "tool": 1}
    assert payload["anomaly_count"] == 0
    assert payload["cost_by_type"] == pytest.approx({"tool": 0.001})
    assert [run["run_id"] for run in payload["top_runs"]] == ["s1"]
    assert payload["top_runs"][0]["name"] == "search"


def test_cli_inspect_missing_trace_exits_nonzero(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    db_path = _create_db(tmp_path)
    exit_code = main(["inspect", "--db", str(db_path), "nope"])

    assert exit_code == 1
    assert "trace not found: nope" in capsys.readouterr().err


def test_cli_missing_database_exits_nonzero(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    exit_code = main(["traces", "--db", str(tmp_path / "absent.db")])

    assert exit_code == 1
    assert "database not found" in capsys.readouterr().err
    assert not (tmp_path / "absent.db").exists()


def test_cli_traces_json_lists_newest_first(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    db_path = _create_db(tmp_path)
    exit_code = main(["traces", "--db", str(db_path), "--json"])

    payload = json.loads(capsys.readouterr().out)
    assert exit_code == 0
    assert payload["total"] == 2
    assert [trace["id"] for trace in payload["traces"]] == ["t2", "t1"]


def test_cli_traces_table_filters_by_project(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    db_path = _create_db(tmp_path)
    exit_code = main(["traces", "--db", str(db_path), "--project", "travel"])

    out = capsys.readouterr().out
    assert exit_code == 0
    assert "Traces (1 of 1)" in out
    assert "t1" in out
    assert "billing" not in out
