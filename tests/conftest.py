from __future__ import annotations

from collections.abc import AsyncIterator
from pathlib import Path

import pytest
import pytest_asyncio

from agenttrace.models import Node, NodeStatus, ToolPayload
from agenttrace.storage import SQLiteStore


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "traces.db"


@pytest_asyncio.fixture
async def store(db_path: Path) -> AsyncIterator[SQLiteStore]:
    async with SQLiteStore(db_path) as opened:
        yield opened


def tool_node(
    trace_id: str,
    run_id: str,
    start_time: int,
    *,
    tool_name: str = "search",
    tool_input: object = "paris",
    cost: float | None = None,
    status: NodeStatus = NodeStatus.COMPLETE,
) -> Node:
    return Node(
        trace_id=trace_id,
        run_id=run_id,
        type="tool",
        status=status,
        start_time=start_time,
        end_time=start_time + 10 if status != NodeStatus.RUNNING else None,
        data=ToolPayload(tool_name=tool_name, input=tool_input),
        cost=cost,
    )


def llm_node(
    trace_id: str,
    run_id: str,
    start_time: int,
    *,
    cost: float | None,
    status: NodeStatus = NodeStatus.COMPLETE,
) -> Node:
    return Node(
        trace_id=trace_id,
        run_id=run_id,
        type="llm",
        status=status,
        start_time=start_time,
        end_time=start_time + 10 if status != NodeStatus.RUNNING else None,
        cost=cost,
    )
