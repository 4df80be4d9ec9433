"""SQLite storage backend (SQLAlchemy asyncio over aiosqlite, WAL journal)."""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from pathlib import Path
from types import TracebackType
from typing import Any
from uuid import uuid4

from sqlalchemy import delete, func, insert, literal_column, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.sql.dml import Update

from ..exceptions import (
    ConstraintViolationError,
    DuplicateKeyError,
    NotFoundError,
    StorageError,
)
from ..models import (
    Anomaly,
    Edge,
    Node,
    NodePayload,
    NodeStatus,
    TokenUsage,
    Trace,
    TraceStatus,
    check_status_transition,
)
from .schema import anomalies, edges, install_sqlite_pragmas, metadata, nodes, traces

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class SQLiteStore:
    """Durable store for traces and their runs, edges and anomalies.

    Lifecycle is explicit: ``await store.init()`` opens the engine and
    creates the schema (idempotent), ``await store.close()`` disposes it.
    The store can also be used as an async context manager.

    Reads run in deferred transactions and never wait on writers (WAL).
    Every write runs in a ``BEGIN IMMEDIATE`` transaction so validation
    reads and the write that depends on them see one snapshot; trace
    roll-ups (cost, node count) commit together with the node change.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        busy_timeout: float = 5.0,
        echo: bool = False,
    ) -> None:
        self.path = Path(path)
        self._busy_timeout_ms = int(busy_timeout * 1000)
        self._echo = echo
        self._engine: AsyncEngine | None = None
        self._writer: AsyncEngine | None = None

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    async def init(self) -> None:
        if self._engine is not None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        engine = create_async_engine(f"sqlite+aiosqlite:///{self.path}", echo=self._echo)
        install_sqlite_pragmas(engine, busy_timeout_ms=self._busy_timeout_ms)
        self._engine = engine
        self._writer = engine.execution_options(sqlite_immediate=True)
        async with self._writer.begin() as conn:
            await conn.run_sync(metadata.create_all)
        logger.info("Trace store ready at %s", self.path)

    async def close(self) -> None:
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._writer = None

    async def __aenter__(self) -> SQLiteStore:
        await self.init()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    @property
    def reader(self) -> AsyncEngine:
        if self._engine is None:
            raise StorageError("SQLiteStore is not initialized; call init() first")
        return self._engine

    @property
    def writer(self) -> AsyncEngine:
        if self._writer is None:
            raise StorageError("SQLiteStore is not initialized; call init() first")
        return self._writer

    # ------------------------------------------------------------------
    # traces
    # ------------------------------------------------------------------

    async def create_trace(
        self,
        trace_id: str,
        project_name: str,
        start_time: int,
        metadata: dict[str, object] | None = None,
    ) -> Trace:
        now = _now_ms()
        values: dict[str, Any] = {
            "id": trace_id,
            "project_name": project_name,
            "start_time": start_time,
            "end_time": None,
            "status": TraceStatus.RUNNING.value,
            "total_cost": 0.0,
            "total_nodes": 0,
            "metadata": dict(metadata or {}),
            "created_at": now,
            "updated_at": now,
        }
        try:
            async with self.writer.begin() as conn:
                await conn.execute(insert(traces).values(**values))
        except IntegrityError as exc:
            raise _translate_integrity_error(exc, f"Trace {trace_id!r} already exists") from exc
        return Trace.model_validate(values)

    async def update_trace(
        self,
        trace_id: str,
        *,
        end_time: int | None = None,
        status: TraceStatus | None = None,
        total_cost: float | None = None,
        total_nodes: int | None = None,
    ) -> None:
        values: dict[str, Any] = {}
        if end_time is not None:
            values["end_time"] = end_time
        if status is not None:
            values["status"] = TraceStatus(status).value
        if total_cost is not None:
            values["total_cost"] = total_cost
        if total_nodes is not None:
            values["total_nodes"] = total_nodes
        if not values:
            return

        async with self.writer.begin() as conn:
            row = (
                await conn.execute(
                    select(traces.c.status, traces.c.start_time).where(traces.c.id == trace_id)
                )
            ).first()
            if row is None:
                raise NotFoundError(f"Trace {trace_id!r} not found")
            if status is not None and not check_status_transition(
                TraceStatus(row.status), TraceStatus(status)
            ):
                raise ConstraintViolationError(
                    f"Trace {trace_id!r} cannot move from {row.status!r} to {status!r}"
                )
            if end_time is not None and end_time < row.start_time:
                raise ConstraintViolationError(
                    f"Trace {trace_id!r} end_time {end_time} precedes start_time {row.start_time}"
                )
            values["updated_at"] = _now_ms()
            await conn.execute(update(traces).where(traces.c.id == trace_id).values(**values))

    async def get_trace(self, trace_id: str) -> Trace | None:
        async with self.reader.connect() as conn:
            row = (
                await conn.execute(select(traces).where(traces.c.id == trace_id))
            ).mappings().first()
        return _trace_from_row(row) if row is not None else None

    async def list_traces(
        self,
        project_name: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[Trace]:
        """Return traces newest first, optionally filtered by project and paginated."""
        stmt = select(traces)
        if project_name:
            stmt = stmt.where(traces.c.project_name == project_name)
        stmt = stmt.order_by(traces.c.created_at.desc(), literal_column("traces.rowid").desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset is not None:
            stmt = stmt.offset(offset)
        async with self.reader.connect() as conn:
            rows = (await conn.execute(stmt)).mappings().all()
        return [_trace_from_row(row) for row in rows]

    async def count_traces(self, project_name: str | None = None) -> int:
        stmt = select(func.count()).select_from(traces)
        if project_name:
            stmt = stmt.where(traces.c.project_name == project_name)
        async with self.reader.connect() as conn:
            return int((await conn.execute(stmt)).scalar_one())

    async def refresh_trace_stats(self, trace_id: str) -> Trace:
        """Recompute ``total_cost``/``total_nodes`` from the trace's runs."""
        async with self.writer.begin() as conn:
            result = await conn.execute(_rollup_statement(trace_id))
            if result.rowcount == 0:
                raise NotFoundError(f"Trace {trace_id!r} not found")
            row = (
                await conn.execute(select(traces).where(traces.c.id == trace_id))
            ).mappings().one()
        return _trace_from_row(row)

    async def delete_trace(self, trace_id: str) -> None:
        """Delete a trace; its runs, edges and anomalies go with it."""
        async with self.writer.begin() as conn:
            result = await conn.execute(delete(traces).where(traces.c.id == trace_id))
            if result.rowcount == 0:
                raise NotFoundError(f"Trace {trace_id!r} not found")
        logger.debug("Deleted trace %s", trace_id)

    async def delete_traces_before(self, cutoff_ms: int) -> int:
        """Retention cleanup: delete traces created before ``cutoff_ms``."""
        async with self.writer.begin() as conn:
            result = await conn.execute(delete(traces).where(traces.c.created_at < cutoff_ms))
            removed = int(result.rowcount)
        if removed:
            logger.info("Retention removed %d trace(s) created before %d", removed, cutoff_ms)
        return removed

    # ------------------------------------------------------------------
    # nodes
    # ------------------------------------------------------------------

    async def create_node(self, node: Node, *, link_parent: bool = False) -> Node:
        """Insert a run. With ``link_parent`` the parent->child edge is written
        in the same transaction, so the run never exists without its edge.
        """
        values = _node_to_row(node)
        try:
            async with self.writer.begin() as conn:
                await _require_trace(conn, node.trace_id)
                if node.parent_run_id is not None:
                    parent_trace = (
                        await conn.execute(
                            select(nodes.c.trace_id).where(nodes.c.run_id == node.parent_run_id)
                        )
                    ).scalar_one_or_none()
                    if parent_trace != node.trace_id:
                        raise ConstraintViolationError(
                            f"Parent run {node.parent_run_id!r} is not a node of trace "
                            f"{node.trace_id!r}"
                        )
                await conn.execute(insert(nodes).values(**values))
                if link_parent and node.parent_run_id is not None:
                    await conn.execute(
                        insert(edges).values(
                            id=uuid4().hex,
                            trace_id=node.trace_id,
                            from_run=node.parent_run_id,
                            to_run=node.run_id,
                            created_at=_now_ms(),
                        )
                    )
                await conn.execute(_rollup_statement(node.trace_id))
        except IntegrityError as exc:
            raise _translate_integrity_error(
                exc, f"Run {node.run_id!r} already exists"
            ) from exc
        return node.model_copy(deep=True)

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
    ) -> None:
        """Apply only the provided fields. A finished run is immutable."""
        values: dict[str, Any] = {}
        if status is not None:
            values["status"] = NodeStatus(status).value
        if end_time is not None:
            values["end_time"] = end_time
        if cost is not None:
            values["cost"] = cost
        if tokens is not None:
            values["tokens"] = tokens.model_dump(mode="json")
        if latency is not None:
            values["latency"] = latency
        if error is not None:
            values["error"] = error
        if data is not None:
            values["data"] = data.model_dump(mode="json")
        if not values:
            return

        async with self.writer.begin() as conn:
            row = (
                await conn.execute(
                    select(nodes.c.trace_id, nodes.c.status).where(nodes.c.run_id == run_id)
                )
            ).first()
            if row is None:
                raise NotFoundError(f"Run {run_id!r} not found")
            if NodeStatus(row.status).is_finished:
                raise ConstraintViolationError(
                    f"Run {run_id!r} is already {row.status} and cannot be modified"
                )
            await conn.execute(update(nodes).where(nodes.c.run_id == run_id).values(**values))
            await conn.execute(_rollup_statement(row.trace_id))

    async def get_node_by_run_id(self, run_id: str) -> Node | None:
        async with self.reader.connect() as conn:
            row = (
                await conn.execute(select(nodes).where(nodes.c.run_id == run_id))
            ).mappings().first()
        return _node_from_row(row) if row is not None else None

    async def list_nodes_by_trace(self, trace_id: str) -> list[Node]:
        """Return the trace's runs in ascending start-time order."""
        stmt = (
            select(nodes)
            .where(nodes.c.trace_id == trace_id)
            .order_by(nodes.c.start_time.asc(), literal_column("nodes.rowid").asc())
        )
        async with self.reader.connect() as conn:
            rows = (await conn.execute(stmt)).mappings().all()
        return [_node_from_row(row) for row in rows]

    # ------------------------------------------------------------------
    # edges
    # ------------------------------------------------------------------

    async def create_edge(self, edge: Edge) -> Edge:
        if edge.from_run == edge.to_run:
            raise ConstraintViolationError(
                f"Edge {edge.from_run!r} -> {edge.to_run!r} is a self-loop"
            )
        endpoints = {edge.from_run, edge.to_run}
        created_at = _now_ms()
        try:
            async with self.writer.begin() as conn:
                found = (
                    await conn.execute(
                        select(func.count())
                        .select_from(nodes)
                        .where(nodes.c.trace_id == edge.trace_id, nodes.c.run_id.in_(endpoints))
                    )
                ).scalar_one()
                if found != len(endpoints):
                    raise ConstraintViolationError(
                        f"Edge {edge.from_run!r} -> {edge.to_run!r} references a run "
                        f"outside trace {edge.trace_id!r}"
                    )
                await conn.execute(
                    insert(edges).values(
                        id=edge.id,
                        trace_id=edge.trace_id,
                        from_run=edge.from_run,
                        to_run=edge.to_run,
                        created_at=created_at,
                    )
                )
        except IntegrityError as exc:
            raise _translate_integrity_error(exc, f"Edge {edge.id!r} already exists") from exc
        return edge.model_copy(update={"created_at": created_at})

    async def list_edges_by_trace(self, trace_id: str) -> list[Edge]:
        async with self.reader.connect() as conn:
            rows = (
                await conn.execute(select(edges).where(edges.c.trace_id == trace_id))
            ).mappings().all()
        return [Edge.model_validate(dict(row)) for row in rows]

    # ------------------------------------------------------------------
    # anomalies
    # ------------------------------------------------------------------

    async def create_anomaly(self, anomaly: Anomaly) -> Anomaly:
        """Insert an anomaly; the store assigns ``id`` and ``created_at``."""
        created_at = _now_ms()
        implicated = set(anomaly.nodes)
        try:
            async with self.writer.begin() as conn:
                await _require_trace(conn, anomaly.trace_id)
                if implicated:
                    found = (
                        await conn.execute(
                            select(func.count())
                            .select_from(nodes)
                            .where(
                                nodes.c.trace_id == anomaly.trace_id,
                                nodes.c.run_id.in_(implicated),
                            )
                        )
                    ).scalar_one()
                    if found != len(implicated):
                        raise ConstraintViolationError(
                            f"Anomaly implicates runs outside trace {anomaly.trace_id!r}"
                        )
                result = await conn.execute(
                    insert(anomalies).values(
                        trace_id=anomaly.trace_id,
                        type=anomaly.type,
                        severity=anomaly.severity.value,
                        message=anomaly.message,
                        nodes=list(anomaly.nodes),
                        suggestion=anomaly.suggestion,
                        metadata=anomaly.metadata,
                        created_at=created_at,
                    )
                )
                anomaly_id = result.inserted_primary_key[0]
        except IntegrityError as exc:
            raise _translate_integrity_error(exc, "Anomaly already exists") from exc
        return anomaly.model_copy(update={"id": anomaly_id, "created_at": created_at})

    async def list_anomalies_by_trace(self, trace_id: str) -> list[Anomaly]:
        """Return the trace's anomalies, most recent first."""
        stmt = (
            select(anomalies)
            .where(anomalies.c.trace_id == trace_id)
            .order_by(anomalies.c.created_at.desc(), anomalies.c.id.desc())
        )
        async with self.reader.connect() as conn:
            rows = (await conn.execute(stmt)).mappings().all()
        return [Anomaly.model_validate(dict(row)) for row in rows]


async def _require_trace(conn: AsyncConnection, trace_id: str) -> None:
    exists = (
        await conn.execute(select(traces.c.id).where(traces.c.id == trace_id))
    ).scalar_one_or_none()
    if exists is None:
        raise ConstraintViolationError(f"Trace {trace_id!r} does not exist")


def _rollup_statement(trace_id: str) -> Update:
    total_cost = (
        select(func.coalesce(func.sum(nodes.c.cost), 0.0))
        .where(nodes.c.trace_id == trace_id)
        .scalar_subquery()
    )
    total_nodes = (
        select(func.count()).select_from(nodes).where(nodes.c.trace_id == trace_id).scalar_subquery()
    )
    return (
        update(traces)
        .where(traces.c.id == trace_id)
        .values(total_cost=total_cost, total_nodes=total_nodes, updated_at=_now_ms())
    )


def _translate_integrity_error(exc: IntegrityError, duplicate_message: str) -> StorageError:
    detail = str(exc.orig)
    if "UNIQUE" in detail or "PRIMARY KEY" in detail:
        return DuplicateKeyError(duplicate_message)
    return ConstraintViolationError(f"Constraint failed: {detail}")


def _trace_from_row(row: Mapping[str, Any]) -> Trace:
    values = dict(row)
    values["metadata"] = values.get("metadata") or {}
    return Trace.model_validate(values)


def _node_to_row(node: Node) -> dict[str, Any]:
    return {
        "id": node.id,
        "trace_id": node.trace_id,
        "run_id": node.run_id,
        "parent_run_id": node.parent_run_id,
        "type": node.type,
        "status": NodeStatus(node.status).value,
        "start_time": node.start_time,
        "end_time": node.end_time,
        "data": node.data.model_dump(mode="json"),
        "cost": node.cost,
        "tokens": node.tokens.model_dump(mode="json") if node.tokens is not None else None,
        "latency": node.latency,
        "error": node.error,
    }


def _node_from_row(row: Mapping[str, Any]) -> Node:
    return Node.model_validate(dict(row))
