"""Table definitions and SQLite connection setup."""

from __future__ import annotations

from typing import Any

from sqlalchemy import (
    JSON,
    Column,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    event,
)
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import AsyncEngine

metadata = MetaData()

traces = Table(
    "traces",
    metadata,
    Column("id", String, primary_key=True),
    Column("project_name", String, nullable=False),
    Column("start_time", Integer, nullable=False),
    Column("end_time", Integer),
    Column("status", String, nullable=False, default="running"),
    Column("total_cost", Float, nullable=False, default=0.0),
    Column("total_nodes", Integer, nullable=False, default=0),
    Column("metadata", JSON),
    Column("created_at", Integer, nullable=False),
    Column("updated_at", Integer, nullable=False),
    Index("idx_traces_project", "project_name"),
    Index("idx_traces_status", "status"),
    Index("idx_traces_created", "created_at"),
)

nodes = Table(
    "nodes",
    metadata,
    Column("id", String, primary_key=True),
    Column("trace_id", String, ForeignKey("traces.id", ondelete="CASCADE"), nullable=False),
    Column("run_id", String, nullable=False, unique=True),
    Column("parent_run_id", String),
    Column("type", String, nullable=False),
    Column("status", String, nullable=False, default="running"),
    Column("start_time", Integer, nullable=False),
    Column("end_time", Integer),
    Column("data", JSON, nullable=False),
    Column("cost", Float),
    Column("tokens", JSON),
    Column("latency", Integer),
    Column("error", Text),
    Index("idx_nodes_trace", "trace_id"),
    Index("idx_nodes_parent", "parent_run_id"),
    Index("idx_nodes_type", "type"),
    Index("idx_nodes_start_time", "start_time"),
)

edges = Table(
    "edges",
    metadata,
    Column("id", String, primary_key=True),
    Column("trace_id", String, ForeignKey("traces.id", ondelete="CASCADE"), nullable=False),
    Column("from_run", String, ForeignKey("nodes.run_id", ondelete="CASCADE"), nullable=False),
    Column("to_run", String, ForeignKey("nodes.run_id", ondelete="CASCADE"), nullable=False),
    Column("created_at", Integer, nullable=False),
    Index("idx_edges_trace", "trace_id"),
    Index("idx_edges_from", "from_run"),
    Index("idx_edges_to", "to_run"),
)

anomalies = Table(
    "anomalies",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("trace_id", String, ForeignKey("traces.id", ondelete="CASCADE"), nullable=False),
    Column("type", String, nullable=False),
    Column("severity", String, nullable=False),
    Column("message", Text, nullable=False),
    Column("nodes", JSON, nullable=False),
    Column("suggestion", Text),
    Column("metadata", JSON),
    Column("created_at", Integer, nullable=False),
    Index("idx_anomalies_trace", "trace_id"),
    Index("idx_anomalies_type", "type"),
    Index("idx_anomalies_severity", "severity"),
)


def install_sqlite_pragmas(engine: AsyncEngine, *, busy_timeout_ms: int) -> None:
    """Configure every pooled connection for WAL, foreign keys and explicit BEGIN.

    pysqlite's implicit transaction handling is disabled so SQLAlchemy's
    ``begin`` event controls the transaction. Connections carrying the
    ``sqlite_immediate`` execution option start with ``BEGIN IMMEDIATE`` and
    take the write lock up front.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn: Connection) -> None:
        if conn.get_execution_options().get("sqlite_immediate"):
            conn.exec_driver_sql("BEGIN IMMEDIATE")
        else:
            conn.exec_driver_sql("BEGIN")
