"""agenttrace — trace ingestion and anomaly detection for AI agent pipelines.

Instrumented process side:
    from agenttrace import ClientConfig, TraceClient
    with TraceClient(ClientConfig(endpoint="http://localhost:8000")) as client:
        client.send_event(ToolStartEvent(...))

Ingestion side (storage handle is injected, lifecycle is explicit):
    async with SQLiteStore("traces.db") as store:
        processor = EventProcessor(store)
        await processor.process_batch(payload)
"""

from __future__ import annotations

from .detection import AnomalyDetector
from .exceptions import (
    AgentTraceError,
    ConstraintViolationError,
    DecodeError,
    DuplicateKeyError,
    NotFoundError,
    StorageError,
    TransportError,
)
from .ingest import (
    CostBreakdown,
    EventProcessor,
    TraceDetail,
    cost_breakdown,
    get_trace_detail,
    list_traces,
)
from .storage import SQLiteStore, StorageBackend
from .transport import ClientConfig, ConnectionState, TraceClient

__all__ = [
    "AgentTraceError",
    "AnomalyDetector",
    "ClientConfig",
    "ConnectionState",
    "ConstraintViolationError",
    "CostBreakdown",
    "DecodeError",
    "DuplicateKeyError",
    "EventProcessor",
    "NotFoundError",
    "SQLiteStore",
    "StorageBackend",
    "StorageError",
    "TraceClient",
    "TraceDetail",
    "TransportError",
    "cost_breakdown",
    "get_trace_detail",
    "list_traces",
]
