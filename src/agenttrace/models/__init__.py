"""Data models for traces, runs, edges, anomalies and wire events."""

from .anomaly import Anomaly, AnomalyType, Severity
from .edge import Edge
from .events import (
    ChainEndEvent,
    ChainStartEvent,
    EndEvent,
    ErrorEvent,
    LLMEndEvent,
    LLMStartEvent,
    StartEvent,
    ToolEndEvent,
    ToolStartEvent,
    TraceEvent,
)
from .node import (
    ChainPayload,
    GenericPayload,
    LLMPayload,
    Node,
    NodePayload,
    NodeStatus,
    NodeType,
    TokenUsage,
    ToolPayload,
)
from .trace import Trace, TraceStatus, check_status_transition

__all__ = [
    "Anomaly",
    "AnomalyType",
    "ChainEndEvent",
    "ChainPayload",
    "ChainStartEvent",
    "Edge",
    "EndEvent",
    "ErrorEvent",
    "GenericPayload",
    "LLMEndEvent",
    "LLMPayload",
    "LLMStartEvent",
    "Node",
    "NodePayload",
    "NodeStatus",
    "NodeType",
    "Severity",
    "StartEvent",
    "TokenUsage",
    "ToolEndEvent",
    "ToolPayload",
    "ToolStartEvent",
    "Trace",
    "TraceEvent",
    "TraceStatus",
    "check_status_transition",
]
