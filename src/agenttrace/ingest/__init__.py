"""Storage-side ingestion: applying event batches and reading traces back."""

from .processor import EventProcessor
from .queries import (
    CostBreakdown,
    RunCost,
    TraceDetail,
    cost_breakdown,
    get_trace_detail,
    list_traces,
)

__all__ = [
    "CostBreakdown",
    "EventProcessor",
    "RunCost",
    "TraceDetail",
    "cost_breakdown",
    "get_trace_detail",
    "list_traces",
]
