"""Detection rules: pure functions of a completed run and its trace's runs.

A rule returns an unsaved ``Anomaly`` (no ``id``) when the pattern matches,
or ``None``. Rules never touch storage.
"""

from __future__ import annotations

import json
import math
from collections.abc import Callable, Sequence

from ..models import Anomaly, AnomalyType, Node, NodeType, Severity, ToolPayload

DetectionRule = Callable[[Node, Sequence[Node]], Anomaly | None]

LOOP_WINDOW = 2
LOOP_CRITICAL_SIZE = 5
SPIKE_MIN_SAMPLES = 2
SPIKE_THRESHOLD = 3.0
SPIKE_CRITICAL = 5.0


def normalize_input(value: object) -> str:
    """Canonical form of a tool input for equality checks.

    Non-strings are JSON-encoded; the result is lower-cased with all
    whitespace removed. Empty or missing input normalizes to ``""``.
    """
    if value is None or value == "":
        return ""
    if isinstance(value, str):
        text = value
    else:
        try:
            text = json.dumps(value, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            text = str(value)
    return "".join(text.lower().split())


def detect_loop(node: Node, history: Sequence[Node]) -> Anomaly | None:
    """Flag a tool called again with the same input as its two latest calls."""
    if node.type != NodeType.TOOL:
        return None
    tool_name = node.tool_name
    similar = [
        other
        for other in history
        if other.type == NodeType.TOOL
        and other.tool_name == tool_name
        and other.run_id != node.run_id
    ]
    if len(similar) < LOOP_WINDOW:
        return None

    recent = sorted(similar, key=lambda other: (other.start_time, other.run_id), reverse=True)
    window = recent[:LOOP_WINDOW]
    current = normalize_input(_tool_input(node))
    if any(normalize_input(_tool_input(call)) != current for call in window):
        return None

    loop_nodes = [*reversed(window), node]
    call_count = len(loop_nodes)
    cost_wasted = sum(call.cost or 0.0 for call in loop_nodes)
    severity = Severity.CRITICAL if call_count >= LOOP_CRITICAL_SIZE else Severity.HIGH
    return Anomaly(
        trace_id=node.trace_id,
        type=AnomalyType.LOOP.value,
        severity=severity,
        message=(
            f"Loop detected: {tool_name} called {call_count} times with identical "
            f"parameters. Cost wasted: ${cost_wasted:.4f}"
        ),
        nodes=[call.run_id for call in loop_nodes],
        suggestion="Add a circuit breaker to stop repeated identical tool calls",
        metadata={
            "toolName": tool_name,
            "callCount": call_count,
            "costWasted": cost_wasted,
        },
    )


def detect_cost_spike(node: Node, history: Sequence[Node]) -> Anomaly | None:
    """Flag a run costing at least 3x the mean of same-type runs in the trace."""
    cost = node.cost
    if cost is None or cost <= 0:
        return None
    comparable = [
        other
        for other in history
        if other.type == node.type and other.run_id != node.run_id and other.cost is not None
    ]
    if len(comparable) < SPIKE_MIN_SAMPLES:
        return None

    average = sum(other.cost or 0.0 for other in comparable) / len(comparable)
    # no baseline to compare against when every prior run was free
    if average <= 0:
        return None
    if cost < average * SPIKE_THRESHOLD:
        return None

    percent_increase = _round_half_up((cost / average - 1) * 100)
    severity = Severity.CRITICAL if cost >= average * SPIKE_CRITICAL else Severity.HIGH
    return Anomaly(
        trace_id=node.trace_id,
        type=AnomalyType.COST_SPIKE.value,
        severity=severity,
        message=(
            f"Cost spike detected: this {node.type} call cost ${cost:.4f} "
            f"({percent_increase}% higher than average ${average:.4f})"
        ),
        nodes=[node.run_id],
        suggestion=_spike_suggestion(node, percent_increase),
        metadata={
            "nodeCost": cost,
            "averageCost": average,
            "costDifference": cost - average,
            "percentIncrease": percent_increase,
        },
    )


DEFAULT_RULES: tuple[DetectionRule, ...] = (detect_loop, detect_cost_spike)


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def _tool_input(node: Node) -> object:
    if isinstance(node.data, ToolPayload):
        return node.data.input
    return None


def _spike_suggestion(node: Node, percent_increase: int) -> str | None:
    if node.type != NodeType.LLM:
        return None
    token_count = node.tokens.total if node.tokens is not None else "an unknown number of"
    return (
        f"This LLM call used {token_count} tokens ({percent_increase}% more than average). "
        "Consider:\n"
        "1. Use a cheaper model for this step\n"
        "2. Reduce prompt length\n"
        "3. Set a max_tokens limit"
    )
