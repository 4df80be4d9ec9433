"""Rich-based trace console rendering."""

from __future__ import annotations

import json
from collections import defaultdict
from io import StringIO
from typing import Literal

from rich.console import Console
from rich.tree import Tree

from ..ingest.queries import TraceDetail
from ..models import (
    Anomaly,
    ChainPayload,
    GenericPayload,
    LLMPayload,
    Node,
    NodeStatus,
    ToolPayload,
    Trace,
)

Verbosity = Literal["minimal", "standard", "full"]
_MAX_VALUE_LEN = 200


def render_trace(detail: TraceDetail, *, verbosity: Verbosity = "standard") -> str:
    tree = Tree(_trace_label(detail.trace))
    children_by_parent: dict[str | None, list[Node]] = defaultdict(list)
    known_runs = {node.run_id for node in detail.nodes}
    for node in detail.nodes:
        parent = node.parent_run_id if node.parent_run_id in known_runs else None
        children_by_parent[parent].append(node)

    for siblings in children_by_parent.values():
        siblings.sort(key=lambda node: (node.start_time, node.run_id))

    for root in children_by_parent[None]:
        _add_node_branch(tree, root, children_by_parent, verbosity)

    if detail.anomalies and verbosity != "minimal":
        anomaly_branch = tree.add(f"anomalies ({len(detail.anomalies)})")
        for anomaly in detail.anomalies:
            _add_anomaly(anomaly_branch, anomaly, verbosity)

    console = Console(record=True, width=120, markup=False, file=StringIO())
    console.print(tree)
    return console.export_text()


def node_label(node: Node) -> str:
    data = node.data
    if isinstance(data, LLMPayload) and data.model:
        return data.model
    if isinstance(data, ToolPayload):
        return data.tool_name
    if isinstance(data, ChainPayload) and data.chain_name:
        return data.chain_name
    return node.run_id


def _trace_label(trace: Trace) -> str:
    duration = f"{trace.duration_ms}ms" if trace.duration_ms is not None else "ongoing"
    return (
        f"Trace: {trace.id} [{trace.project_name}] ({duration}) "
        f"{trace.status.value}, {trace.total_nodes} runs, ${trace.total_cost:.4f}"
    )


def _add_node_branch(
    parent_tree: Tree,
    node: Node,
    children_by_parent: dict[str | None, list[Node]],
    verbosity: Verbosity,
) -> None:
    icon = _status_icon(node.status)
    latency = f"{node.latency}ms" if node.latency is not None else "running"
    line = f"[{node.type}] {node_label(node)} ({latency}) {icon}"
    if node.cost is not None:
        line += f" ${node.cost:.4f}"
    branch = parent_tree.add(line)

    if verbosity in ("standard", "full"):
        if node.tokens is not None:
            branch.add(
                f"tokens: {node.tokens.total} "
                f"(prompt {node.tokens.prompt}, completion {node.tokens.completion})"
            )
        if node.error:
            branch.add(f"error: {node.error.splitlines()[0]}")

    if verbosity == "full":
        for key, value in _payload_fields(node).items():
            if value not in (None, "", [], {}):
                branch.add(f"{key}: {_format_data(value)}")
        if node.error and "\n" in node.error:
            branch.add(f"stack: {node.error.split(chr(10), 1)[1]}")

    for child in children_by_parent.get(node.run_id, []):
        _add_node_branch(branch, child, children_by_parent, verbosity)


def _add_anomaly(parent_tree: Tree, anomaly: Anomaly, verbosity: Verbosity) -> None:
    branch = parent_tree.add(f"{anomaly.severity.value.upper()} {anomaly.type}: {anomaly.message}")
    if verbosity == "full":
        branch.add(f"runs: {', '.join(anomaly.nodes)}")
        if anomaly.suggestion:
            branch.add(f"suggestion: {anomaly.suggestion}")


def _payload_fields(node: Node) -> dict[str, object]:
    data = node.data
    if isinstance(data, LLMPayload):
        return {"prompts": data.prompts, "response": data.response}
    if isinstance(data, ToolPayload):
        return {"input": data.input, "output": data.output}
    if isinstance(data, ChainPayload):
        return {"inputs": data.inputs, "outputs": data.outputs}
    if isinstance(data, GenericPayload):
        return dict(data.values)
    return {}


def _format_data(data: object) -> str:
    """Format a value for display, truncating large values."""
    try:
        s = data if isinstance(data, str) else json.dumps(data, ensure_ascii=False)
    except (TypeError, ValueError):
        s = str(data)
    if len(s) <= _MAX_VALUE_LEN:
        return s
    return s[:_MAX_VALUE_LEN] + "... [truncated]"


def _status_icon(status: NodeStatus) -> str:
    if status == NodeStatus.COMPLETE:
        return "✓"
    if status == NodeStatus.ERROR:
        return "✗"
    return "…"
