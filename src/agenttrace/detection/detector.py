"""AnomalyDetector — runs detection rules when a run completes."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from ..models import Anomaly, Node, NodeStatus
from ..storage import StorageBackend
from .rules import DEFAULT_RULES, DetectionRule

logger = logging.getLogger(__name__)


class AnomalyDetector:
    """Evaluates a completed run against its trace's persisted runs.

    Error-handling contract
    -----------------------
    Detection is best-effort. A failure reading the trace's runs yields no
    anomalies; a failure inside one rule (or while persisting its result)
    skips that rule. Either way the error is logged and nothing is raised,
    so ingestion is never aborted by detection.

    The detector keeps no state between calls: every decision is made from
    one read of the trace's runs, taken after the triggering run was
    persisted.
    """

    def __init__(
        self,
        store: StorageBackend,
        rules: Sequence[DetectionRule] | None = None,
    ) -> None:
        self.store = store
        self.rules: tuple[DetectionRule, ...] = tuple(rules) if rules is not None else DEFAULT_RULES

    async def check_node(self, node: Node) -> list[Anomaly]:
        if node.status != NodeStatus.COMPLETE:
            return []
        try:
            history = await self.store.list_nodes_by_trace(node.trace_id)
        except Exception:
            logger.exception(
                "Anomaly detection skipped: could not read runs of trace %s", node.trace_id
            )
            return []

        created: list[Anomaly] = []
        for rule in self.rules:
            try:
                draft = rule(node, history)
                if draft is None:
                    continue
                anomaly = await self.store.create_anomaly(draft)
            except Exception:
                logger.exception(
                    "Detection rule %s failed for run %s",
                    getattr(rule, "__name__", repr(rule)),
                    node.run_id,
                )
                continue
            logger.info(
                "%s anomaly (%s) in trace %s: %s",
                anomaly.type,
                anomaly.severity.value,
                anomaly.trace_id,
                anomaly.message,
            )
            created.append(anomaly)
        return created
