"""Anomaly detection."""

from .detector import AnomalyDetector
from .rules import DEFAULT_RULES, DetectionRule, detect_cost_spike, detect_loop, normalize_input

__all__ = [
    "DEFAULT_RULES",
    "AnomalyDetector",
    "DetectionRule",
    "detect_cost_spike",
    "detect_loop",
    "normalize_input",
]
