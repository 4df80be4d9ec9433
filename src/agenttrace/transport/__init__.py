"""In-process transport from instrumented code to the ingestion gateway."""

from .client import EVENTS_PATH, HEALTH_PATH, ConnectionState, TraceClient
from .config import ClientConfig

__all__ = ["EVENTS_PATH", "HEALTH_PATH", "ClientConfig", "ConnectionState", "TraceClient"]
