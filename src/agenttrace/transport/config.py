"""Configuration for a TraceClient instance."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ClientConfig(BaseModel):
    """Validated configuration for a TraceClient. Passed via DI at construction.

    Intervals and timeouts are in seconds.
    """

    endpoint: str = "http://localhost:8000"
    project_name: str = "default"
    api_key: str | None = None
    batch_interval: float = Field(default=0.1, gt=0)
    batch_size: int = Field(default=50, ge=1)
    max_queue_size: int = Field(default=10_000, ge=1)
    max_reconnect_attempts: int = Field(default=5, ge=0)
    reconnect_delay: float = Field(default=1.0, ge=0)
    max_reconnect_delay: float = Field(default=30.0, ge=0)
    retry_interval: float = Field(default=30.0, gt=0)
    connect_timeout: float = Field(default=5.0, gt=0)
    send_timeout: float = Field(default=10.0, gt=0)

    def reconnect_delay_for(self, failures: int) -> float:
        """Delay before the next attempt after ``failures`` consecutive failures.

        Doubles from ``reconnect_delay`` up to ``max_reconnect_delay`` while
        within ``max_reconnect_attempts``, then settles on ``retry_interval``.
        """
        if failures <= 0:
            return 0.0
        if failures <= self.max_reconnect_attempts:
            return min(self.reconnect_delay * 2 ** (failures - 1), self.max_reconnect_delay)
        return self.retry_interval
