"""TraceClient — buffered, batched, reconnecting delivery of trace events."""

from __future__ import annotations

import atexit
import json
import logging
import threading
from collections import deque
from collections.abc import Mapping
from enum import StrEnum
from types import TracebackType

import httpx
from pydantic import BaseModel, ValidationError
from pydantic_core import PydanticSerializationError

from ..exceptions import TransportError
from ..serializers import event_to_wire
from .config import ClientConfig

logger = logging.getLogger(__name__)

HEALTH_PATH = "/health"
EVENTS_PATH = "/v1/traces/events"


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class TraceClient:
    """Ships trace events from the instrumented process to the ingestion gateway.

    ``send_event`` only appends to an in-memory queue and returns. Two
    daemon threads do the I/O:

    - the batch timer wakes every ``batch_interval`` (or early, once a full
      batch is waiting) and calls ``flush``;
    - the reconnect loop re-establishes the connection with exponential
      backoff, then falls back to a fixed ``retry_interval``.

    Error-handling contract
    -----------------------
    - Transport failures never reach the producer. A batch that cannot be
      sent goes back to the front of the queue and the client drops to
      ``DISCONNECTED``.
    - Events are only discarded when the queue is full (oldest first,
      counted in ``dropped_count``) or when undelivered events remain at
      ``disconnect``. Both are logged.
    - Events are encoded to their wire form when queued. An event that
      fails validation or cannot be encoded as JSON is rejected by
      ``send_event``, logged and counted in ``rejected_count``; it never
      reaches a batch.
    - Delivery is at-most-once per attempt; a crash before a batch is
      acknowledged loses that batch.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        transport: httpx.BaseTransport | None = None,
        autostart: bool = True,
    ) -> None:
        self.config = config or ClientConfig()
        self._transport = transport
        self._queue: deque[dict[str, object]] = deque()
        self._queue_lock = threading.Lock()
        self._flush_lock = threading.Lock()
        self._io_lock = threading.Lock()
        self._http: httpx.Client | None = None
        self._state = ConnectionState.DISCONNECTED
        self._failures = 0
        self._dropped = 0
        self._rejected = 0
        self._closed = False
        self._stop = threading.Event()
        self._flush_wakeup = threading.Event()
        self._reconnect_wakeup = threading.Event()
        self._threads: list[threading.Thread] = []
        if autostart:
            self.start()

    # ------------------------------------------------------------------
    # producer API
    # ------------------------------------------------------------------

    def send_event(self, event: BaseModel | Mapping[str, object]) -> bool:
        """Queue an event for delivery. Never blocks on the network.

        Accepts a wire event model or its camelCase dict form. The event is
        encoded immediately; ``False`` means it was rejected (malformed, not
        JSON-encodable, or the client is closed).
        """
        if self._closed:
            logger.warning("Trace client is closed; dropping event")
            return False
        try:
            wire = event_to_wire(event)
        except (ValidationError, PydanticSerializationError) as exc:
            with self._queue_lock:
                self._rejected += 1
            logger.warning("Rejecting trace event that cannot be encoded: %s", exc)
            return False

        evicted = False
        with self._queue_lock:
            if len(self._queue) >= self.config.max_queue_size:
                self._queue.popleft()
                self._dropped += 1
                evicted = True
            self._queue.append(wire)
            size = len(self._queue)
        if evicted:
            logger.warning(
                "Trace queue full (%d); evicted oldest event (%d dropped so far)",
                self.config.max_queue_size,
                self._dropped,
            )
        if size >= self.config.batch_size:
            self._flush_wakeup.set()
        return True

    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    def get_queue_size(self) -> int:
        with self._queue_lock:
            return len(self._queue)

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def dropped_count(self) -> int:
        return self._dropped

    @property
    def rejected_count(self) -> int:
        return self._rejected

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the batch timer and reconnect loop. Idempotent."""
        if self._closed:
            raise TransportError("Trace client has been disconnected and cannot restart")
        if self._threads:
            return
        self._stop.clear()
        self._threads = [
            threading.Thread(target=self._batch_loop, name="agenttrace-batch", daemon=True),
            threading.Thread(
                target=self._reconnect_loop, name="agenttrace-reconnect", daemon=True
            ),
        ]
        for thread in self._threads:
            thread.start()
        atexit.register(self.disconnect)

    def disconnect(self) -> None:
        """Stop the timers, flush what can be delivered, release the connection.

        Safe to call more than once; also runs at interpreter exit.
        """
        if self._closed:
            return
        self._stop.set()
        self._flush_wakeup.set()
        self._reconnect_wakeup.set()
        join_timeout = self.config.connect_timeout + self.config.send_timeout
        for thread in self._threads:
            thread.join(timeout=join_timeout)
        self._threads = []
        try:
            self._final_flush()
        finally:
            with self._io_lock:
                if self._http is not None:
                    self._http.close()
                    self._http = None
                self._closed = True
                self._state = ConnectionState.DISCONNECTED
            atexit.unregister(self.disconnect)
            logger.info("Trace client disconnected")

    def __enter__(self) -> TraceClient:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.disconnect()

    # ------------------------------------------------------------------
    # connection state machine
    # ------------------------------------------------------------------

    def connect(self) -> bool:
        """Make one time-bounded connection attempt. Returns True when connected."""
        with self._io_lock:
            if self._closed:
                return False
            if self._state is ConnectionState.CONNECTED:
                return True
            self._state = ConnectionState.CONNECTING
            try:
                if self._http is None:
                    self._http = self._build_http()
                response = self._http.get(HEALTH_PATH, timeout=self.config.connect_timeout)
                response.raise_for_status()
            except httpx.HTTPError as exc:
                self._failures += 1
                self._state = ConnectionState.DISCONNECTED
                logger.warning(
                    "Connection attempt %d to %s failed: %s",
                    self._failures,
                    self.config.endpoint,
                    exc,
                )
                if self._failures == self.config.max_reconnect_attempts:
                    logger.warning(
                        "Max reconnection attempts reached; events stay queued and "
                        "reconnects continue every %.1fs",
                        self.config.retry_interval,
                    )
                return False
            self._failures = 0
            self._state = ConnectionState.CONNECTED
        logger.info("Connected to trace backend at %s", self.config.endpoint)
        self._flush_wakeup.set()
        return True

    def _mark_disconnected(self, reason: Exception) -> None:
        with self._io_lock:
            if self._state is not ConnectionState.CONNECTED:
                return
            self._state = ConnectionState.DISCONNECTED
        logger.warning("Disconnected from trace backend: %s", reason)
        self._reconnect_wakeup.set()

    def _build_http(self) -> httpx.Client:
        headers = {"x-project-name": self.config.project_name}
        if self.config.api_key:
            headers["x-api-key"] = self.config.api_key
        return httpx.Client(
            base_url=self.config.endpoint,
            headers=headers,
            transport=self._transport,
            timeout=httpx.Timeout(self.config.send_timeout, connect=self.config.connect_timeout),
        )

    # ------------------------------------------------------------------
    # batching
    # ------------------------------------------------------------------

    def flush(self) -> int:
        """Send at most one batch. Returns the number of events delivered.

        When disconnected, or when the send fails, the drained batch goes
        back to the front of the queue so ordering is preserved.
        """
        with self._flush_lock:
            batch = self._drain()
            if not batch:
                return 0
            if not self.is_connected():
                self._requeue(batch)
                logger.debug("Holding %d events (not connected)", len(batch))
                return 0
            try:
                self._transmit(batch)
            except TransportError as exc:
                self._requeue(batch)
                self._mark_disconnected(exc)
                return 0
            logger.debug("Sent %d events", len(batch))
            return len(batch)

    def _drain(self) -> list[dict[str, object]]:
        with self._queue_lock:
            count = min(len(self._queue), self.config.batch_size)
            return [self._queue.popleft() for _ in range(count)]

    def _requeue(self, batch: list[dict[str, object]]) -> None:
        with self._queue_lock:
            self._queue.extendleft(reversed(batch))
            overflow = len(self._queue) - self.config.max_queue_size
            for _ in range(max(overflow, 0)):
                self._queue.popleft()
            self._dropped += max(overflow, 0)
        if overflow > 0:
            logger.warning("Trace queue full; evicted %d oldest event(s)", overflow)

    def _transmit(self, batch: list[dict[str, object]]) -> None:
        payload = json.dumps(batch, ensure_ascii=False)
        with self._io_lock:
            if self._http is None:
                raise TransportError("No open connection")
            try:
                response = self._http.post(
                    EVENTS_PATH,
                    content=payload,
                    headers={"content-type": "application/json"},
                )
                response.raise_for_status()
            except httpx.HTTPError as exc:
                raise TransportError(f"Failed to send {len(batch)} events: {exc}") from exc

    def _final_flush(self) -> None:
        if self.get_queue_size() and not self.is_connected():
            self.connect()
        while self.get_queue_size() and self.is_connected():
            if self.flush() == 0:
                break
        remaining = self.get_queue_size()
        if remaining:
            logger.warning("Discarding %d undelivered trace events on disconnect", remaining)

    # ------------------------------------------------------------------
    # background loops
    # ------------------------------------------------------------------

    def _batch_loop(self) -> None:
        while not self._stop.is_set():
            self._flush_wakeup.wait(self.config.batch_interval)
            self._flush_wakeup.clear()
            if self._stop.is_set():
                break
            try:
                self.flush()
            except Exception:
                logger.exception("Unexpected error in trace batch timer")

    def _reconnect_loop(self) -> None:
        while not self._stop.is_set():
            if self.is_connected():
                self._reconnect_wakeup.wait()
                self._reconnect_wakeup.clear()
                continue
            try:
                if self.connect():
                    continue
            except Exception:
                logger.exception("Unexpected error while reconnecting")
            delay = max(self.config.reconnect_delay_for(self._failures), self.config.batch_interval)
            logger.debug("Next reconnect attempt in %.2fs", delay)
            self._stop.wait(delay)
