"""Public exception types for agenttrace."""

from __future__ import annotations


class AgentTraceError(Exception):
    """Base class for all agenttrace exceptions."""


class StorageError(AgentTraceError):
    """Base class for errors raised by a storage backend."""


class DuplicateKeyError(StorageError):
    """Raised when inserting a row whose unique key already exists."""


class NotFoundError(StorageError):
    """Raised when updating or deleting a row that does not exist."""


class ConstraintViolationError(StorageError):
    """Raised on a foreign-key breach or a data-model invariant violation."""


class TransportError(AgentTraceError):
    """Raised inside the trace client when a connect or send attempt fails.

    Never propagates to ``TraceClient.send_event`` callers.
    """


class DecodeError(AgentTraceError):
    """Raised when an incoming event batch cannot be parsed."""
