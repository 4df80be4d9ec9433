"""Storage backends."""

from .base import StorageBackend
from .sqlite import SQLiteStore

__all__ = ["SQLiteStore", "StorageBackend"]
