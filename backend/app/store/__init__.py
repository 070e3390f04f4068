"""Durable storage for room history and cleanup wake-ups."""

from .base import DurableStore, WakeupHandler
from .service import DuckDBStore

__all__ = [
    "DurableStore",
    "DuckDBStore",
    "WakeupHandler",
]
