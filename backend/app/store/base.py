"""Abstract DurableStore interface.

The room coordinator persists its history and schedules its cleanup
wake-ups through this interface, so the storage back-end can change
without touching chat logic.
"""
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional

WakeupHandler = Callable[[], Awaitable[None]]


class DurableStore(ABC):
    """Durable key-value map with a single pending wake-up timer."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the JSON-compatible value stored under ``key``, or None.

        Raises:
            PersistenceFailure: If the back-end cannot be read.
        """

    @abstractmethod
    async def put(self, key: str, value: Any) -> None:
        """Store a JSON-compatible value under ``key``, replacing any previous one.

        Raises:
            PersistenceFailure: If the back-end cannot be written.
        """

    @abstractmethod
    async def schedule_wakeup(self, timestamp_ms: int) -> None:
        """Arm the wake-up timer, replacing any pending one.

        When the timer elapses the handler registered with
        ``set_wakeup_handler`` is awaited.
        """

    @abstractmethod
    async def get_wakeup(self) -> Optional[int]:
        """Return the pending wake-up time in epoch milliseconds, or None."""

    @abstractmethod
    async def resume_wakeup(self) -> Optional[int]:
        """Re-arm a wake-up left pending by a previous process.

        Returns:
            The re-armed wake-up time, or None if nothing was pending.
        """

    @abstractmethod
    def set_wakeup_handler(self, handler: WakeupHandler) -> None:
        """Register the coroutine function invoked when the timer fires."""

    @abstractmethod
    async def close(self) -> None:
        """Cancel the pending timer and release back-end resources."""
