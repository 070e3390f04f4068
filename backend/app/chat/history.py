"""Background persistence of room history.

The coordinator never waits on the store before delivering a message.
Instead it hands each new history snapshot to a HistoryWriter, which writes
snapshots one at a time and always skips ahead to the newest one. The
persisted copy therefore converges on the in-memory copy even when writes
are slow or briefly failing.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional

from app.store import DurableStore

logger = logging.getLogger(__name__)


async def retry_store_call(
    operation: Callable[[], Awaitable[Any]],
    description: str,
    retries: int,
    retry_delay: float,
) -> bool:
    """Run a store operation, retrying on failure.

    Args:
        operation: Zero-argument coroutine function performing the call.
        description: Human-readable name used in log lines.
        retries: Extra attempts after the first failure.
        retry_delay: Seconds to wait between attempts.

    Returns:
        True if an attempt succeeded, False once all attempts failed.
    """
    attempts = retries + 1
    for attempt in range(1, attempts + 1):
        try:
            await operation()
            return True
        except Exception as e:
            if attempt == attempts:
                logger.error(
                    f"[History] {description} failed after {attempts} attempt(s), "
                    f"durability at risk: {e}"
                )
                return False
            logger.warning(f"[History] {description} failed (attempt {attempt}/{attempts}): {e}")
            await asyncio.sleep(retry_delay)
    return False


class HistoryWriter:
    """Single-writer mirror of the latest history snapshot.

    Usage:
        writer = HistoryWriter(store, "messages")
        writer.start()
        writer.submit([...])       # returns immediately
        await writer.flush()       # waits until the newest snapshot is written
    """

    def __init__(
        self,
        store: DurableStore,
        key: str,
        retries: int = 3,
        retry_delay: float = 0.5,
    ) -> None:
        self._store = store
        self._key = key
        self._retries = retries
        self._retry_delay = retry_delay
        self._pending: Optional[List[dict]] = None
        self._wake = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._task: Optional[asyncio.Task] = None
        self.last_write_ok = True

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    def submit(self, snapshot: List[dict]) -> None:
        """Schedule ``snapshot`` to be written, replacing any unwritten one."""
        self._pending = snapshot
        self._idle.clear()
        self._wake.set()

    async def flush(self) -> bool:
        """Wait until every submitted snapshot has been handled.

        Returns:
            Whether the last write succeeded.
        """
        await self._idle.wait()
        return self.last_write_ok

    async def stop(self) -> None:
        """Flush pending writes, then stop the writer task."""
        if self._task is None:
            return
        await self.flush()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            await self._wake.wait()
            self._wake.clear()
            snapshot, self._pending = self._pending, None
            if snapshot is not None:
                self.last_write_ok = await retry_store_call(
                    lambda: self._store.put(self._key, snapshot),
                    f"Persisting {len(snapshot)} history entries",
                    self._retries,
                    self._retry_delay,
                )
            if self._pending is None:
                self._idle.set()
