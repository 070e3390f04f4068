"""DuckDB-backed durable store for room state.

Values are stored as JSON text in a small key-value table. The single
pending wake-up is persisted too, so a restarted process re-arms the
cleanup timer it had scheduled before going down.

Database Schema:
    kv table:
        - key: Primary key (e.g. "messages")
        - value: JSON-encoded value
    wakeups table:
        - id: Always 1 (at most one pending wake-up)
        - fire_at: Epoch milliseconds at which the handler should run

Thread Safety:
    The DuckDB connection is NOT thread-safe. The store is meant to be used
    from the single event loop that owns the room coordinator.

Usage:
    store = DuckDBStore("chat_room.duckdb")
    store.set_wakeup_handler(coordinator.on_timer_fire)
    await store.put("messages", [...])
    await store.schedule_wakeup(now_ms + 3_600_000)
"""
import asyncio
import json
import logging
import time
from typing import Any, Optional

import duckdb

from app.chat.errors import PersistenceFailure

from .base import DurableStore, WakeupHandler

logger = logging.getLogger(__name__)


class DuckDBStore(DurableStore):
    """DurableStore implementation on an embedded DuckDB database.

    Attributes:
        _db_path: Path to the DuckDB file, or ":memory:".
    """

    _db_path: str = "chat_room.duckdb"

    def __init__(self, db_path: Optional[str] = None) -> None:
        """Open the database and create the schema if needed.

        Args:
            db_path: Path to DuckDB file. Defaults to "chat_room.duckdb".

        Raises:
            PersistenceFailure: If the database cannot be opened.
        """
        if db_path:
            self._db_path = db_path
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._handler: Optional[WakeupHandler] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._wakeup_task: Optional[asyncio.Task] = None
        try:
            self._initialize_db()
        except duckdb.Error as e:
            raise PersistenceFailure(str(e), key="<schema>") from e

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            self._connection = duckdb.connect(self._db_path)
        return self._connection

    def _initialize_db(self) -> None:
        """Create tables. Safe to call multiple times."""
        conn = self._get_connection()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS kv (
                key VARCHAR PRIMARY KEY,
                value VARCHAR NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS wakeups (
                id INTEGER PRIMARY KEY,
                fire_at BIGINT NOT NULL
            )
        """)

    # =========================================================================
    # Key-value access
    # =========================================================================

    async def get(self, key: str) -> Optional[Any]:
        try:
            row = self._get_connection().execute(
                "SELECT value FROM kv WHERE key = ?", [key]
            ).fetchone()
        except duckdb.Error as e:
            raise PersistenceFailure(str(e), key=key) from e
        if row is None:
            return None
        return json.loads(row[0])

    async def put(self, key: str, value: Any) -> None:
        try:
            self._get_connection().execute(
                "INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)",
                [key, json.dumps(value)]
            )
        except duckdb.Error as e:
            raise PersistenceFailure(str(e), key=key) from e

    # =========================================================================
    # Wake-up timer
    # =========================================================================

    def set_wakeup_handler(self, handler: WakeupHandler) -> None:
        self._handler = handler

    async def schedule_wakeup(self, timestamp_ms: int) -> None:
        try:
            self._get_connection().execute(
                "INSERT OR REPLACE INTO wakeups (id, fire_at) VALUES (1, ?)",
                [timestamp_ms]
            )
        except duckdb.Error as e:
            raise PersistenceFailure(str(e), key="<wakeup>") from e
        self._arm(timestamp_ms)

    async def get_wakeup(self) -> Optional[int]:
        try:
            row = self._get_connection().execute(
                "SELECT fire_at FROM wakeups WHERE id = 1"
            ).fetchone()
        except duckdb.Error as e:
            raise PersistenceFailure(str(e), key="<wakeup>") from e
        return row[0] if row else None

    async def resume_wakeup(self) -> Optional[int]:
        """Re-arm a wake-up persisted by a previous process.

        Overdue wake-ups fire on the next loop iteration.

        Returns:
            The re-armed wake-up time, or None if nothing was pending.
        """
        fire_at = await self.get_wakeup()
        if fire_at is not None:
            logger.info(f"[Store] Resuming persisted wake-up at {fire_at}")
            self._arm(fire_at)
        return fire_at

    def _arm(self, timestamp_ms: int) -> None:
        if self._timer is not None:
            self._timer.cancel()
        delay = max(0.0, (timestamp_ms - time.time() * 1000) / 1000)
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(delay, self._fire)
        logger.debug(f"[Store] Wake-up armed in {delay:.3f}s")

    def _fire(self) -> None:
        self._timer = None
        self._wakeup_task = asyncio.ensure_future(self._run_wakeup())

    async def _run_wakeup(self) -> None:
        try:
            self._get_connection().execute("DELETE FROM wakeups WHERE id = 1")
        except duckdb.Error as e:
            logger.error(f"[Store] Could not clear fired wake-up: {e}")

        if self._handler is None:
            logger.warning("[Store] Wake-up fired with no handler registered")
            return
        try:
            await self._handler()
        except Exception as e:
            logger.error(f"[Store] Wake-up handler failed: {e}")

    async def close(self) -> None:
        """Cancel the timer and close the database connection."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._wakeup_task is not None and not self._wakeup_task.done():
            self._wakeup_task.cancel()
        if self._connection is not None:
            self._connection.close()
            self._connection = None
