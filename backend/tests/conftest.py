"""Shared test fixtures and test doubles for backend tests."""
import asyncio
import copy
import json
from typing import Any, Dict, List, Optional

import pytest

from app.chat.channel import Channel
from app.chat.errors import DeliveryFailure, PersistenceFailure
from app.config import AppSettings, ChatSettings, StorageSettings
from app.store import DurableStore, WakeupHandler

# Fixed starting point for the fake clock (2024-01-01T00:00:00Z)
START_MS = 1_704_067_200_000
HOUR_MS = 60 * 60 * 1000


class RecordingChannel(Channel):
    """Channel that records every frame it is asked to send."""

    def __init__(self, fail_sends: bool = False, fail_close: bool = False) -> None:
        self.frames: List[str] = []
        self.fail_sends = fail_sends
        self.fail_close = fail_close
        self.close_calls = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, text: str) -> None:
        if self._closed:
            raise DeliveryFailure("channel is closed")
        if self.fail_sends:
            raise DeliveryFailure("peer went away")
        self.frames.append(text)

    def close(self) -> None:
        self.close_calls += 1
        if self.fail_close:
            raise RuntimeError("already closed")
        self._closed = True

    def received(self) -> List[Dict[str, Any]]:
        return [json.loads(frame) for frame in self.frames]

    def types(self) -> List[str]:
        return [frame["type"] for frame in self.received()]


class StalledWebSocket:
    """Stand-in for a FastAPI WebSocket whose peer stops reading.

    ``send_text`` blocks until ``release()`` is called.
    """

    def __init__(self, stalled: bool = True) -> None:
        self.sent: List[str] = []
        self.close_codes: List[int] = []
        self._released = asyncio.Event()
        if not stalled:
            self._released.set()

    def release(self) -> None:
        self._released.set()

    async def send_text(self, text: str) -> None:
        await self._released.wait()
        self.sent.append(text)

    async def close(self, code: int = 1000) -> None:
        self.close_codes.append(code)


class MemoryStore(DurableStore):
    """In-memory DurableStore that records writes and wake-ups."""

    def __init__(self, data: Optional[Dict[str, Any]] = None, pending_wakeup: Optional[int] = None) -> None:
        self.data: Dict[str, Any] = copy.deepcopy(data or {})
        self.puts: List[Any] = []
        self.wakeups: List[int] = []
        self.pending_wakeup = pending_wakeup
        self.handler: Optional[WakeupHandler] = None
        self.fail_get = False
        self.fail_puts = 0
        self.fail_wakeups = 0

    async def get(self, key: str) -> Optional[Any]:
        if self.fail_get:
            raise PersistenceFailure("store unavailable", key=key)
        return copy.deepcopy(self.data.get(key))

    async def put(self, key: str, value: Any) -> None:
        if self.fail_puts:
            self.fail_puts -= 1
            raise PersistenceFailure("write rejected", key=key)
        self.data[key] = copy.deepcopy(value)
        self.puts.append(copy.deepcopy(value))

    async def schedule_wakeup(self, timestamp_ms: int) -> None:
        if self.fail_wakeups:
            self.fail_wakeups -= 1
            raise PersistenceFailure("alarm rejected", key="<wakeup>")
        self.wakeups.append(timestamp_ms)
        self.pending_wakeup = timestamp_ms

    async def get_wakeup(self) -> Optional[int]:
        return self.pending_wakeup

    async def resume_wakeup(self) -> Optional[int]:
        return self.pending_wakeup

    def set_wakeup_handler(self, handler: WakeupHandler) -> None:
        self.handler = handler

    async def close(self) -> None:
        pass


class FakeClock:
    """Callable clock returning controllable epoch milliseconds."""

    def __init__(self, now: int = START_MS) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def chat_settings():
    """Default limits, without retry back-off so failure tests stay fast."""
    return ChatSettings(persist_retries=1, persist_retry_delay_seconds=0)


@pytest.fixture
def app_settings(tmp_path):
    """Settings for a full application backed by a throwaway DuckDB file."""
    return AppSettings(
        chat=ChatSettings(persist_retry_delay_seconds=0),
        storage=StorageSettings(db_path=str(tmp_path / "room.duckdb")),
    )
