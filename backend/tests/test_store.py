"""Unit tests for the DuckDB durable store."""
import asyncio
import time

import pytest

from app.store import DuckDBStore


def now_ms():
    return int(time.time() * 1000)


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "store.duckdb")


class TestKeyValue:

    @pytest.mark.asyncio
    async def test_get_missing_key_returns_none(self):
        store = DuckDBStore(":memory:")
        assert await store.get("messages") is None
        await store.close()

    @pytest.mark.asyncio
    async def test_put_then_get(self):
        store = DuckDBStore(":memory:")
        value = [{"id": "1", "type": "message", "content": "hi", "timestamp": 5}]

        await store.put("messages", value)

        assert await store.get("messages") == value
        await store.close()

    @pytest.mark.asyncio
    async def test_put_replaces_previous_value(self):
        store = DuckDBStore(":memory:")

        await store.put("messages", [1, 2, 3])
        await store.put("messages", [])

        assert await store.get("messages") == []
        await store.close()

    @pytest.mark.asyncio
    async def test_values_survive_reopen(self, db_path):
        store = DuckDBStore(db_path)
        await store.put("messages", [{"content": "persisted"}])
        await store.close()

        reopened = DuckDBStore(db_path)
        assert await reopened.get("messages") == [{"content": "persisted"}]
        await reopened.close()


class TestWakeups:

    @pytest.mark.asyncio
    async def test_schedule_replaces_pending_wakeup(self):
        store = DuckDBStore(":memory:")
        far = now_ms() + 3_600_000

        await store.schedule_wakeup(far)
        await store.schedule_wakeup(far + 1)

        assert await store.get_wakeup() == far + 1
        await store.close()

    @pytest.mark.asyncio
    async def test_handler_runs_when_wakeup_elapses(self):
        store = DuckDBStore(":memory:")
        calls = []

        async def handler():
            calls.append(now_ms())

        store.set_wakeup_handler(handler)
        await store.schedule_wakeup(now_ms() + 20)
        await asyncio.sleep(0.3)

        assert len(calls) == 1
        assert await store.get_wakeup() is None
        await store.close()

    @pytest.mark.asyncio
    async def test_replaced_wakeup_fires_once(self):
        store = DuckDBStore(":memory:")
        calls = []

        async def handler():
            calls.append(1)

        store.set_wakeup_handler(handler)
        await store.schedule_wakeup(now_ms() + 20)
        await store.schedule_wakeup(now_ms() + 40)
        await asyncio.sleep(0.3)

        assert calls == [1]
        await store.close()

    @pytest.mark.asyncio
    async def test_handler_may_reschedule_itself(self):
        store = DuckDBStore(":memory:")
        calls = []

        async def handler():
            calls.append(1)
            await store.schedule_wakeup(now_ms() + 3_600_000)

        store.set_wakeup_handler(handler)
        await store.schedule_wakeup(now_ms())
        await asyncio.sleep(0.2)

        assert calls == [1]
        assert await store.get_wakeup() is not None
        await store.close()

    @pytest.mark.asyncio
    async def test_close_cancels_pending_wakeup(self):
        store = DuckDBStore(":memory:")
        calls = []

        async def handler():
            calls.append(1)

        store.set_wakeup_handler(handler)
        await store.schedule_wakeup(now_ms() + 50)
        await store.close()
        await asyncio.sleep(0.2)

        assert calls == []

    @pytest.mark.asyncio
    async def test_resume_rearms_persisted_wakeup(self, db_path):
        store = DuckDBStore(db_path)
        await store.schedule_wakeup(now_ms() + 30)
        await store.close()

        calls = []

        async def handler():
            calls.append(1)

        reopened = DuckDBStore(db_path)
        reopened.set_wakeup_handler(handler)
        assert await reopened.resume_wakeup() is not None
        await asyncio.sleep(0.2)

        assert calls == [1]
        await reopened.close()

    @pytest.mark.asyncio
    async def test_resume_without_pending_wakeup(self):
        store = DuckDBStore(":memory:")
        assert await store.resume_wakeup() is None
        await store.close()
