"""Tests for the store retry helper used by the history writer."""
import logging

import pytest

from app.chat.errors import PersistenceFailure
from app.chat.history import retry_store_call


@pytest.mark.asyncio
async def test_retry_succeeds_after_transient_failure(caplog):
    attempts = []

    async def flaky_put():
        attempts.append(1)
        if len(attempts) < 2:
            raise PersistenceFailure("disk busy")

    with caplog.at_level(logging.WARNING, logger="app.chat.history"):
        assert await retry_store_call(flaky_put, "put messages", retries=2, retry_delay=0)

    assert len(attempts) == 2
    assert [r.levelno for r in caplog.records] == [logging.WARNING]
    assert caplog.records[0].getMessage().startswith("[History] put messages failed (attempt 1/3)")


@pytest.mark.asyncio
async def test_retry_gives_up_and_logs_error(caplog):
    async def broken_put():
        raise PersistenceFailure("disk gone")

    with caplog.at_level(logging.WARNING, logger="app.chat.history"):
        assert await retry_store_call(broken_put, "put messages", retries=1, retry_delay=0) is False

    messages = [r.getMessage() for r in caplog.records]
    assert len(messages) == 2
    assert all(m.startswith("[History] ") for m in messages)
    assert caplog.records[-1].levelno == logging.ERROR
    assert "failed after 2 attempt(s)" in messages[-1]
