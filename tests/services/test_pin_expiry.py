import asyncio
import logging

import pytest
from redis.exceptions import RedisError

from forum_topics.core.settings import settings
from forum_topics.db.time import now_ms
from forum_topics.services.pin_expiry import PinExpirySweeper


@pytest.fixture
def session_factory(mocker, db_session):
    # The sweeper closes its session after every pass; keep the test session open.
    mocker.patch.object(db_session, "close")
    return lambda: db_session


@pytest.mark.asyncio
async def test_sweep_once_unpins_expired_topics(
    services, store, hooks, forum, category, owner, moderator, session_factory
):
    expired = await forum.create_topic(category.cid, owner.uid)
    current = await forum.create_topic(category.cid, owner.uid)
    for tid in (expired, current):
        await services.tools.pin(tid, moderator.uid)
    await services.fields.set_topic_field(expired, "pinExpiry", now_ms() - 1000)

    sweeper = PinExpirySweeper(store=store, session_factory=session_factory, hooks=hooks)

    assert await sweeper.sweep_once() == 1
    assert await services.fields.get_topic_field(expired, "pinned") == 0
    assert await services.fields.get_topic_field(current, "pinned") == 1
    assert await sweeper.sweep_once() == 0


@pytest.mark.asyncio
async def test_sweeper_runs_until_stopped(store, session_factory, mocker, monkeypatch):
    monkeypatch.setattr(settings, "pin_expiry_sweep_interval_seconds", 0.1)
    sweeper = PinExpirySweeper(store=store, session_factory=session_factory)
    sweep = mocker.patch.object(sweeper, "sweep_once", new=mocker.AsyncMock(return_value=0))

    await sweeper.start()
    await asyncio.sleep(0.05)
    await sweeper.stop()

    assert sweep.await_count >= 1
    assert sweeper._task is None


@pytest.mark.asyncio
async def test_sweeper_logs_store_errors_and_keeps_running(
    store, session_factory, mocker, monkeypatch, caplog
):
    monkeypatch.setattr(settings, "pin_expiry_sweep_interval_seconds", 0.1)
    sweeper = PinExpirySweeper(store=store, session_factory=session_factory)
    mocker.patch.object(
        sweeper, "sweep_once", new=mocker.AsyncMock(side_effect=RedisError("connection refused"))
    )

    with caplog.at_level(logging.WARNING, logger="forum_topics.services.pin_expiry"):
        await sweeper.start()
        await asyncio.sleep(0.05)
        await sweeper.stop()

    assert "store error" in caplog.text
    assert sweeper._task is None
