"""Tests for named timers and background tasks."""

import asyncio
import logging

import pytest

from embedbot.embedfix.scheduler import TaskScheduler


@pytest.mark.asyncio
async def test_timer_fires_once():
    scheduler = TaskScheduler()
    fired = []
    scheduler.call_later("t", 0.01, lambda: fired.append(1))

    await asyncio.sleep(0.05)

    assert fired == [1]
    assert not scheduler.is_scheduled("t")


@pytest.mark.asyncio
async def test_same_name_replaces_previous_timer():
    scheduler = TaskScheduler()
    fired = []
    scheduler.call_later("t", 0.01, lambda: fired.append("old"))
    scheduler.call_later("t", 0.02, lambda: fired.append("new"))

    await asyncio.sleep(0.06)

    assert fired == ["new"]


@pytest.mark.asyncio
async def test_cancel_only_affects_named_timer():
    scheduler = TaskScheduler()
    fired = []
    scheduler.call_later("upload-cleanup:a", 0.01, lambda: fired.append("a"))
    scheduler.call_later("upload-cleanup:b", 0.01, lambda: fired.append("b"))

    assert scheduler.cancel("upload-cleanup:a") is True
    assert scheduler.cancel("upload-cleanup:a") is False
    await asyncio.sleep(0.05)

    assert fired == ["b"]


@pytest.mark.asyncio
async def test_async_callback_is_awaited():
    scheduler = TaskScheduler()
    done = asyncio.Event()

    async def callback():
        done.set()

    scheduler.call_later("t", 0, callback)
    await asyncio.wait_for(done.wait(), timeout=1)


@pytest.mark.asyncio
async def test_failing_timer_is_logged_not_raised(caplog):
    scheduler = TaskScheduler()

    def boom():
        raise RuntimeError("bad timer")

    with caplog.at_level(logging.ERROR):
        task = scheduler.call_later("t", 0, boom)
        await task

    assert "bad timer" in caplog.text


@pytest.mark.asyncio
async def test_spawned_failure_is_logged(caplog):
    scheduler = TaskScheduler()

    async def fails():
        raise ValueError("spawned failure")

    with caplog.at_level(logging.ERROR):
        task = scheduler.spawn(fails(), name="bg")
        await asyncio.gather(task, return_exceptions=True)
        await asyncio.sleep(0)

    assert "spawned failure" in caplog.text


@pytest.mark.asyncio
async def test_shutdown_cancels_pending():
    scheduler = TaskScheduler()
    fired = []
    scheduler.call_later("t", 10, lambda: fired.append(1))
    scheduler.spawn(asyncio.sleep(10), name="sleeper")
    assert scheduler.pending() == 1

    await scheduler.shutdown()

    assert scheduler.pending() == 0
    assert fired == []
