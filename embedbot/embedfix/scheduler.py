"""
Timer and background-task management for the embed pipeline.

``TaskScheduler`` owns one-shot named timers. Each timer is tagged with a
name that embeds the identity of the entity it belongs to (for example
``upload-cleanup:<batch id>``), so re-arming one entity's timer can never
cancel a sibling's. ``PeriodicSweeper`` wraps ``discord.ext.tasks.loop`` for
the fixed-interval sweeps of the cache, rate limiter and upload batcher.
"""
from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Coroutine, Dict, Optional, Set, Union

from discord.ext import tasks

from ..utils.logging import get_logger

logger = get_logger(__name__)

TimerCallback = Callable[[], Union[None, Awaitable[None]]]


class TaskScheduler:
    """Named, cancellable one-shot timers plus fire-and-forget tasks."""

    def __init__(self) -> None:
        self._timers: Dict[str, asyncio.Task] = {}
        self._spawned: Set[asyncio.Task] = set()

    def call_later(self, name: str, delay: float, callback: TimerCallback) -> asyncio.Task:
        """Run ``callback`` after ``delay`` seconds, replacing any timer with the same name."""
        self.cancel(name)
        task = asyncio.get_running_loop().create_task(
            self._run_later(name, delay, callback), name=name
        )
        self._timers[name] = task
        return task

    async def _run_later(self, name: str, delay: float, callback: TimerCallback) -> None:
        await asyncio.sleep(max(0.0, delay))
        if self._timers.get(name) is asyncio.current_task():
            del self._timers[name]
        try:
            result = callback()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(
                f"❌ Timer {name} failed: {e}",
                exc_info=True,
                extra={"subsys": "scheduler", "event": "timer_error", "detail": {"timer": name}},
            )

    def cancel(self, name: str) -> bool:
        task = self._timers.pop(name, None)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    def is_scheduled(self, name: str) -> bool:
        task = self._timers.get(name)
        return task is not None and not task.done()

    def pending(self) -> int:
        return sum(1 for t in self._timers.values() if not t.done())

    def spawn(self, coro: Coroutine[Any, Any, Any], name: Optional[str] = None) -> asyncio.Task:
        """Schedule ``coro`` without awaiting it; failures are logged, never raised."""
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._spawned.add(task)
        task.add_done_callback(self._on_spawned_done)
        return task

    def _on_spawned_done(self, task: asyncio.Task) -> None:
        self._spawned.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                f"❌ Background task {task.get_name()} failed: {exc}",
                exc_info=exc,
                extra={"subsys": "scheduler", "event": "task_error"},
            )

    async def shutdown(self) -> None:
        """Cancel every pending timer and background task."""
        pending = [t for t in list(self._timers.values()) + list(self._spawned) if not t.done()]
        self._timers.clear()
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logger.debug(f"Scheduler stopped ({len(pending)} tasks cancelled)", extra={"subsys": "scheduler"})


class PeriodicSweeper:
    """Runs a synchronous sweep function on a fixed interval."""

    def __init__(self, name: str, interval_s: float, sweep: Callable[[], Any]):
        self.name = name
        self._sweep = sweep
        self._loop = tasks.loop(seconds=interval_s)(self._tick)

    async def _tick(self) -> None:
        try:
            removed = self._sweep()
            if removed:
                logger.debug(
                    f"🧹 {self.name} sweep removed {removed} entries",
                    extra={"subsys": "scheduler", "event": "sweep", "detail": {"sweeper": self.name}},
                )
        except Exception as e:
            logger.error(f"❌ {self.name} sweep failed: {e}", exc_info=True, extra={"subsys": "scheduler"})

    def start(self) -> None:
        if not self._loop.is_running():
            self._loop.start()

    def stop(self) -> None:
        if self._loop.is_running():
            self._loop.cancel()

    def is_running(self) -> bool:
        return self._loop.is_running()
