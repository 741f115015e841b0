"""Per-guild and per-(guild, user) fixed-window rate limiting."""
from __future__ import annotations

import time
from typing import Callable, Dict

from ..utils.logging import get_logger
from .scheduler import PeriodicSweeper
from .types import RateLimitEntry

logger = get_logger(__name__)


class RateLimiter:
    """Two independent fixed windows; an expired window restarts at count 1.

    ``check`` both tests and consumes budget, so callers must only call it
    for work they are about to do.
    """

    def __init__(
        self,
        guild_limit: int = 15,
        user_limit: int = 5,
        window_s: float = 60.0,
        sweep_interval_s: float = 5 * 60,
        clock: Callable[[], float] = time.time,
    ):
        self.guild_limit = guild_limit
        self.user_limit = user_limit
        self.window_s = window_s
        self._clock = clock
        self._guilds: Dict[str, RateLimitEntry] = {}
        self._users: Dict[str, RateLimitEntry] = {}
        self._sweeper = PeriodicSweeper("rate-limiter", sweep_interval_s, self.sweep)

    def _has_budget(self, entry: RateLimitEntry, limit: int, now: float) -> bool:
        if now - entry.window_start >= self.window_s:
            return True
        return entry.count < limit

    def _consume(self, table: Dict[str, RateLimitEntry], key: str, now: float) -> None:
        entry = table.get(key)
        if entry is None or now - entry.window_start >= self.window_s:
            table[key] = RateLimitEntry(count=1, window_start=now)
        else:
            entry.count += 1

    def check(self, guild_id: str, user_id: str) -> bool:
        now = self._clock()
        user_key = f"{guild_id}:{user_id}"

        guild_entry = self._guilds.get(guild_id)
        if guild_entry is not None and not self._has_budget(guild_entry, self.guild_limit, now):
            logger.debug(
                f"Guild {guild_id} rate limited",
                extra={"subsys": "embedfix", "event": "rate_limited", "guild_id": guild_id},
            )
            return False

        user_entry = self._users.get(user_key)
        if user_entry is not None and not self._has_budget(user_entry, self.user_limit, now):
            logger.debug(
                f"User {user_id} rate limited in guild {guild_id}",
                extra={"subsys": "embedfix", "event": "rate_limited", "guild_id": guild_id, "user_id": user_id},
            )
            return False

        self._consume(self._guilds, guild_id, now)
        self._consume(self._users, user_key, now)
        return True

    def sweep(self) -> int:
        now = self._clock()
        removed = 0
        for table in (self._guilds, self._users):
            stale = [k for k, e in table.items() if now - e.window_start >= self.window_s]
            for k in stale:
                del table[k]
            removed += len(stale)
        return removed

    def reset(self) -> None:
        self._guilds.clear()
        self._users.clear()

    def start(self) -> None:
        self._sweeper.start()

    def stop(self) -> None:
        self._sweeper.stop()
