"""
Bounded TTL cache for resolved previews, with a separate negative cache.

Capacity is enforced by evicting the oldest inserted entry, which is an
approximate bound rather than strict LRU: reads do not refresh position.
"""
from __future__ import annotations

import time
from collections import OrderedDict
from typing import Callable, Dict, Optional

from ..utils.logging import get_logger
from .scheduler import PeriodicSweeper
from .types import CacheEntry, EmbedData

logger = get_logger(__name__)


class EmbedCache:
    def __init__(
        self,
        ttl_s: float = 30 * 60,
        max_size: int = 500,
        negative_ttl_s: float = 5 * 60,
        sweep_interval_s: float = 10 * 60,
        clock: Callable[[], float] = time.time,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.ttl_s = ttl_s
        self.max_size = max_size
        self.negative_ttl_s = negative_ttl_s
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._negative: Dict[str, float] = {}
        self._sweeper = PeriodicSweeper("embed-cache", sweep_interval_s, self.sweep)

    @staticmethod
    def key_for(platform: str, url: str) -> str:
        return f"{platform}:{url}"

    def get(self, key: str) -> Optional[EmbedData]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            del self._entries[key]
            return None
        return entry.data

    def set(self, key: str, data: EmbedData) -> None:
        now = self._clock()
        if key in self._entries:
            del self._entries[key]
        elif len(self._entries) >= self.max_size:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Cache full, evicted {evicted}", extra={"subsys": "embedfix", "event": "cache_evict"})
        self._entries[key] = CacheEntry(data=data, timestamp=now, expires_at=now + self.ttl_s)

    def set_negative(self, key: str) -> None:
        self._negative[key] = self._clock() + self.negative_ttl_s

    def is_negatively_cached(self, key: str) -> bool:
        expires_at = self._negative.get(key)
        if expires_at is None:
            return False
        if self._clock() >= expires_at:
            del self._negative[key]
            return False
        return True

    def sweep(self) -> int:
        """Drop expired entries from both maps; returns how many were removed."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if now >= e.expires_at]
        for k in expired:
            del self._entries[k]
        expired_neg = [k for k, exp in self._negative.items() if now >= exp]
        for k in expired_neg:
            del self._negative[k]
        return len(expired) + len(expired_neg)

    def clear(self) -> None:
        self._entries.clear()
        self._negative.clear()

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def negative_size(self) -> int:
        return len(self._negative)

    def start(self) -> None:
        self._sweeper.start()

    def stop(self) -> None:
        self._sweeper.stop()
