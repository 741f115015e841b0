"""Base class for platform handlers."""
from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Pattern

from ..types import EmbedData, Platform

MatchGroups = Dict[str, Optional[str]]


class PlatformHandler(ABC):
    """Recognizes one platform's URLs and resolves them to preview metadata.

    ``fetch_embed`` must never raise: upstream failures are logged and
    reported as ``None``.
    """

    platform: Platform
    patterns: List[Pattern[str]]

    def match(self, url: str) -> Optional[MatchGroups]:
        for pattern in self.patterns:
            m = pattern.search(url)
            if m:
                return m.groupdict()
        return None

    @abstractmethod
    async def fetch_embed(self, groups: MatchGroups, url: str) -> Optional[EmbedData]:
        ...


def compile_patterns(*raw: str) -> List[Pattern[str]]:
    return [re.compile(p, re.IGNORECASE) for p in raw]
