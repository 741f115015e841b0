"""URL extraction and dispatch to the registered platform handlers."""
from __future__ import annotations

import re
from typing import Dict, List, Optional

from .handlers.base import PlatformHandler
from .types import MatchedUrl, Platform

URL_TOKEN = re.compile(r"https?://[^\s<>\"{}|\\^`\[\]]+", re.IGNORECASE)


class UrlMatcher:
    """Handler registry; the first registered handler that matches a URL wins."""

    def __init__(self) -> None:
        self._handlers: Dict[Platform, PlatformHandler] = {}

    def register(self, handler: PlatformHandler) -> None:
        self._handlers[handler.platform] = handler

    def get_handler(self, platform: Platform) -> Optional[PlatformHandler]:
        return self._handlers.get(platform)

    @property
    def handlers(self) -> List[PlatformHandler]:
        return list(self._handlers.values())

    def match(self, url: str) -> Optional[MatchedUrl]:
        for handler in self._handlers.values():
            groups = handler.match(url)
            if groups is not None:
                return MatchedUrl(url=url, platform=handler.platform, match_groups=groups, handler=handler)
        return None

    def match_all(self, text: str) -> List[MatchedUrl]:
        """Every distinct recognized URL in ``text``, in order of first appearance."""
        if not text or "http" not in text.lower():
            return []

        matches: List[MatchedUrl] = []
        seen = set()
        for url in URL_TOKEN.findall(text):
            if url in seen:
                continue
            seen.add(url)
            matched = self.match(url)
            if matched is not None:
                matches.append(matched)
        return matches

    def clear(self) -> None:
        self._handlers.clear()
