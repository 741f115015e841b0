"""Pixiv handler: rewrites artwork links to a preview proxy, no network call."""
from __future__ import annotations

import re
from typing import Optional

from ..types import COLOR_PIXIV, EmbedAuthor, EmbedData, Platform
from .base import MatchGroups, PlatformHandler, compile_patterns

_ILLUST_ID = re.compile(r"illust_id=(\d+)")


class PixivHandler(PlatformHandler):
    platform = Platform.PIXIV
    patterns = compile_patterns(
        r"https?://(?:www\.)?pixiv\.net/(?:en/)?artworks/(?P<artwork_id>\d+)",
        r"https?://(?:www\.)?pixiv\.net/member_illust\.php\?\S*?illust_id=(?P<artwork_id>\d+)",
        r"https?://(?:www\.)?phixiv\.net/artworks/(?P<artwork_id>\d+)",
    )

    def __init__(self, proxy_base: str = "https://phixiv.net"):
        self.proxy_base = proxy_base.rstrip("/")

    async def fetch_embed(self, groups: MatchGroups, url: str) -> Optional[EmbedData]:
        artwork_id = groups.get("artwork_id")
        if not artwork_id:
            m = _ILLUST_ID.search(url)
            artwork_id = m.group(1) if m else None
        if not artwork_id:
            return None

        # Canonical host keeps cache and duplicate keys stable across mirrors
        canonical_url = f"https://www.pixiv.net/artworks/{artwork_id}"
        return EmbedData(
            platform=Platform.PIXIV,
            author=EmbedAuthor(name="Pixiv Artist", username="pixiv", url=canonical_url),
            color=COLOR_PIXIV,
            original_url=canonical_url,
            use_url_rewrite=True,
            rewritten_url=f"{self.proxy_base}/artworks/{artwork_id}",
        )
