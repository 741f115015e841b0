"""Instagram handler: rewrites post/reel/tv links to a preview proxy."""
from __future__ import annotations

from typing import Optional

from ..types import COLOR_INSTAGRAM, EmbedAuthor, EmbedData, Platform
from .base import MatchGroups, PlatformHandler, compile_patterns


class InstagramHandler(PlatformHandler):
    platform = Platform.INSTAGRAM
    patterns = compile_patterns(
        r"https?://(?:www\.)?instagram\.com/(?P<kind>p|reel|tv)/(?P<shortcode>[A-Za-z0-9_-]+)",
        r"https?://(?:www\.)?ddinstagram\.com/(?P<kind>p|reel|tv)/(?P<shortcode>[A-Za-z0-9_-]+)",
    )

    def __init__(self, proxy_host: str = "ddinstagram.com"):
        self.proxy_host = proxy_host.removeprefix("https://").removeprefix("http://").rstrip("/")

    async def fetch_embed(self, groups: MatchGroups, url: str) -> Optional[EmbedData]:
        kind = (groups.get("kind") or "").lower()
        shortcode = groups.get("shortcode")
        if not kind or not shortcode:
            return None

        canonical_url = f"https://www.instagram.com/{kind}/{shortcode}/"
        return EmbedData(
            platform=Platform.INSTAGRAM,
            author=EmbedAuthor(name="Instagram", username="instagram", url=canonical_url),
            color=COLOR_INSTAGRAM,
            original_url=canonical_url,
            use_url_rewrite=True,
            rewritten_url=f"https://{self.proxy_host}/{kind}/{shortcode}/",
        )
