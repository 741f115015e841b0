"""Builds the discord.Embed cards and text notices posted by the pipeline."""
from __future__ import annotations

import re
import time
from datetime import datetime
from typing import List, Optional

import discord

from .types import TWITTER_ICON_URL, EmbedData, Platform

MAX_DESCRIPTION = 4096
FIXUP_FALLBACK_NOTICE = (
    "⚠️ Couldn't process the fixup link. Try using the original `twitter.com` or `x.com` URL "
    "instead for embed enhancement."
)

_CANONICAL_TWITTER = re.compile(r"https?://(?:www\.)?(?:twitter\.com|x\.com)", re.IGNORECASE)
_MIRROR_TWITTER = re.compile(
    r"https?://(?:www\.)?(?:vxtwitter|fxtwitter|fixupx|fixvx|twittpr)\.com", re.IGNORECASE
)
_URL_ONLY = re.compile(r"^https?://")


def format_number(num: int) -> str:
    """Compact counts: 1234 -> 1.2K, 1234567 -> 1.2M."""
    if num >= 1_000_000:
        return f"{num / 1_000_000:.1f}".removesuffix(".0") + "M"
    if num >= 1_000:
        return f"{num / 1_000:.1f}".removesuffix(".0") + "K"
    return str(num)


def parse_timestamp(value: str) -> Optional[datetime]:
    """Accept ISO-8601 (with or without "Z") and the RFC 2822 dates FxTwitter emits."""
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        pass
    try:
        return datetime.strptime(value, "%a %b %d %H:%M:%S %z %Y")
    except ValueError:
        return None


def relative_time(iso_timestamp: str, now: Optional[float] = None) -> str:
    shared = parse_timestamp(iso_timestamp)
    if shared is None:
        return "a while ago"
    now = time.time() if now is None else now
    elapsed = max(0, int(now - shared.timestamp()))
    hours, remainder = divmod(elapsed, 3600)
    minutes = remainder // 60
    if hours > 0:
        return f"{hours}h {minutes}m ago"
    return f"{minutes}m ago"


def message_link(guild_id: str, channel_id: str, message_id: str) -> str:
    return f"https://discord.com/channels/{guild_id}/{channel_id}/{message_id}"


def duplicate_notice(guild_id: str, channel_id: str, message_id: str, shared_at: str, now: Optional[float] = None) -> str:
    link = message_link(guild_id, channel_id, message_id)
    return f"🔄 This was shared {relative_time(shared_at, now)} → [Jump to original]({link})"


def skipped_suffix(skipped: int) -> str:
    return f"...and {skipped} more {'link' if skipped == 1 else 'links'}"


def video_fallback_url(original_url: str, fallback_base: str) -> str:
    """Point a twitter/x (or mirror) status URL at a host Discord can embed natively."""
    url = _CANONICAL_TWITTER.sub(fallback_base, original_url, count=1)
    return _MIRROR_TWITTER.sub(fallback_base, url, count=1)


def _engagement_fields(embed: discord.Embed, data: EmbedData) -> None:
    if data.platform != Platform.TWITTER or data.engagement is None:
        return
    engagement = data.engagement
    if engagement.likes is not None:
        embed.add_field(name="❤️ Likes", value=format_number(engagement.likes), inline=True)
    if engagement.retweets is not None:
        embed.add_field(name="🔁 Retweets", value=format_number(engagement.retweets), inline=True)
    if engagement.views:
        embed.add_field(name="👁️ Views", value=format_number(engagement.views), inline=True)


def _decorate(embed: discord.Embed, data: EmbedData, author_name: str) -> None:
    embed.set_author(name=author_name, url=data.author.url, icon_url=data.author.icon_url)
    if data.description and not _URL_ONLY.match(data.description):
        embed.description = data.description[:MAX_DESCRIPTION]
    _engagement_fields(embed, data)
    if data.platform == Platform.TWITTER:
        embed.set_footer(text="Twitter", icon_url=TWITTER_ICON_URL)
    if data.timestamp:
        embed.timestamp = parse_timestamp(data.timestamp)


def build_card(data: EmbedData, image_index: int = 0) -> discord.Embed:
    """One card per image. All cards share ``url`` so Discord groups them; only the first carries metadata."""
    embed = discord.Embed(color=data.color, url=data.original_url)
    if image_index == 0:
        _decorate(embed, data, f"@{data.author.username}")
    if image_index < len(data.images):
        embed.set_image(url=data.images[image_index])
    return embed


def build_cards(data: EmbedData, max_images: int, room: int) -> List[discord.Embed]:
    """Cards for one post: at least one for text-only posts, never more than ``room``."""
    count = min(max(len(data.images), 1), max_images, max(room, 0))
    return [build_card(data, i) for i in range(count)]


def build_video_card(data: EmbedData, filename: str) -> discord.Embed:
    """Metadata card pointing at a video sent alongside it as ``filename``."""
    embed = discord.Embed(color=data.color, url=data.original_url)
    _decorate(embed, data, f"@{data.author.username}")
    # Embed exposes no setter for video
    payload = embed.to_dict()
    payload["video"] = {"url": f"attachment://{filename}"}
    return discord.Embed.from_dict(payload)


def build_upload_card(data: EmbedData, image_url: str, first: bool) -> discord.Embed:
    embed = discord.Embed(color=data.color, url=data.original_url)
    if first:
        _decorate(embed, data, data.author.name)
    embed.set_image(url=image_url)
    return embed
