"""Data model for the embed enhancement pipeline."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

if TYPE_CHECKING:
    from .handlers.base import PlatformHandler


class Platform(str, Enum):
    TWITTER = "twitter"
    PIXIV = "pixiv"
    INSTAGRAM = "instagram"
    UPLOAD = "upload"


# Embed colors
COLOR_TWITTER = 0x1DA1F2
COLOR_PIXIV = 0x0096FA
COLOR_INSTAGRAM = 0xE1306C
COLOR_UPLOAD = 0x5865F2

TWITTER_ICON_URL = "https://abs.twimg.com/icons/apple-touch-icon-192x192.png"

# Mirror hosts a user may paste instead of the canonical twitter/x link
FIXUP_DOMAINS = ("vxtwitter.com", "fxtwitter.com", "fixupx.com", "fixvx.com", "twittpr.com")


@dataclass(frozen=True)
class EmbedAuthor:
    name: str
    username: str
    url: str
    icon_url: Optional[str] = None


@dataclass(frozen=True)
class VideoVariant:
    url: str
    bitrate: Optional[int] = None
    content_type: Optional[str] = None


@dataclass(frozen=True)
class EmbedVideo:
    url: str
    thumbnail: Optional[str] = None
    # Sorted by bitrate, highest first
    variants: Tuple[VideoVariant, ...] = ()
    type: Optional[str] = None


@dataclass(frozen=True)
class Engagement:
    likes: Optional[int] = None
    retweets: Optional[int] = None
    views: Optional[int] = None


@dataclass(frozen=True)
class EmbedData:
    """Resolved preview metadata for one URL. Immutable once produced."""

    platform: Platform
    author: EmbedAuthor
    color: int
    original_url: str
    images: Tuple[str, ...] = ()
    videos: Tuple[EmbedVideo, ...] = ()
    description: Optional[str] = None
    timestamp: Optional[str] = None
    is_nsfw: bool = False
    engagement: Optional[Engagement] = None
    use_url_rewrite: bool = False
    rewritten_url: Optional[str] = None


@dataclass(frozen=True)
class MatchedUrl:
    """A URL recognized by one handler during an extraction pass."""

    url: str
    platform: Platform
    match_groups: Dict[str, Optional[str]]
    handler: "PlatformHandler"


@dataclass
class CircuitBreakerState:
    failures: int = 0
    last_failure: float = 0.0
    is_open: bool = False
    open_until: float = 0.0


@dataclass
class CacheEntry:
    data: EmbedData
    timestamp: float
    expires_at: float


@dataclass
class RateLimitEntry:
    count: int
    window_start: float


@dataclass
class StagedImage:
    storage_key: str
    public_url: str
    filename: str


@dataclass
class OriginalShare:
    shared_by: str
    shared_at: str
    message_id: str
    channel_id: str


@dataclass
class DuplicateCheck:
    is_duplicate: bool
    original_share: Optional[OriginalShare] = None


@dataclass
class VoteResult:
    added: bool
    vote_count: int
    changed: bool = True


@dataclass
class ArtworkShare:
    """Everything ``record_artwork`` needs to register a share."""

    original_url: str
    platform: str
    artist_username: str
    artist_name: str
    guild_id: str
    channel_id: str
    message_id: str
    shared_by: str


@dataclass
class UploadAttachment:
    url: str
    filename: str
    content_type: Optional[str] = None


@dataclass
class PeriodStats:
    period: str
    guild_votes: int
    global_votes: int
    # (artwork id, votes), best first
    top_artwork: List[Tuple[str, int]] = field(default_factory=list)
    # (artist username, votes), best first
    top_artists: List[Tuple[str, int]] = field(default_factory=list)
