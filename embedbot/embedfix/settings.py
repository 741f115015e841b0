"""Typed settings for the embed pipeline, built from the flat config dict."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class EmbedFixSettings:
    allowed_channels: Tuple[str, ...] = ("art", "nsfw")
    api_timeout_s: float = 8.0

    guild_rate_limit: int = 15
    user_rate_limit: int = 5
    rate_window_s: float = 60.0

    cache_ttl_s: float = 30 * 60
    cache_max_size: int = 500
    negative_cache_ttl_s: float = 5 * 60
    cache_sweep_interval_s: float = 10 * 60
    rate_sweep_interval_s: float = 5 * 60

    breaker_threshold: int = 5
    breaker_cooldown_s: float = 2 * 60

    max_embeds_per_message: int = 4
    max_images_per_post: int = 4
    max_cards_per_reply: int = 10
    max_video_bytes: int = 25 * 1024 * 1024
    video_probe_timeout_s: float = 5.0
    video_download_timeout_s: float = 30.0
    duplicate_window_s: float = 24 * 60 * 60
    edit_window_s: float = 72 * 60 * 60
    resuppress_delay_s: float = 1.5

    twitter_api: str = "https://api.fxtwitter.com"
    pixiv_proxy: str = "https://phixiv.net"
    instagram_proxy: str = "ddinstagram.com"
    video_fallback: str = "https://vxtwitter.com"

    upload_batch_window_s: float = 120.0
    upload_cleanup_buffer_s: float = 600.0
    upload_max_images_per_batch: int = 10
    upload_duplicate_window_s: float = 24 * 60 * 60
    upload_prefix: str = "temp/uploads"
    upload_sweep_interval_s: float = 10 * 60
    cdn_base_url: Optional[str] = None

    votes_key: str = "data/embed-fix/embed-votes.json"
    votes_cache_ttl_s: float = 30.0

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "EmbedFixSettings":
        """Build settings from ``load_config()`` output; missing keys keep defaults."""
        defaults = cls()

        def pick(key: str, fallback):
            value = config.get(key)
            return fallback if value is None else value

        channels = config.get("EMBEDFIX_ALLOWED_CHANNELS") or defaults.allowed_channels
        cdn = config.get("CDN_DOMAIN_URL")

        return cls(
            allowed_channels=tuple(c.lower() for c in channels),
            api_timeout_s=float(pick("EMBEDFIX_API_TIMEOUT_S", defaults.api_timeout_s)),
            guild_rate_limit=int(pick("EMBEDFIX_GUILD_RATE_LIMIT", defaults.guild_rate_limit)),
            user_rate_limit=int(pick("EMBEDFIX_USER_RATE_LIMIT", defaults.user_rate_limit)),
            rate_window_s=float(pick("EMBEDFIX_RATE_WINDOW_S", defaults.rate_window_s)),
            cache_ttl_s=float(pick("EMBEDFIX_CACHE_TTL_S", defaults.cache_ttl_s)),
            cache_max_size=int(pick("EMBEDFIX_CACHE_MAX_SIZE", defaults.cache_max_size)),
            negative_cache_ttl_s=float(pick("EMBEDFIX_NEGATIVE_CACHE_TTL_S", defaults.negative_cache_ttl_s)),
            breaker_threshold=int(pick("EMBEDFIX_BREAKER_THRESHOLD", defaults.breaker_threshold)),
            breaker_cooldown_s=float(pick("EMBEDFIX_BREAKER_COOLDOWN_S", defaults.breaker_cooldown_s)),
            max_embeds_per_message=int(pick("EMBEDFIX_MAX_EMBEDS_PER_MESSAGE", defaults.max_embeds_per_message)),
            max_video_bytes=int(pick("EMBEDFIX_MAX_VIDEO_BYTES", defaults.max_video_bytes)),
            duplicate_window_s=float(pick("EMBEDFIX_DUPLICATE_WINDOW_S", defaults.duplicate_window_s)),
            edit_window_s=float(pick("EMBEDFIX_EDIT_WINDOW_S", defaults.edit_window_s)),
            twitter_api=str(pick("EMBEDFIX_TWITTER_API", defaults.twitter_api)).rstrip("/"),
            pixiv_proxy=str(pick("EMBEDFIX_PIXIV_PROXY", defaults.pixiv_proxy)).rstrip("/"),
            instagram_proxy=str(pick("EMBEDFIX_INSTAGRAM_PROXY", defaults.instagram_proxy)),
            video_fallback=str(pick("EMBEDFIX_VIDEO_FALLBACK", defaults.video_fallback)).rstrip("/"),
            upload_batch_window_s=float(pick("UPLOAD_BATCH_WINDOW_S", defaults.upload_batch_window_s)),
            upload_cleanup_buffer_s=float(pick("UPLOAD_CLEANUP_BUFFER_S", defaults.upload_cleanup_buffer_s)),
            upload_max_images_per_batch=int(
                pick("UPLOAD_MAX_IMAGES_PER_BATCH", defaults.upload_max_images_per_batch)
            ),
            upload_duplicate_window_s=float(
                pick("UPLOAD_DUPLICATE_WINDOW_S", defaults.upload_duplicate_window_s)
            ),
            upload_prefix=str(pick("UPLOAD_PREFIX", defaults.upload_prefix)).strip("/"),
            cdn_base_url=cdn.rstrip("/") if cdn else None,
            votes_key=str(pick("VOTES_KEY", defaults.votes_key)),
            votes_cache_ttl_s=float(pick("VOTES_CACHE_TTL_S", defaults.votes_cache_ttl_s)),
        )
