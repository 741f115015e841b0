"""
Twitter/X handler backed by the FxTwitter JSON API.

Request:  GET {api}/{username}/status/{status_id}
Response: {"code": 200, "tweet": {"text", "created_at", "author": {...},
           "media": {"photos": [...], "videos": [...]}, "possibly_sensitive",
           "likes", "retweets", "views"}}
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from ...exceptions import APIError, UpstreamTimeout
from ...http_client import SharedHttpClient
from ...retry_utils import MIRROR_API_RETRY_CONFIG, with_retry
from ...utils.logging import get_logger
from ..types import COLOR_TWITTER, EmbedAuthor, EmbedData, EmbedVideo, Engagement, Platform, VideoVariant
from .base import MatchGroups, PlatformHandler, compile_patterns

logger = get_logger(__name__)

VIDEO_CONTAINER = "video/mp4"


class TwitterHandler(PlatformHandler):
    platform = Platform.TWITTER
    patterns = compile_patterns(
        r"https?://(?:www\.)?(?:twitter\.com|x\.com)/(?P<username>\w+)/status/(?P<status_id>\d+)",
        r"https?://(?:mobile\.)?(?:twitter\.com|x\.com)/(?P<username>\w+)/status/(?P<status_id>\d+)",
        r"https?://(?:www\.)?(?:vxtwitter\.com|fxtwitter\.com|fixupx\.com|fixvx\.com|twittpr\.com)"
        r"/(?P<username>\w+)/status/(?P<status_id>\d+)",
    )

    def __init__(self, http: SharedHttpClient, api_base: str = "https://api.fxtwitter.com", timeout_s: float = 8.0):
        self.http = http
        self.api_base = api_base.rstrip("/")
        self.timeout_s = timeout_s

    @with_retry(MIRROR_API_RETRY_CONFIG)
    async def _fetch_tweet(self, username: str, status_id: str) -> Dict[str, Any]:
        api_url = f"{self.api_base}/{username}/status/{status_id}"
        response = await self.http.get(api_url, timeout=self.timeout_s)
        if response.status_code != 200:
            raise APIError(f"FxTwitter returned HTTP {response.status_code}", status_code=response.status_code)

        data = response.json()
        tweet = data.get("tweet")
        if data.get("code") != 200 or not tweet:
            # Body-level errors (deleted/private tweets) are permanent
            raise APIError(f"FxTwitter error: {data.get('message')}", status_code=404)
        return tweet

    async def fetch_embed(self, groups: MatchGroups, url: str) -> Optional[EmbedData]:
        username = groups.get("username")
        status_id = groups.get("status_id")
        if not username or not status_id:
            logger.debug(f"Could not extract username or status id from {url}", extra={"subsys": "embedfix"})
            return None

        try:
            tweet = await self._fetch_tweet(username, status_id)
            return self._to_embed(tweet, url)
        except UpstreamTimeout:
            logger.info(
                f"⏱️ FxTwitter timed out for {url}",
                extra={"subsys": "embedfix", "event": "fetch_timeout", "detail": {"platform": "twitter", "url": url}},
            )
        except APIError as e:
            logger.info(
                f"⚠️ FxTwitter failed for {url}: {e}",
                extra={
                    "subsys": "embedfix",
                    "event": "fetch_failed",
                    "detail": {"platform": "twitter", "url": url, "status": e.status_code},
                },
            )
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            logger.warning(
                f"⚠️ Error fetching {url}: {e}",
                extra={"subsys": "embedfix", "event": "fetch_error", "detail": {"platform": "twitter", "url": url}},
            )
        return None

    def _to_embed(self, tweet: Dict[str, Any], url: str) -> EmbedData:
        author = tweet.get("author") or {}
        media = tweet.get("media") or {}
        screen_name = author.get("screen_name") or ""

        images = tuple(p["url"] for p in media.get("photos") or [] if p.get("url"))
        videos = tuple(self._to_video(v) for v in media.get("videos") or [] if v.get("url"))

        engagement = None
        if any(k in tweet for k in ("likes", "retweets", "views")):
            engagement = Engagement(
                likes=tweet.get("likes"),
                retweets=tweet.get("retweets"),
                views=tweet.get("views"),
            )

        return EmbedData(
            platform=Platform.TWITTER,
            author=EmbedAuthor(
                name=author.get("name") or screen_name,
                username=screen_name,
                url=f"https://twitter.com/{screen_name}",
                icon_url=author.get("avatar_url"),
            ),
            color=COLOR_TWITTER,
            original_url=url,
            images=images,
            videos=videos,
            description=tweet.get("text"),
            timestamp=tweet.get("created_at"),
            is_nsfw=bool(tweet.get("possibly_sensitive")),
            engagement=engagement,
        )

    @staticmethod
    def _to_video(video: Dict[str, Any]) -> EmbedVideo:
        variants: List[VideoVariant] = [
            VideoVariant(url=v["url"], bitrate=v.get("bitrate"), content_type=v.get("content_type"))
            for v in video.get("variants") or []
            if v.get("url") and v.get("content_type") == VIDEO_CONTAINER
        ]
        variants.sort(key=lambda v: v.bitrate or 0, reverse=True)
        return EmbedVideo(
            url=video["url"],
            thumbnail=video.get("thumbnail_url"),
            variants=tuple(variants),
            type=video.get("type"),
        )
