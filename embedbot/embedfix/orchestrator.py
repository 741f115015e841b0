"""
Message pipeline for embed enhancement.

``process_message`` is the single entry point for new messages:

    fast-path reject -> upload batcher (media, no links)
                     -> rate limit -> match URLs -> resolve first URL
                     -> duplicate check -> resolve the rest concurrently
                     -> reply with cards / rewrite links / video attachment
                     -> suppress the original previews -> record the share

Every component is injected so each can be tested alone; ``build`` wires the
production set from settings.
"""
from __future__ import annotations

import asyncio
import io
import time
from typing import Callable, List, Optional, Sequence, Set

import discord

from ..exceptions import StorageError
from ..http_client import SharedHttpClient
from ..metrics import (
    METRIC_BREAKER_REJECTIONS,
    METRIC_CACHE_HITS,
    METRIC_DUPLICATES,
    METRIC_RATE_LIMITED,
    METRIC_RESOLVE_SECONDS,
    METRIC_URLS_FAILED,
    METRIC_URLS_RESOLVED,
    METRIC_URLS_SKIPPED,
    Metrics,
    define_embedfix_metrics,
)
from ..metrics.null_metrics import NoopMetrics
from ..utils.logging import get_logger
from .cache import EmbedCache
from .chat import ChatMessage
from .circuit_breaker import CircuitBreaker
from .handlers import InstagramHandler, PixivHandler, TwitterHandler
from .ledger import VoteLedger
from .matcher import UrlMatcher
from .media import MediaFetcher
from .rate_limiter import RateLimiter
from .render import (
    FIXUP_FALLBACK_NOTICE,
    build_cards,
    build_video_card,
    duplicate_notice,
    skipped_suffix,
    video_fallback_url,
)
from .scheduler import TaskScheduler
from .settings import EmbedFixSettings
from .storage import ObjectStore
from .types import FIXUP_DOMAINS, ArtworkShare, EmbedData, MatchedUrl
from .uploads import UploadBatcher, has_media

logger = get_logger(__name__)

REACTIONS = ("❤️", "✉️")


def is_fixup_url(url: str) -> bool:
    lowered = url.lower()
    return any(domain in lowered for domain in FIXUP_DOMAINS)


class EmbedFixOrchestrator:
    def __init__(
        self,
        settings: EmbedFixSettings,
        matcher: UrlMatcher,
        cache: EmbedCache,
        breaker: CircuitBreaker,
        limiter: RateLimiter,
        media: MediaFetcher,
        scheduler: TaskScheduler,
        ledger: Optional[VoteLedger] = None,
        uploads: Optional[UploadBatcher] = None,
        metrics: Optional[Metrics] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.matcher = matcher
        self.cache = cache
        self.breaker = breaker
        self.limiter = limiter
        self.media = media
        self.scheduler = scheduler
        self.ledger = ledger
        self.uploads = uploads
        self.metrics = metrics or NoopMetrics()
        self._clock = clock
        self._allowed_channels = {c.lower() for c in settings.allowed_channels}

    @classmethod
    def build(
        cls,
        settings: EmbedFixSettings,
        http: SharedHttpClient,
        store: Optional[ObjectStore] = None,
        metrics: Optional[Metrics] = None,
        clock: Callable[[], float] = time.time,
    ) -> "EmbedFixOrchestrator":
        """Wire the production component set. Without a store, voting and upload batching are off."""
        metrics = metrics or NoopMetrics()
        define_embedfix_metrics(metrics)

        matcher = UrlMatcher()
        matcher.register(TwitterHandler(http, settings.twitter_api, settings.api_timeout_s))
        matcher.register(PixivHandler(settings.pixiv_proxy))
        matcher.register(InstagramHandler(settings.instagram_proxy))

        scheduler = TaskScheduler()
        media = MediaFetcher(
            http,
            max_video_bytes=settings.max_video_bytes,
            probe_timeout_s=settings.video_probe_timeout_s,
            download_timeout_s=settings.video_download_timeout_s,
        )

        ledger = None
        uploads = None
        if store is not None:
            ledger = VoteLedger(store, settings.votes_key, settings.votes_cache_ttl_s, clock=clock)
            if settings.cdn_base_url:
                uploads = UploadBatcher(
                    store, media, scheduler, settings, settings.cdn_base_url, metrics=metrics, clock=clock
                )
            else:
                logger.warning("⚠️ CDN_DOMAIN_URL not set; upload batching disabled", extra={"subsys": "embedfix"})

        return cls(
            settings=settings,
            matcher=matcher,
            cache=EmbedCache(
                settings.cache_ttl_s,
                settings.cache_max_size,
                settings.negative_cache_ttl_s,
                settings.cache_sweep_interval_s,
                clock=clock,
            ),
            breaker=CircuitBreaker(settings.breaker_threshold, settings.breaker_cooldown_s, clock=clock),
            limiter=RateLimiter(
                settings.guild_rate_limit,
                settings.user_rate_limit,
                settings.rate_window_s,
                settings.rate_sweep_interval_s,
                clock=clock,
            ),
            media=media,
            scheduler=scheduler,
            ledger=ledger,
            uploads=uploads,
            metrics=metrics,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        self.cache.start()
        self.limiter.start()
        if self.uploads is not None:
            self.uploads.start()
        logger.info(
            f"✅ Embed pipeline started (platforms: {', '.join(self.supported_platforms())})",
            extra={"subsys": "embedfix", "event": "started"},
        )

    async def stop(self) -> None:
        self.cache.stop()
        self.limiter.stop()
        if self.uploads is not None:
            await self.uploads.stop()
        await self.scheduler.shutdown()
        logger.info("🛑 Embed pipeline stopped", extra={"subsys": "embedfix", "event": "stopped"})

    # ------------------------------------------------------------------
    # Single-URL helpers
    # ------------------------------------------------------------------

    def is_url_supported(self, url: str) -> bool:
        return self.matcher.match(url) is not None

    def supported_platforms(self) -> List[str]:
        return [h.platform.value for h in self.matcher.handlers]

    async def resolve_url_string(self, url: str) -> Optional[EmbedData]:
        matched = self.matcher.match(url)
        if matched is None:
            return None
        return await self.resolve_url(matched)

    async def resolve_url(self, matched: MatchedUrl) -> Optional[EmbedData]:
        """Breaker, then positive cache, then negative cache, then the handler."""
        platform = matched.platform.value
        if self.breaker.is_open(platform):
            self.metrics.inc(METRIC_BREAKER_REJECTIONS, labels={"platform": platform})
            logger.debug(
                f"Circuit open for {platform}, skipping {matched.url}",
                extra={"subsys": "embedfix", "event": "breaker_skip", "detail": {"url": matched.url}},
            )
            return None

        key = EmbedCache.key_for(platform, matched.url)
        cached = self.cache.get(key)
        if cached is not None:
            self.metrics.inc(METRIC_CACHE_HITS)
            return cached
        if self.cache.is_negatively_cached(key):
            return None

        started = time.perf_counter()
        try:
            data = await matched.handler.fetch_embed(matched.match_groups, matched.url)
        except Exception as e:
            logger.error(
                f"❌ Handler for {platform} raised on {matched.url}: {e}",
                exc_info=True,
                extra={"subsys": "embedfix", "event": "handler_error", "detail": {"url": matched.url}},
            )
            data = None
        self.metrics.observe(METRIC_RESOLVE_SECONDS, time.perf_counter() - started, labels={"platform": platform})

        if data is None:
            self.cache.set_negative(key)
            self.breaker.record_failure(platform)
            self.metrics.inc(METRIC_URLS_FAILED, labels={"platform": platform})
            return None

        self.cache.set(key, data)
        self.breaker.record_success(platform)
        self.metrics.inc(METRIC_URLS_RESOLVED, labels={"platform": platform})
        return data

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def _in_allowed_channel(self, message: ChatMessage) -> bool:
        return (message.channel_name or "").lower() in self._allowed_channels

    async def process_message(self, message: ChatMessage) -> None:
        if message.author.is_bot or message.guild_id is None:
            return

        has_urls = "http" in (message.content or "")
        has_uploads = has_media(message.attachments)
        if not has_urls and not has_uploads:
            return
        if not self._in_allowed_channel(message):
            return

        if has_uploads and not has_urls:
            if self.uploads is not None:
                await self.uploads.process(message)
            return

        if not self.limiter.check(message.guild_id, message.author.id):
            self.metrics.inc(METRIC_RATE_LIMITED)
            logger.debug(
                "Rate limited",
                extra={
                    "subsys": "embedfix",
                    "event": "rate_limited",
                    "guild_id": message.guild_id,
                    "user_id": message.author.id,
                },
            )
            return

        matches = self.matcher.match_all(message.content)
        if not matches:
            return
        await self._process_matches(message, matches)

    async def process_message_edit(self, before_content: Optional[str], message: ChatMessage) -> None:
        """Handle links newly added by an edit, within the edit window."""
        if "http" not in (message.content or ""):
            return
        if message.author.is_bot or message.guild_id is None:
            return
        if not self._in_allowed_channel(message):
            return
        if self._clock() - message.created_at > self.settings.edit_window_s:
            return

        matches = self.matcher.match_all(message.content)
        if not matches:
            return

        # Discord regenerates previews on every edit
        if message.has_previews:
            await self._suppress(message)
        self._schedule_resuppress(message)

        old_urls: Set[str] = {m.url for m in self.matcher.match_all(before_content or "")}
        new_matches = [m for m in matches if m.url not in old_urls]
        if not new_matches:
            return

        if not self.limiter.check(message.guild_id, message.author.id):
            self.metrics.inc(METRIC_RATE_LIMITED)
            return
        await self._process_matches(message, new_matches)

    # ------------------------------------------------------------------
    # URL path
    # ------------------------------------------------------------------

    async def _process_matches(self, message: ChatMessage, matches: List[MatchedUrl]) -> None:
        first = await self.resolve_url(matches[0])
        if first is not None and await self._answer_duplicate(message, first):
            return

        limited = matches[: self.settings.max_embeds_per_message]
        skipped = len(matches) - len(limited)
        if skipped:
            self.metrics.inc(METRIC_URLS_SKIPPED, value=skipped)

        rest = await asyncio.gather(*(self.resolve_url(m) for m in limited[1:]))
        results = [first, *rest]

        resolved = [r for r in results if r is not None]
        failed_fixups = [m.url for m, r in zip(limited, results) if r is None and is_fixup_url(m.url)]

        if not resolved:
            if failed_fixups:
                await self._send_fixup_fallback(message)
            return
        await self._send_response(message, resolved, skipped)

    async def _answer_duplicate(self, message: ChatMessage, data: EmbedData) -> bool:
        if self.ledger is None:
            return False
        artwork_id = VoteLedger.generate_artwork_id(data.platform, data.original_url)
        try:
            check = await self.ledger.check_duplicate(artwork_id, message.guild_id, self.settings.duplicate_window_s)
        except (StorageError, ValueError) as e:
            logger.warning(
                f"⚠️ Duplicate check failed, continuing: {e}",
                extra={"subsys": "embedfix", "event": "duplicate_check_failed", "guild_id": message.guild_id},
            )
            return False
        if not check.is_duplicate or check.original_share is None:
            return False

        share = check.original_share
        self.metrics.inc(METRIC_DUPLICATES)
        await self._suppress(message)
        content = duplicate_notice(message.guild_id, share.channel_id, share.message_id, share.shared_at, self._clock())
        try:
            await message.reply(content=content)
        except discord.HTTPException as e:
            logger.info(f"Could not send duplicate notice: {e}", extra={"subsys": "embedfix"})
        logger.info(
            f"🔄 Repost of {artwork_id} answered with duplicate notice",
            extra={"subsys": "embedfix", "event": "duplicate", "guild_id": message.guild_id},
        )
        return True

    async def _send_fixup_fallback(self, message: ChatMessage) -> None:
        try:
            await message.reply(content=FIXUP_FALLBACK_NOTICE)
        except discord.HTTPException as e:
            logger.info(f"Could not send fixup fallback: {e}", extra={"subsys": "embedfix"})

    async def _send_response(self, message: ChatMessage, results: Sequence[EmbedData], skipped: int) -> None:
        embeds: List[discord.Embed] = []
        rewrites: List[str] = []
        files: List[discord.File] = []
        fallbacks: List[str] = []

        for data in results:
            if data.use_url_rewrite and data.rewritten_url:
                rewrites.append(data.rewritten_url)
            elif data.videos and not data.images:
                downloaded = None
                if len(embeds) < self.settings.max_cards_per_reply:
                    downloaded = await self.media.download_video(data.videos[0])
                if downloaded is None:
                    fallbacks.append(video_fallback_url(data.original_url, self.settings.video_fallback))
                else:
                    files.append(discord.File(io.BytesIO(downloaded.data), filename=downloaded.filename))
                    embeds.append(build_video_card(data, downloaded.filename))
            else:
                room = self.settings.max_cards_per_reply - len(embeds)
                embeds.extend(build_cards(data, self.settings.max_images_per_post, room))

        content = "\n".join(rewrites + fallbacks)
        if skipped:
            content = f"{content}\n{skipped_suffix(skipped)}" if content else skipped_suffix(skipped)

        has_preview = bool(embeds or files)

        if message.has_previews:
            await self._suppress(message)
        try:
            reply = await message.reply(content=content or None, embeds=embeds or None, files=files or None)
        except discord.HTTPException as e:
            logger.error(
                f"❌ Failed to send preview reply: {e}",
                extra={"subsys": "embedfix", "event": "reply_failed", "guild_id": message.guild_id},
            )
            return
        self._schedule_resuppress(message)

        if has_preview and not fallbacks:
            for emoji in REACTIONS:
                try:
                    await reply.react(emoji)
                except discord.HTTPException as e:
                    logger.debug(f"Could not react {emoji}: {e}", extra={"subsys": "embedfix"})

        if has_preview:
            await self._record_share(message, results[0], reply.id)

    async def _record_share(self, message: ChatMessage, primary: EmbedData, reply_id: str) -> None:
        if self.ledger is None:
            return
        artwork_id = VoteLedger.generate_artwork_id(primary.platform, primary.original_url)
        share = ArtworkShare(
            original_url=primary.original_url,
            platform=primary.platform.value,
            artist_username=primary.author.username,
            artist_name=primary.author.name,
            guild_id=message.guild_id,
            channel_id=message.channel_id,
            message_id=reply_id,
            shared_by=message.author.id,
        )
        try:
            await self.ledger.record_artwork(artwork_id, share)
        except (StorageError, ValueError) as e:
            logger.error(
                f"❌ Failed to record artwork {artwork_id}: {e}",
                extra={"subsys": "embedfix", "event": "record_failed", "guild_id": message.guild_id},
            )

    # ------------------------------------------------------------------
    # Preview suppression
    # ------------------------------------------------------------------

    async def _suppress(self, message: ChatMessage) -> None:
        try:
            await message.suppress_previews()
        except discord.HTTPException as e:
            logger.debug(f"Could not suppress previews: {e}", extra={"subsys": "embedfix"})

    def _schedule_resuppress(self, message: ChatMessage) -> None:
        # Discord attaches link previews asynchronously, sometimes after our reply
        self.scheduler.call_later(
            f"resuppress:{message.id}", self.settings.resuppress_delay_s, lambda: self._suppress(message)
        )
