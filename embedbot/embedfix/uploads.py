"""
Upload batching and the temporary-storage lifecycle for user uploads.

Images from one user in one channel are merged into a batch for a fixed
window. Each image is staged in the object store, re-downloaded from the CDN
edge and re-posted as a native attachment, after which the source message is
deleted. Two timers per batch, both named after the batch id:

    upload-batch:<id>    window           forget the in-memory batch record
    upload-cleanup:<id>  window + buffer  delete the staged objects

Timers hold the batch itself, so a batch superseded by an overflow batch
under the same guild:user key keeps its own cleanup schedule.

Batch capacity is claimed before staging starts, so concurrent uploads from
one user can never push a batch past its maximum. The source message is only
deleted once every one of its images is staged and shown in the new post.
"""
from __future__ import annotations

import asyncio
import io
import mimetypes
import posixpath
import re
import secrets
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

import discord
import httpx

from ..exceptions import APIError, MediaTooLargeError, StorageError, UpstreamTimeout
from ..metrics import METRIC_UPLOAD_BATCHES, Metrics
from ..metrics.null_metrics import NoopMetrics
from ..utils.logging import get_logger
from .chat import ChatAttachment, ChatMessage, PostedMessage
from .media import MediaFetcher
from .render import build_upload_card
from .scheduler import PeriodicSweeper, TaskScheduler
from .settings import EmbedFixSettings
from .storage import ObjectStore
from .types import COLOR_UPLOAD, EmbedAuthor, EmbedData, Platform, StagedImage

logger = get_logger(__name__)

IMAGE_EXT = re.compile(r"\.(jpg|jpeg|png|gif|webp)$", re.IGNORECASE)
VIDEO_EXT = re.compile(r"\.(mp4|webm|mov)$", re.IGNORECASE)
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")

STAGED_ACL = "public-read"
# Attachments per chat message
MAX_ATTACHMENTS = 10
REACTIONS = ("❤️", "✉️")


def is_image(att: ChatAttachment) -> bool:
    return (att.content_type or "").startswith("image/") or bool(IMAGE_EXT.search(att.filename or ""))


def is_video(att: ChatAttachment) -> bool:
    return (att.content_type or "").startswith("video/") or bool(VIDEO_EXT.search(att.filename or ""))


def has_media(attachments: Sequence[ChatAttachment]) -> bool:
    return any(is_image(a) or is_video(a) for a in attachments)


def sanitize_filename(name: str) -> str:
    cleaned = _UNSAFE_CHARS.sub("_", name or "").strip("._")
    return (cleaned or "upload")[:100]


@dataclass(eq=False)
class UploadBatch:
    id: str
    key: str
    guild_id: str
    channel_id: str
    meta: EmbedData
    created_at: float
    images: List[StagedImage] = field(default_factory=list)
    videos: List[str] = field(default_factory=list)
    posted: Optional[PostedMessage] = None
    # Storage keys visible in the current post
    shown: Set[str] = field(default_factory=set)
    # Slots claimed by uploads still being staged
    reserved: int = 0
    cleaned: bool = False
    render_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def batch_timer(self) -> str:
        return f"upload-batch:{self.id}"

    @property
    def cleanup_timer(self) -> str:
        return f"upload-cleanup:{self.id}"


class UploadBatcher:
    def __init__(
        self,
        store: ObjectStore,
        media: MediaFetcher,
        scheduler: TaskScheduler,
        settings: EmbedFixSettings,
        cdn_base_url: str,
        metrics: Optional[Metrics] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.media = media
        self.scheduler = scheduler
        self.settings = settings
        self.cdn_base_url = cdn_base_url.rstrip("/")
        self.metrics = metrics or NoopMetrics()
        self._clock = clock
        self.max_images = min(settings.upload_max_images_per_batch, MAX_ATTACHMENTS)

        self._batches: Dict[str, UploadBatch] = {}
        # Every batch whose staged objects still exist, active or sealed
        self._live: Dict[str, UploadBatch] = {}
        self._recent_uploads: Dict[str, float] = {}
        self._sweeper = PeriodicSweeper("upload-batcher", settings.upload_sweep_interval_s, self.sweep)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        self._sweeper.start()

    async def stop(self) -> None:
        """Stop sweeping and delete every staged object still in the bucket."""
        self._sweeper.stop()
        for batch in list(self._live.values()):
            self.scheduler.cancel(batch.batch_timer)
            self.scheduler.cancel(batch.cleanup_timer)
            await self._cleanup_batch(batch)
        self._batches.clear()

    def get_batch(self, guild_id: str, user_id: str) -> Optional[UploadBatch]:
        return self._batches.get(f"{guild_id}:{user_id}")

    @property
    def live_batches(self) -> List[UploadBatch]:
        return list(self._live.values())

    # ------------------------------------------------------------------
    # Duplicate bookkeeping
    # ------------------------------------------------------------------

    def _is_duplicate(self, guild_id: str, user_id: str, filenames: List[str]) -> bool:
        now = self._clock()
        for name in filenames:
            seen = self._recent_uploads.get(f"{guild_id}:{user_id}:{name}")
            if seen is not None and now - seen < self.settings.upload_duplicate_window_s:
                return True
        return False

    def _record_uploads(self, guild_id: str, user_id: str, filenames: List[str]) -> None:
        now = self._clock()
        for name in filenames:
            self._recent_uploads[f"{guild_id}:{user_id}:{name}"] = now

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def process(self, message: ChatMessage) -> None:
        guild_id = message.guild_id
        if guild_id is None:
            return
        user_id = message.author.id
        key = f"{guild_id}:{user_id}"
        now = self._clock()

        images = [a for a in message.attachments if is_image(a)]
        videos = [a for a in message.attachments if not is_image(a) and is_video(a)]
        if not images and not videos:
            return
        filenames = [a.filename or "unknown" for a in images + videos]

        active = self._batches.get(key)
        if active is not None and now - active.created_at >= self.settings.upload_batch_window_s:
            active = None

        if active is None and self._is_duplicate(guild_id, user_id, filenames):
            logger.debug(
                "Skipping repeated upload",
                extra={"subsys": "uploads", "event": "upload_duplicate", "guild_id": guild_id, "user_id": user_id},
            )
            return
        self._record_uploads(guild_id, user_id, filenames)

        if not images:
            await self._react(message, "video_only")
            return

        accepted = images[: self.max_images]
        batch = self._select_batch(key, message, active, len(accepted), now)

        try:
            staged = await self._stage_all(batch, accepted)
        finally:
            batch.reserved -= len(accepted)

        if batch.cleaned:
            await self._delete_orphans(batch, staged)
            return
        if not staged:
            logger.warning(
                "⚠️ No upload could be staged; leaving the original message",
                extra={"subsys": "uploads", "event": "stage_failed", "guild_id": guild_id},
            )
            if not batch.images and not batch.reserved:
                self._discard(batch)
            return

        batch.images.extend(staged)
        batch.videos.extend(a.url for a in videos)

        rendered = await self._render(batch, message)
        if rendered is None:
            return
        _, shown = rendered

        if videos:
            # Videos are not staged; keep the source so they stay visible
            return
        missing = len(images) - sum(1 for s in staged if s.storage_key in shown)
        if missing:
            logger.warning(
                f"⚠️ {missing} image(s) from message {message.id} were not reposted; keeping the original",
                extra={"subsys": "uploads", "event": "repost_incomplete", "guild_id": guild_id},
            )
            return
        try:
            await message.delete()
        except discord.HTTPException as e:
            logger.info(
                f"Could not delete original upload message: {e}",
                extra={"subsys": "uploads", "event": "source_delete_failed", "guild_id": guild_id},
            )

    # ------------------------------------------------------------------
    # Batch selection and timers
    # ------------------------------------------------------------------

    def _upload_meta(self, message: ChatMessage) -> EmbedData:
        author = message.author
        return EmbedData(
            platform=Platform.UPLOAD,
            author=EmbedAuthor(
                name=author.display_name or author.username,
                username=author.username,
                url=message.jump_url,
                icon_url=author.avatar_url,
            ),
            color=COLOR_UPLOAD,
            original_url=message.jump_url,
            description=message.content or None,
            timestamp=datetime.fromtimestamp(message.created_at, tz=timezone.utc).isoformat(),
        )

    def _select_batch(
        self, key: str, message: ChatMessage, active: Optional[UploadBatch], incoming: int, now: float
    ) -> UploadBatch:
        """Pick or open the batch for ``incoming`` images and claim their slots.

        Runs without awaiting, so the capacity check and the claim are atomic.
        """
        if active is not None and active.channel_id == message.channel_id:
            if len(active.images) + active.reserved + incoming <= self.max_images:
                active.reserved += incoming
                return active
            logger.info(
                f"📦 Batch {active.id} is full, starting a new one",
                extra={"subsys": "uploads", "event": "batch_overflow", "guild_id": active.guild_id},
            )

        batch = UploadBatch(
            id=uuid.uuid4().hex,
            key=key,
            guild_id=message.guild_id or "",
            channel_id=message.channel_id,
            meta=self._upload_meta(message),
            created_at=now,
            reserved=incoming,
        )
        self._activate(batch)
        return batch

    def _activate(self, batch: UploadBatch) -> None:
        # Any previous batch under this key is sealed: its timers keep running
        self._batches[batch.key] = batch
        self._live[batch.id] = batch
        window = self.settings.upload_batch_window_s
        self.scheduler.call_later(batch.batch_timer, window, lambda: self._expire_batch(batch))
        self.scheduler.call_later(
            batch.cleanup_timer,
            window + self.settings.upload_cleanup_buffer_s,
            lambda: self._cleanup_batch(batch),
        )
        self.metrics.inc(METRIC_UPLOAD_BATCHES)
        logger.debug(
            f"Started upload batch {batch.id}",
            extra={"subsys": "uploads", "event": "batch_started", "guild_id": batch.guild_id},
        )

    def _expire_batch(self, batch: UploadBatch) -> None:
        if self._batches.get(batch.key) is batch:
            del self._batches[batch.key]

    def _discard(self, batch: UploadBatch) -> None:
        """Drop a batch that never held an image."""
        batch.cleaned = True
        self.scheduler.cancel(batch.batch_timer)
        self.scheduler.cancel(batch.cleanup_timer)
        self._live.pop(batch.id, None)
        self._expire_batch(batch)

    async def _delete_orphans(self, batch: UploadBatch, staged: List[StagedImage]) -> None:
        # Staged after the batch was already cleaned up
        if not staged:
            return
        try:
            await self.store.delete_many([s.storage_key for s in staged])
        except StorageError as e:
            logger.error(
                f"❌ Failed to delete late uploads for batch {batch.id}: {e}",
                extra={"subsys": "uploads", "event": "cleanup_failed", "guild_id": batch.guild_id},
            )

    async def _cleanup_batch(self, batch: UploadBatch) -> None:
        if batch.cleaned:
            return
        batch.cleaned = True
        self._live.pop(batch.id, None)
        self._expire_batch(batch)

        keys = [img.storage_key for img in batch.images]
        if not keys:
            return
        try:
            deleted = await self.store.delete_many(keys)
        except StorageError as e:
            logger.error(
                f"❌ Failed to delete staged uploads for batch {batch.id}: {e}",
                extra={"subsys": "uploads", "event": "cleanup_failed", "guild_id": batch.guild_id},
            )
            return
        logger.debug(
            f"🧹 Deleted {deleted} staged uploads for batch {batch.id}",
            extra={"subsys": "uploads", "event": "batch_cleaned", "guild_id": batch.guild_id},
        )

    def sweep(self) -> int:
        """Force-clean batches whose timers never fired and forget stale upload names."""
        now = self._clock()
        max_age = self.settings.upload_batch_window_s + self.settings.upload_cleanup_buffer_s
        removed = 0

        for batch in list(self._live.values()):
            if now - batch.created_at > max_age and not self.scheduler.is_scheduled(batch.cleanup_timer):
                logger.warning(
                    f"⚠️ Upload batch {batch.id} outlived its timers, cleaning up",
                    extra={"subsys": "uploads", "event": "batch_leak", "guild_id": batch.guild_id},
                )
                self.scheduler.spawn(self._cleanup_batch(batch), name=f"upload-sweep:{batch.id}")
                removed += 1

        window = self.settings.upload_duplicate_window_s
        for key, seen in list(self._recent_uploads.items()):
            if now - seen > window:
                del self._recent_uploads[key]
                removed += 1
        return removed

    # ------------------------------------------------------------------
    # Staging and rendering
    # ------------------------------------------------------------------

    def _storage_key(self, batch: UploadBatch, filename: str) -> str:
        user_id = batch.key.split(":", 1)[1]
        stamp = int(self._clock() * 1000)
        return (
            f"{self.settings.upload_prefix}/{batch.guild_id}/{user_id}/{batch.id}/"
            f"{stamp}-{secrets.token_hex(4)}-{sanitize_filename(filename)}"
        )

    async def _stage_all(self, batch: UploadBatch, images: List[ChatAttachment]) -> List[StagedImage]:
        results = await asyncio.gather(*(self._stage(batch, att) for att in images))
        return [r for r in results if r is not None]

    async def _stage(self, batch: UploadBatch, att: ChatAttachment) -> Optional[StagedImage]:
        key = self._storage_key(batch, att.filename)
        content_type = att.content_type or mimetypes.guess_type(att.filename)[0] or "application/octet-stream"
        try:
            data = await self.media.fetch_image(att.url, self.settings.max_video_bytes)
            await self.store.put(key, data, content_type, acl=STAGED_ACL)
        except (APIError, MediaTooLargeError, UpstreamTimeout, httpx.HTTPError, StorageError) as e:
            logger.warning(
                f"⚠️ Failed to stage {att.filename}: {e}",
                extra={"subsys": "uploads", "event": "stage_error", "guild_id": batch.guild_id},
            )
            return None

        try:
            await self.store.tag(key, {"lifecycle": "temp-upload", "batch": batch.id})
        except StorageError as e:
            logger.info(f"Could not tag {key}: {e}", extra={"subsys": "uploads"})

        return StagedImage(storage_key=key, public_url=f"{self.cdn_base_url}/{key}", filename=att.filename)

    async def _render(
        self, batch: UploadBatch, message: ChatMessage
    ) -> Optional[Tuple[PostedMessage, Set[str]]]:
        """Post the whole batch and replace the previous post.

        Returns the new post and the storage keys of the images it shows.
        """
        async with batch.render_lock:
            files: List[discord.File] = []
            embeds: List[discord.Embed] = []
            shown: Set[str] = set()
            for image in batch.images[:MAX_ATTACHMENTS]:
                name = posixpath.basename(image.storage_key)
                try:
                    data = await self.media.fetch_image(image.public_url, self.settings.max_video_bytes)
                except (APIError, MediaTooLargeError, UpstreamTimeout, httpx.HTTPError) as e:
                    logger.warning(
                        f"⚠️ CDN fetch failed for {image.filename}: {e}",
                        extra={"subsys": "uploads", "event": "cdn_error", "guild_id": batch.guild_id},
                    )
                    continue
                files.append(discord.File(io.BytesIO(data), filename=name))
                embeds.append(build_upload_card(batch.meta, f"attachment://{name}", first=not embeds))
                shown.add(image.storage_key)

            if not files:
                return None

            previous = batch.posted
            try:
                posted = await message.send(embeds=embeds, files=files)
            except discord.HTTPException as e:
                logger.error(
                    f"❌ Failed to post upload batch {batch.id}: {e}",
                    extra={"subsys": "uploads", "event": "render_failed", "guild_id": batch.guild_id},
                )
                return None
            dropped = batch.shown - shown
            batch.posted = posted
            batch.shown = shown

            if previous is not None and dropped:
                logger.warning(
                    f"⚠️ Batch {batch.id} repost is missing {len(dropped)} earlier image(s); keeping the previous post",
                    extra={"subsys": "uploads", "event": "repost_kept", "guild_id": batch.guild_id},
                )
            elif previous is not None:
                # Attachments cannot be edited in place, so the old post is replaced
                try:
                    await previous.delete()
                except discord.HTTPException as e:
                    logger.info(f"Could not delete previous batch post: {e}", extra={"subsys": "uploads"})

            await self._react(posted, "batch_posted")
            return posted, shown

    async def _react(self, target, event: str) -> None:
        for emoji in REACTIONS:
            try:
                await target.react(emoji)
            except discord.HTTPException as e:
                logger.debug(f"Could not react {emoji}: {e}", extra={"subsys": "uploads", "event": event})
