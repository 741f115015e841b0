"""Tests for upload batching and staged-object cleanup."""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest
import pytest_asyncio

from conftest import FakeAttachment, FakeChatMessage
from embedbot.embedfix.scheduler import TaskScheduler
from embedbot.embedfix.settings import EmbedFixSettings
from embedbot.embedfix.uploads import STAGED_ACL, UploadBatcher, is_image, is_video, sanitize_filename
from embedbot.exceptions import APIError


def images(*names):
    return [FakeAttachment(url=f"https://cdn.discordapp.com/{n}", filename=n, content_type="image/png") for n in names]


def upload(*names, **kwargs):
    return FakeChatMessage(content="my art", attachments=images(*names), **kwargs)


@pytest.fixture
def media():
    fetcher = Mock()
    fetcher.fetch_image = AsyncMock(return_value=b"\x89PNG")
    return fetcher


@pytest.fixture
def settings():
    return EmbedFixSettings(upload_max_images_per_batch=3, upload_batch_window_s=120, upload_cleanup_buffer_s=600)


@pytest_asyncio.fixture
async def batcher(store, media, settings, clock):
    scheduler = TaskScheduler()
    b = UploadBatcher(store, media, scheduler, settings, cdn_base_url="https://cdn.example/", clock=clock)
    yield b
    await b.stop()
    await scheduler.shutdown()


class TestClassification:
    def test_content_type_or_extension(self):
        assert is_image(FakeAttachment("u", "photo.JPG"))
        assert is_image(FakeAttachment("u", "blob", "image/webp"))
        assert is_video(FakeAttachment("u", "clip.mov"))
        assert not is_image(FakeAttachment("u", "notes.txt", "text/plain"))

    def test_sanitize_filename(self):
        assert sanitize_filename("my art (final).png") == "my_art_final_.png"
        assert sanitize_filename("../") == "upload"


class TestUploadBatcher:
    @pytest.mark.asyncio
    async def test_single_upload_is_staged_and_reposted(self, batcher, store):
        message = upload("a.png", "b.png")
        await batcher.process(message)

        assert len(store.objects) == 2
        for key in store.objects:
            assert key.startswith("temp/uploads/guild-1/user-1/")
            assert store.acls[key] == STAGED_ACL
            assert store.tags[key]["lifecycle"] == "temp-upload"

        posted = message.sent[0]
        assert len(posted.embeds) == 2
        assert len(posted.files) == 2
        assert posted.embeds[0].author.name == "Art Fan"
        assert posted.embeds[0].image.url.startswith("attachment://")
        assert posted.reactions == ["❤️", "✉️"]
        assert message.deleted

    @pytest.mark.asyncio
    async def test_images_fetched_back_from_cdn(self, batcher, media, store):
        await batcher.process(upload("a.png"))
        key = next(iter(store.objects))
        media.fetch_image.assert_any_await(f"https://cdn.example/{key}", batcher.settings.max_video_bytes)

    @pytest.mark.asyncio
    async def test_follow_up_within_window_joins_batch(self, batcher):
        first = upload("a.png")
        second = upload("b.png", "c.png")
        await batcher.process(first)
        await batcher.process(second)

        batch = batcher.get_batch("guild-1", "user-1")
        assert len(batch.images) == 3
        assert len(batcher.live_batches) == 1
        # The merged post replaces the earlier one
        assert first.sent[0].deleted
        assert len(second.sent[0].embeds) == 3

    @pytest.mark.asyncio
    async def test_overflow_starts_new_batch_and_keeps_both_cleanups(self, batcher, store):
        await batcher.process(upload("a.png", "b.png"))
        first = batcher.get_batch("guild-1", "user-1")
        await batcher.process(upload("c.png", "d.png"))
        second = batcher.get_batch("guild-1", "user-1")

        assert second is not first
        assert len(first.images) == 2 and len(second.images) == 2
        assert {b.id for b in batcher.live_batches} == {first.id, second.id}
        assert batcher.scheduler.is_scheduled(first.cleanup_timer)
        assert batcher.scheduler.is_scheduled(second.cleanup_timer)

        await batcher._cleanup_batch(first)

        remaining = set(store.objects)
        assert remaining == {img.storage_key for img in second.images}
        assert batcher.get_batch("guild-1", "user-1") is second

    @pytest.mark.asyncio
    async def test_different_channel_starts_new_batch(self, batcher):
        await batcher.process(upload("a.png"))
        first = batcher.get_batch("guild-1", "user-1")
        await batcher.process(upload("b.png", channel_id="chan-2"))
        assert batcher.get_batch("guild-1", "user-1") is not first

    @pytest.mark.asyncio
    async def test_timers_expire_and_clean_staged_objects(self, store, media, clock):
        settings = EmbedFixSettings(upload_batch_window_s=0.01, upload_cleanup_buffer_s=0.02)
        scheduler = TaskScheduler()
        batcher = UploadBatcher(store, media, scheduler, settings, "https://cdn.example", clock=clock)
        try:
            await batcher.process(upload("a.png"))
            assert store.objects

            await asyncio.sleep(0.1)

            assert store.objects == {}
            assert batcher.get_batch("guild-1", "user-1") is None
            assert batcher.live_batches == []
        finally:
            await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_repeat_upload_after_window_is_skipped(self, batcher, store, clock):
        await batcher.process(upload("a.png"))
        clock.advance(121)

        again = upload("a.png")
        await batcher.process(again)

        assert again.sent == []
        assert not again.deleted
        assert len(store.objects) == 1

    @pytest.mark.asyncio
    async def test_video_only_upload_gets_reactions(self, batcher, store):
        message = FakeChatMessage(attachments=[FakeAttachment("https://cdn/v.mp4", "v.mp4", "video/mp4")])
        await batcher.process(message)

        assert message.reactions == ["❤️", "✉️"]
        assert message.sent == []
        assert not message.deleted
        assert store.objects == {}

    @pytest.mark.asyncio
    async def test_source_with_video_is_kept(self, batcher):
        attachments = images("a.png") + [FakeAttachment("https://cdn/v.mp4", "v.mp4")]
        message = FakeChatMessage(attachments=attachments)
        await batcher.process(message)

        assert len(message.sent) == 1
        assert not message.deleted

    @pytest.mark.asyncio
    async def test_staging_failure_leaves_message_alone(self, batcher, store):
        store.fail_puts = True
        message = upload("a.png")
        await batcher.process(message)

        assert message.sent == []
        assert not message.deleted
        assert batcher.get_batch("guild-1", "user-1") is None

    @pytest.mark.asyncio
    async def test_partial_staging_failure_posts_the_rest_and_keeps_source(self, batcher, media):
        media.fetch_image.side_effect = [APIError("gone", status_code=404), b"ok", b"ok"]
        message = upload("a.png", "b.png")
        await batcher.process(message)

        assert len(batcher.get_batch("guild-1", "user-1").images) == 1
        assert len(message.sent[0].embeds) == 1
        assert not message.deleted

    @pytest.mark.asyncio
    async def test_cdn_readback_failure_keeps_source(self, batcher, media, store):
        media.fetch_image.side_effect = [b"a", b"b", APIError("edge miss", status_code=500), b"b"]
        message = upload("a.png", "b.png")
        await batcher.process(message)

        assert len(message.sent[0].embeds) == 1
        assert not message.deleted
        assert len(store.objects) == 2

    @pytest.mark.asyncio
    async def test_repost_missing_earlier_image_keeps_previous_post(self, batcher, media):
        media.fetch_image.side_effect = [b"a", b"a", b"b", APIError("edge miss", status_code=500), b"b"]
        first = upload("a.png")
        second = upload("b.png")
        await batcher.process(first)
        await batcher.process(second)

        assert first.deleted
        assert not first.sent[0].deleted
        assert len(second.sent[0].embeds) == 1
        assert second.deleted

    @pytest.mark.asyncio
    async def test_oversized_upload_keeps_source(self, batcher, store):
        message = upload("a.png", "b.png", "c.png", "d.png")
        await batcher.process(message)

        assert len(store.objects) == 3
        assert len(message.sent[0].embeds) == 3
        assert not message.deleted

    @pytest.mark.asyncio
    async def test_concurrent_uploads_respect_batch_capacity(self, batcher, media):
        async def slow_fetch(url, limit):
            await asyncio.sleep(0)
            return b"png"

        await batcher.process(upload("a.png"))
        media.fetch_image.side_effect = slow_fetch
        first, second = upload("b.png", "c.png"), upload("d.png", "e.png")

        await asyncio.gather(batcher.process(first), batcher.process(second))

        sizes = sorted(len(b.images) for b in batcher.live_batches)
        assert sizes == [2, 3]
        assert first.deleted and second.deleted
        assert len(first.sent[0].embeds) == 3
        assert len(second.sent[0].embeds) == 2

    @pytest.mark.asyncio
    async def test_reupload_into_active_batch_is_not_a_duplicate(self, batcher):
        await batcher.process(upload("a.png"))
        again = upload("a.png")
        await batcher.process(again)

        assert len(batcher.get_batch("guild-1", "user-1").images) == 2
        assert len(again.sent[0].embeds) == 2
        assert again.deleted

    @pytest.mark.asyncio
    async def test_stop_deletes_all_staged_objects(self, batcher, store):
        await batcher.process(upload("a.png"))
        await batcher.process(upload("b.png", author=Mock(id="user-2", display_name="B", username="b", avatar_url=None)))
        assert len(store.objects) == 2

        await batcher.stop()

        assert store.objects == {}
        assert batcher.live_batches == []

    @pytest.mark.asyncio
    async def test_sweep_forgets_old_upload_names(self, batcher, clock):
        await batcher.process(upload("a.png"))
        clock.advance(24 * 60 * 60 + 1)
        assert batcher.sweep() >= 1
        assert batcher._recent_uploads == {}

    @pytest.mark.asyncio
    async def test_sweep_cleans_batch_whose_timer_never_fired(self, batcher, store, clock):
        await batcher.process(upload("a.png"))
        batch = batcher.get_batch("guild-1", "user-1")
        batcher.scheduler.cancel(batch.cleanup_timer)
        clock.advance(120 + 600 + 1)

        assert batcher.sweep() >= 1
        for _ in range(3):
            await asyncio.sleep(0)

        assert store.objects == {}
        assert batcher.live_batches == []
        assert batch.cleaned
