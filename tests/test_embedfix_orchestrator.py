"""End-to-end tests for the message pipeline with fake chat and storage."""

from dataclasses import replace
from unittest.mock import AsyncMock, Mock

import pytest
import pytest_asyncio

from conftest import FakeAttachment, FakeAuthor, FakeChatMessage
from embedbot.embedfix.cache import EmbedCache
from embedbot.embedfix.circuit_breaker import CircuitBreaker
from embedbot.embedfix.handlers import InstagramHandler, PixivHandler, TwitterHandler
from embedbot.embedfix.ledger import VoteLedger
from embedbot.embedfix.matcher import UrlMatcher
from embedbot.embedfix.media import DownloadedMedia
from embedbot.embedfix.orchestrator import EmbedFixOrchestrator, is_fixup_url
from embedbot.embedfix.rate_limiter import RateLimiter
from embedbot.embedfix.render import FIXUP_FALLBACK_NOTICE
from embedbot.embedfix.scheduler import TaskScheduler
from embedbot.embedfix.settings import EmbedFixSettings
from embedbot.embedfix.types import COLOR_TWITTER, EmbedAuthor, EmbedData, EmbedVideo, Platform

TWEET_URL = "https://x.com/artist/status/111"
PIXIV_URL = "https://www.pixiv.net/artworks/222"


def tweet(url=TWEET_URL, images=("https://pbs.twimg.com/1.jpg",), videos=()):
    return EmbedData(
        platform=Platform.TWITTER,
        author=EmbedAuthor(name="Artist", username="artist", url="https://twitter.com/artist"),
        color=COLOR_TWITTER,
        original_url=url,
        images=tuple(images),
        videos=tuple(videos),
        description="hello",
    )


class Pipeline:
    """Orchestrator wired with real components and a stubbed Twitter fetch."""

    def __init__(self, clock, store=None, settings=None, uploads=None):
        self.settings = settings or EmbedFixSettings()
        self.twitter = TwitterHandler(http=Mock())
        self.twitter.fetch_embed = AsyncMock(side_effect=lambda groups, url: tweet(url))
        matcher = UrlMatcher()
        matcher.register(self.twitter)
        matcher.register(PixivHandler())
        matcher.register(InstagramHandler())

        self.media = Mock()
        self.media.download_video = AsyncMock(return_value=None)
        self.ledger = VoteLedger(store, clock=clock) if store is not None else None
        self.orchestrator = EmbedFixOrchestrator(
            settings=self.settings,
            matcher=matcher,
            cache=EmbedCache(clock=clock),
            breaker=CircuitBreaker(threshold=2, cooldown_s=60, clock=clock),
            limiter=RateLimiter(
                guild_limit=self.settings.guild_rate_limit,
                user_limit=self.settings.user_rate_limit,
                clock=clock,
            ),
            media=self.media,
            scheduler=TaskScheduler(),
            ledger=self.ledger,
            uploads=uploads,
            clock=clock,
        )


@pytest_asyncio.fixture
async def make_pipeline(clock, store):
    created = []

    def factory(with_store=True, **kwargs):
        pipeline = Pipeline(clock, store if with_store else None, **kwargs)
        created.append(pipeline)
        return pipeline

    yield factory
    for pipeline in created:
        await pipeline.orchestrator.scheduler.shutdown()


class TestFastPath:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "message",
        [
            FakeChatMessage(content=TWEET_URL, author=FakeAuthor(is_bot=True)),
            FakeChatMessage(content=TWEET_URL, guild_id=None),
            FakeChatMessage(content=TWEET_URL, channel_name="general"),
            FakeChatMessage(content="no links here"),
        ],
    )
    async def test_rejected_messages_get_no_reply(self, make_pipeline, message):
        pipeline = make_pipeline()
        await pipeline.orchestrator.process_message(message)

        assert message.replies == []
        pipeline.twitter.fetch_embed.assert_not_called()

    @pytest.mark.asyncio
    async def test_allowed_channel_match_is_case_insensitive(self, make_pipeline):
        pipeline = make_pipeline()
        message = FakeChatMessage(content=TWEET_URL, channel_name="ART")
        await pipeline.orchestrator.process_message(message)
        assert len(message.replies) == 1

    @pytest.mark.asyncio
    async def test_media_without_links_goes_to_upload_batcher(self, make_pipeline):
        uploads = Mock()
        uploads.process = AsyncMock()
        pipeline = make_pipeline(uploads=uploads)
        message = FakeChatMessage(attachments=[FakeAttachment("https://cdn/a.png", "a.png", "image/png")])

        await pipeline.orchestrator.process_message(message)

        uploads.process.assert_awaited_once_with(message)
        assert message.replies == []


class TestUrlPath:
    @pytest.mark.asyncio
    async def test_two_platforms_in_one_reply(self, make_pipeline, store):
        pipeline = make_pipeline()
        message = FakeChatMessage(content=f"{TWEET_URL} and {PIXIV_URL}")

        await pipeline.orchestrator.process_message(message)

        assert len(message.replies) == 1
        reply = message.replies[0]
        assert reply.content == "https://phixiv.net/artworks/222"
        assert len(reply.embeds) == 1
        assert reply.embeds[0].image.url == "https://pbs.twimg.com/1.jpg"
        assert reply.reactions == ["❤️", "✉️"]
        assert await pipeline.ledger.find_artwork_by_message("guild-1", reply.id) == "twitter:111"

    @pytest.mark.asyncio
    async def test_repost_gets_duplicate_notice(self, make_pipeline, clock):
        pipeline = make_pipeline()
        first = FakeChatMessage(content=TWEET_URL)
        await pipeline.orchestrator.process_message(first)
        original_reply = first.replies[0]

        clock.advance(2 * 60 * 60 + 5 * 60)
        repost = FakeChatMessage(content=f"again {TWEET_URL}", author=FakeAuthor(id="user-2"))
        await pipeline.orchestrator.process_message(repost)

        assert len(repost.replies) == 1
        notice = repost.replies[0]
        assert notice.embeds == []
        assert notice.content.startswith("🔄 This was shared 2h 5m ago")
        assert f"https://discord.com/channels/guild-1/chan-1/{original_reply.id}" in notice.content
        assert repost.suppress_calls == 1

    @pytest.mark.asyncio
    async def test_repost_in_other_guild_is_previewed(self, make_pipeline):
        pipeline = make_pipeline()
        await pipeline.orchestrator.process_message(FakeChatMessage(content=TWEET_URL))
        other = FakeChatMessage(content=TWEET_URL, guild_id="guild-2")
        await pipeline.orchestrator.process_message(other)

        assert len(other.replies[0].embeds) == 1

    @pytest.mark.asyncio
    async def test_failed_fixup_link_gets_fallback_notice(self, make_pipeline):
        pipeline = make_pipeline()
        pipeline.twitter.fetch_embed.side_effect = None
        pipeline.twitter.fetch_embed.return_value = None
        message = FakeChatMessage(content="https://vxtwitter.com/artist/status/5")

        await pipeline.orchestrator.process_message(message)

        assert [r.content for r in message.replies] == [FIXUP_FALLBACK_NOTICE]

    @pytest.mark.asyncio
    async def test_failed_canonical_link_is_silent(self, make_pipeline):
        pipeline = make_pipeline()
        pipeline.twitter.fetch_embed.side_effect = None
        pipeline.twitter.fetch_embed.return_value = None
        message = FakeChatMessage(content=TWEET_URL)

        await pipeline.orchestrator.process_message(message)

        assert message.replies == []

    @pytest.mark.asyncio
    async def test_links_over_cap_are_counted_in_suffix(self, make_pipeline):
        pipeline = make_pipeline(settings=EmbedFixSettings(max_embeds_per_message=2))
        urls = [f"https://www.pixiv.net/artworks/{n}" for n in (1, 2, 3)]
        message = FakeChatMessage(content=" ".join(urls))

        await pipeline.orchestrator.process_message(message)

        assert message.replies[0].content == (
            "https://phixiv.net/artworks/1\nhttps://phixiv.net/artworks/2\n...and 1 more link"
        )

    @pytest.mark.asyncio
    async def test_rewrite_only_reply_gets_no_reactions(self, make_pipeline):
        pipeline = make_pipeline()
        message = FakeChatMessage(content=PIXIV_URL)
        await pipeline.orchestrator.process_message(message)

        reply = message.replies[0]
        assert reply.embeds == []
        assert reply.reactions == []

    @pytest.mark.asyncio
    async def test_cached_result_skips_handler(self, make_pipeline):
        pipeline = make_pipeline(with_store=False)
        await pipeline.orchestrator.process_message(FakeChatMessage(content=TWEET_URL))
        second = FakeChatMessage(content=TWEET_URL, guild_id="guild-2")
        await pipeline.orchestrator.process_message(second)

        assert pipeline.twitter.fetch_embed.await_count == 1
        assert len(second.replies) == 1

    @pytest.mark.asyncio
    async def test_negative_cache_and_open_breaker_skip_handler(self, make_pipeline):
        pipeline = make_pipeline(with_store=False)
        pipeline.twitter.fetch_embed.side_effect = None
        pipeline.twitter.fetch_embed.return_value = None

        for n in range(3):
            message = FakeChatMessage(content=f"https://x.com/a/status/{n}", author=FakeAuthor(id=f"u{n}"))
            await pipeline.orchestrator.process_message(message)
        # Two failures opened the breaker; the third URL never reached the handler
        assert pipeline.twitter.fetch_embed.await_count == 2

        await pipeline.orchestrator.process_message(FakeChatMessage(content="https://x.com/a/status/0"))
        assert pipeline.twitter.fetch_embed.await_count == 2

    @pytest.mark.asyncio
    async def test_handler_exception_counts_as_failure(self, make_pipeline):
        pipeline = make_pipeline(with_store=False)
        pipeline.twitter.fetch_embed.side_effect = RuntimeError("boom")
        message = FakeChatMessage(content=TWEET_URL)

        await pipeline.orchestrator.process_message(message)

        assert message.replies == []
        assert pipeline.orchestrator.breaker.get_state("twitter").failures == 1

    @pytest.mark.asyncio
    async def test_rate_limited_user_gets_nothing(self, make_pipeline):
        pipeline = make_pipeline(settings=EmbedFixSettings(user_rate_limit=1))
        await pipeline.orchestrator.process_message(FakeChatMessage(content=PIXIV_URL))
        second = FakeChatMessage(content="https://www.pixiv.net/artworks/9")
        await pipeline.orchestrator.process_message(second)

        assert second.replies == []

    @pytest.mark.asyncio
    async def test_existing_previews_are_suppressed_and_rechecked(self, make_pipeline):
        pipeline = make_pipeline()
        message = FakeChatMessage(content=TWEET_URL, has_previews=True)

        await pipeline.orchestrator.process_message(message)

        assert message.suppress_calls == 1
        assert pipeline.orchestrator.scheduler.is_scheduled(f"resuppress:{message.id}")


class TestVideoPosts:
    VIDEO = EmbedVideo(url="https://video.twimg.com/v.mp4")

    @pytest.mark.asyncio
    async def test_downloaded_video_is_attached(self, make_pipeline):
        pipeline = make_pipeline()
        pipeline.twitter.fetch_embed.side_effect = lambda groups, url: tweet(url, images=(), videos=(self.VIDEO,))
        pipeline.media.download_video.return_value = DownloadedMedia(data=b"mp4", filename="v.mp4")
        message = FakeChatMessage(content=TWEET_URL)

        await pipeline.orchestrator.process_message(message)

        reply = message.replies[0]
        assert len(reply.files) == 1
        assert reply.files[0].filename == "v.mp4"
        assert len(reply.embeds) == 1
        assert reply.embeds[0].video.url == "attachment://v.mp4"
        assert reply.reactions == ["❤️", "✉️"]

    @pytest.mark.asyncio
    async def test_oversize_video_falls_back_to_mirror_link(self, make_pipeline, store):
        pipeline = make_pipeline()
        pipeline.twitter.fetch_embed.side_effect = lambda groups, url: tweet(url, images=(), videos=(self.VIDEO,))
        message = FakeChatMessage(content=TWEET_URL)

        await pipeline.orchestrator.process_message(message)

        reply = message.replies[0]
        assert reply.content == "https://vxtwitter.com/artist/status/111"
        assert reply.files == []
        assert reply.reactions == []
        # Nothing previewed, so nothing recorded
        assert await pipeline.ledger.find_artwork_by_message("guild-1", reply.id) is None

    @pytest.mark.asyncio
    async def test_video_past_card_cap_is_linked_without_download(self, make_pipeline):
        video_url = "https://x.com/artist/status/333"
        pipeline = make_pipeline(settings=replace(EmbedFixSettings(), max_cards_per_reply=1))
        pipeline.twitter.fetch_embed.side_effect = lambda groups, url: (
            tweet(url, images=(), videos=(self.VIDEO,)) if url == video_url else tweet(url)
        )
        pipeline.media.download_video.return_value = DownloadedMedia(data=b"mp4", filename="v.mp4")
        message = FakeChatMessage(content=f"{TWEET_URL} {video_url}")

        await pipeline.orchestrator.process_message(message)

        pipeline.media.download_video.assert_not_called()
        reply = message.replies[0]
        assert len(reply.embeds) == 1
        assert reply.files == []
        assert reply.content == "https://vxtwitter.com/artist/status/333"


class TestMessageEdit:
    @pytest.mark.asyncio
    async def test_only_new_links_are_processed(self, make_pipeline):
        pipeline = make_pipeline()
        message = FakeChatMessage(content=f"{TWEET_URL} {PIXIV_URL}")

        await pipeline.orchestrator.process_message_edit(TWEET_URL, message)

        assert [r.content for r in message.replies] == ["https://phixiv.net/artworks/222"]
        pipeline.twitter.fetch_embed.assert_not_called()

    @pytest.mark.asyncio
    async def test_unchanged_links_only_resuppress(self, make_pipeline):
        pipeline = make_pipeline()
        message = FakeChatMessage(content=TWEET_URL, has_previews=True)

        await pipeline.orchestrator.process_message_edit(TWEET_URL, message)

        assert message.replies == []
        assert message.suppress_calls == 1
        assert pipeline.orchestrator.scheduler.is_scheduled(f"resuppress:{message.id}")

    @pytest.mark.asyncio
    async def test_edit_outside_window_is_ignored(self, make_pipeline, clock):
        pipeline = make_pipeline()
        message = FakeChatMessage(content=PIXIV_URL, created_at=clock() - 73 * 60 * 60)

        await pipeline.orchestrator.process_message_edit("", message)

        assert message.replies == []


class TestHelpers:
    def test_is_fixup_url(self):
        assert is_fixup_url("https://FxTwitter.com/a/status/1")
        assert not is_fixup_url(TWEET_URL)

    @pytest.mark.asyncio
    async def test_resolve_url_string(self, make_pipeline):
        orchestrator = make_pipeline(with_store=False).orchestrator
        data = await orchestrator.resolve_url_string("https://www.instagram.com/p/Xyz/")
        assert data.rewritten_url == "https://ddinstagram.com/p/Xyz/"
        assert await orchestrator.resolve_url_string("https://example.com") is None
        assert orchestrator.is_url_supported(PIXIV_URL)
        assert orchestrator.supported_platforms() == ["twitter", "pixiv", "instagram"]

    def test_settings_from_config(self):
        settings = EmbedFixSettings.from_config(
            {"EMBEDFIX_ALLOWED_CHANNELS": ["Art"], "CDN_DOMAIN_URL": "https://cdn.example/", "UPLOAD_PREFIX": "/tmp/up/"}
        )
        assert settings.allowed_channels == ("art",)
        assert settings.cdn_base_url == "https://cdn.example"
        assert settings.upload_prefix == "tmp/up"
        assert replace(settings, user_rate_limit=1).user_rate_limit == 1

    @pytest.mark.asyncio
    async def test_build_with_storage_but_no_cdn_keeps_ledger(self, store):
        orchestrator = EmbedFixOrchestrator.build(EmbedFixSettings(cdn_base_url=None), http=Mock(), store=store)
        try:
            assert orchestrator.ledger is not None
            assert orchestrator.uploads is None
        finally:
            await orchestrator.scheduler.shutdown()
