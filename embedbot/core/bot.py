"""Core bot implementation: wires Discord events into the embed pipeline."""

from __future__ import annotations

import asyncio
from typing import Optional

import discord
from discord.ext import commands
from rich.console import Console
from rich.panel import Panel
from rich.tree import Tree

from embedbot.config import storage_configured
from embedbot.core.discord_adapter import DiscordChatMessage
from embedbot.embedfix import EmbedFixOrchestrator, EmbedFixSettings
from embedbot.embedfix.storage import S3ObjectStore
from embedbot.embedfix.types import COLOR_UPLOAD
from embedbot.exceptions import StorageError
from embedbot.http_client import cleanup_http_client, get_http_client
from embedbot.metrics import get_metrics, is_degraded_mode
from embedbot.utils.logging import get_logger

VOTE_EMOJI = "❤️"
SAVE_EMOJI = "✉️"


def _is_upload_post(message: discord.Message) -> bool:
    colour = message.embeds[0].colour if message.embeds else None
    return colour is not None and colour.value == COLOR_UPLOAD


def log_pipeline_setup(console: Console, orchestrator: EmbedFixOrchestrator, degraded: bool) -> None:
    """Print a Rich tree summarising which pipeline features are active."""
    tree = Tree("🧩 Embed Pipeline")

    platforms = tree.add("🔗 Platforms")
    for name in orchestrator.supported_platforms():
        platforms.add(f"✅ {name}")

    features = tree.add("⚙️ Features")
    features.add(f"{'✅' if orchestrator.ledger else '❌'} Repost detection and voting")
    features.add(f"{'✅' if orchestrator.uploads else '❌'} Upload batching")
    features.add(f"{'⚠️ degraded' if degraded else '✅'} Metrics")

    settings = orchestrator.settings
    limits = tree.add("📊 Limits")
    limits.add(f"Channels: {', '.join('#' + c for c in settings.allowed_channels)}")
    limits.add(f"Rate: {settings.guild_rate_limit}/guild, {settings.user_rate_limit}/user per {settings.rate_window_s:.0f}s")
    limits.add(f"Links per message: {settings.max_embeds_per_message}")

    console.print(Panel(tree, title="Embed Pipeline Report", border_style="blue", padding=(1, 2)))


class EmbedBot(commands.Bot):
    """Bot that improves link previews and reposts uploads in art channels."""

    def __init__(self, *args, config: dict | None = None, **kwargs):
        if "command_prefix" not in kwargs:
            kwargs["command_prefix"] = (config or {}).get("COMMAND_PREFIX", "!")
        if "intents" not in kwargs:
            kwargs["intents"] = discord.Intents.none()

        super().__init__(*args, **kwargs)
        self.config = config or {}
        self.logger = get_logger(__name__)
        self.console = Console()
        self.embedfix: Optional[EmbedFixOrchestrator] = None
        self._is_ready = asyncio.Event()
        self._boot_completed = False

    async def setup_hook(self) -> None:
        """Asynchronous setup phase for the bot."""
        if self._boot_completed:
            self.logger.debug("🔄 Setup hook called but boot already completed, skipping")
            return
        self._boot_completed = True
        self.logger.info("🔧 Starting bot setup", extra={"subsys": "core"})

        metrics = get_metrics()
        http = await get_http_client(self.config, metrics)

        store = None
        if storage_configured(self.config):
            store = S3ObjectStore.from_config(self.config)

        settings = EmbedFixSettings.from_config(self.config)
        self.embedfix = EmbedFixOrchestrator.build(settings, http, store=store, metrics=metrics)
        self.embedfix.start()

        log_pipeline_setup(self.console, self.embedfix, is_degraded_mode())
        self.logger.info("✅ Bot setup complete", extra={"subsys": "core", "event": "setup_done"})

    async def on_ready(self):
        if not self._is_ready.is_set():
            self.logger.info(f"🤖 Logged in as {self.user} (ID: {self.user.id})")
            self._is_ready.set()

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def on_message(self, message: discord.Message):
        if message.author == self.user or self.embedfix is None:
            return
        try:
            await self.embedfix.process_message(DiscordChatMessage(message))
        except Exception as e:
            self.logger.error(
                f"❌ Embed pipeline failed on message {message.id}: {e}",
                exc_info=True,
                extra={
                    "subsys": "embedfix",
                    "event": "pipeline_error",
                    "guild_id": message.guild.id if message.guild else None,
                    "msg_id": message.id,
                },
            )
        await self.process_commands(message)

    async def on_message_edit(self, before: discord.Message, after: discord.Message):
        if after.author == self.user or self.embedfix is None:
            return
        try:
            await self.embedfix.process_message_edit(before.content, DiscordChatMessage(after))
        except Exception as e:
            self.logger.error(
                f"❌ Embed pipeline failed on edit of {after.id}: {e}",
                exc_info=True,
                extra={"subsys": "embedfix", "event": "pipeline_error", "msg_id": after.id},
            )

    # ------------------------------------------------------------------
    # Reactions
    # ------------------------------------------------------------------

    async def on_raw_reaction_add(self, payload: discord.RawReactionActionEvent):
        if payload.guild_id is None or (self.user and payload.user_id == self.user.id):
            return
        emoji = str(payload.emoji)
        if emoji == VOTE_EMOJI:
            await self._set_vote(payload, True)
        elif emoji == SAVE_EMOJI:
            await self._send_saved_copy(payload)

    async def on_raw_reaction_remove(self, payload: discord.RawReactionActionEvent):
        if payload.guild_id is None or (self.user and payload.user_id == self.user.id):
            return
        if str(payload.emoji) == VOTE_EMOJI:
            await self._set_vote(payload, False)

    async def _set_vote(self, payload: discord.RawReactionActionEvent, voted: bool) -> None:
        ledger = self.embedfix.ledger if self.embedfix else None
        if ledger is None:
            return
        guild_id = str(payload.guild_id)
        try:
            artwork_id = await ledger.find_artwork_by_message(guild_id, str(payload.message_id))
            if artwork_id is None:
                return
            result = await ledger.set_vote(artwork_id, guild_id, str(payload.user_id), voted)
        except (StorageError, ValueError) as e:
            self.logger.error(
                f"❌ Failed to update vote: {e}",
                extra={"subsys": "ledger", "event": "vote_failed", "guild_id": guild_id, "user_id": payload.user_id},
            )
            return
        if result.changed:
            self.logger.debug(
                f"Vote {'added' if voted else 'removed'} on {artwork_id} ({result.vote_count})",
                extra={"subsys": "ledger", "event": "vote", "guild_id": guild_id, "user_id": payload.user_id},
            )

    async def _send_saved_copy(self, payload: discord.RawReactionActionEvent) -> None:
        """DM the reacting user a copy of a bot preview."""
        try:
            channel = self.get_channel(payload.channel_id) or await self.fetch_channel(payload.channel_id)
            message = await channel.fetch_message(payload.message_id)
            if message.author != self.user or not message.embeds:
                return
            user = self.get_user(payload.user_id) or await self.fetch_user(payload.user_id)

            if _is_upload_post(message):
                image_urls = "\n".join(e.image.url for e in message.embeds if e.image and e.image.url)
                if not image_urls:
                    return
                guild_name = message.guild.name if message.guild else "a server"
                await user.send(content=f"📎 **Saved from {guild_name}:**\n{image_urls}")
                return

            embed = message.embeds[0]
            if not embed.url:
                return
            await user.send(content=embed.url, embed=embed)
        except discord.HTTPException as e:
            self.logger.info(
                f"Could not DM user {payload.user_id}: {e}",
                extra={"subsys": "embedfix", "event": "dm_failed", "user_id": payload.user_id},
            )

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Clean up resources before shutdown."""
        self.logger.info("Bot is shutting down...", extra={"subsys": "core"})
        if self.embedfix is not None:
            try:
                await asyncio.wait_for(self.embedfix.stop(), timeout=10.0)
            except asyncio.TimeoutError:
                self.logger.warning("Embed pipeline did not stop within timeout", extra={"subsys": "core"})
            self.embedfix = None
        await cleanup_http_client()
        await super().close()
