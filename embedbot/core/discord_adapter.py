"""Adapts discord.py objects to the chat boundary used by the embed pipeline."""
from __future__ import annotations

from typing import List, Optional, Sequence

import discord

NO_PINGS = discord.AllowedMentions(everyone=False, users=False, roles=False, replied_user=False)


class DiscordAuthor:
    def __init__(self, user: discord.abc.User):
        self.id = str(user.id)
        self.is_bot = bool(user.bot)
        self.username = user.name
        self.display_name = user.display_name
        self.avatar_url: Optional[str] = str(user.display_avatar.url) if user.display_avatar else None


class DiscordAttachment:
    def __init__(self, attachment: discord.Attachment):
        self.url = attachment.url
        self.filename = attachment.filename
        self.content_type = attachment.content_type


class DiscordPostedMessage:
    def __init__(self, message: discord.Message):
        self.message = message
        self.id = str(message.id)

    async def react(self, emoji: str) -> None:
        await self.message.add_reaction(emoji)

    async def delete(self) -> None:
        await self.message.delete()


class DiscordChatMessage:
    """A ``discord.Message`` seen through the pipeline's ``ChatMessage`` protocol."""

    def __init__(self, message: discord.Message):
        self.message = message
        self.id = str(message.id)
        self.content = message.content or ""
        self.attachments: List[DiscordAttachment] = [DiscordAttachment(a) for a in message.attachments]
        self.author = DiscordAuthor(message.author)
        self.guild_id: Optional[str] = str(message.guild.id) if message.guild else None
        self.guild_name: Optional[str] = message.guild.name if message.guild else None
        self.channel_id = str(message.channel.id)
        self.channel_name = getattr(message.channel, "name", "") or ""
        self.created_at = message.created_at.timestamp()
        self.jump_url = message.jump_url

    @property
    def has_previews(self) -> bool:
        return len(self.message.embeds) > 0

    async def reply(
        self,
        content: Optional[str] = None,
        embeds: Optional[Sequence[discord.Embed]] = None,
        files: Optional[Sequence[discord.File]] = None,
    ) -> DiscordPostedMessage:
        sent = await self.message.reply(
            content=content,
            embeds=list(embeds or []),
            files=list(files or []),
            allowed_mentions=NO_PINGS,
        )
        return DiscordPostedMessage(sent)

    async def send(
        self,
        content: Optional[str] = None,
        embeds: Optional[Sequence[discord.Embed]] = None,
        files: Optional[Sequence[discord.File]] = None,
    ) -> DiscordPostedMessage:
        sent = await self.message.channel.send(
            content=content,
            embeds=list(embeds or []),
            files=list(files or []),
            allowed_mentions=NO_PINGS,
        )
        return DiscordPostedMessage(sent)

    async def react(self, emoji: str) -> None:
        await self.message.add_reaction(emoji)

    async def delete(self) -> None:
        await self.message.delete()

    async def suppress_previews(self) -> None:
        await self.message.edit(suppress=True)
