"""
Chat-platform boundary consumed by the orchestrator and the upload batcher.

The bot layer adapts ``discord.Message`` to these protocols; tests use
in-memory fakes. Cards and files are passed through as ``discord.Embed`` and
``discord.File`` objects.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Optional, Protocol, Sequence

if TYPE_CHECKING:
    import discord


class ChatAuthor(Protocol):
    id: str
    is_bot: bool
    username: str
    display_name: str
    avatar_url: Optional[str]


class ChatAttachment(Protocol):
    url: str
    filename: str
    content_type: Optional[str]


class PostedMessage(Protocol):
    id: str

    async def react(self, emoji: str) -> None: ...

    async def delete(self) -> None: ...


class ChatMessage(Protocol):
    id: str
    content: str
    attachments: Sequence[ChatAttachment]
    author: ChatAuthor
    guild_id: Optional[str]
    guild_name: Optional[str]
    channel_id: str
    channel_name: str
    # Epoch seconds
    created_at: float
    jump_url: str
    has_previews: bool

    async def reply(
        self,
        content: Optional[str] = None,
        embeds: Optional[Sequence["discord.Embed"]] = None,
        files: Optional[Sequence["discord.File"]] = None,
    ) -> PostedMessage:
        """Reply to this message without pinging its author."""
        ...

    async def send(
        self,
        content: Optional[str] = None,
        embeds: Optional[Sequence["discord.Embed"]] = None,
        files: Optional[Sequence["discord.File"]] = None,
    ) -> PostedMessage:
        """Post into this message's channel without replying to it."""
        ...

    async def react(self, emoji: str) -> None: ...

    async def delete(self) -> None: ...

    async def suppress_previews(self) -> None: ...
