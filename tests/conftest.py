"""
Shared fixtures: a controllable clock plus in-memory fakes for the object
store and the chat boundary.
"""

import itertools
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from unittest import mock

import pytest

from embedbot.exceptions import StorageError, StorageKeyNotFound

_ids = itertools.count(1000)


class FakeClock:
    """Callable clock; tests move time with ``advance``."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeObjectStore:
    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.content_types: Dict[str, str] = {}
        self.acls: Dict[str, Optional[str]] = {}
        self.tags: Dict[str, Dict[str, str]] = {}
        self.put_calls = 0
        self.fail_puts = False

    async def get(self, key: str) -> bytes:
        if key not in self.objects:
            raise StorageKeyNotFound(key)
        return self.objects[key]

    async def put(self, key: str, data: bytes, content_type: str, acl: Optional[str] = None) -> None:
        if self.fail_puts:
            raise StorageError(f"put {key} failed")
        self.put_calls += 1
        self.objects[key] = data
        self.content_types[key] = content_type
        self.acls[key] = acl

    async def delete_many(self, keys) -> int:
        deleted = 0
        for key in list(keys):
            if self.objects.pop(key, None) is not None:
                deleted += 1
        return deleted

    async def copy(self, src_key: str, dst_key: str) -> None:
        if src_key not in self.objects:
            raise StorageKeyNotFound(src_key)
        self.objects[dst_key] = self.objects[src_key]

    async def tag(self, key: str, tags: Dict[str, str]) -> None:
        self.tags[key] = dict(tags)


@dataclass
class FakeAuthor:
    id: str = "user-1"
    is_bot: bool = False
    username: str = "artfan"
    display_name: str = "Art Fan"
    avatar_url: Optional[str] = "https://cdn.example/avatar.png"


@dataclass
class FakeAttachment:
    url: str
    filename: str
    content_type: Optional[str] = None


class FakePosted:
    def __init__(self, content=None, embeds=None, files=None):
        self.id = str(next(_ids))
        self.content = content
        self.embeds = list(embeds or [])
        self.files = list(files or [])
        self.reactions: List[str] = []
        self.deleted = False

    async def react(self, emoji: str) -> None:
        self.reactions.append(emoji)

    async def delete(self) -> None:
        self.deleted = True


@dataclass
class FakeChatMessage:
    content: str = ""
    attachments: List[FakeAttachment] = field(default_factory=list)
    author: FakeAuthor = field(default_factory=FakeAuthor)
    guild_id: Optional[str] = "guild-1"
    guild_name: Optional[str] = "Art Club"
    channel_id: str = "chan-1"
    channel_name: str = "art"
    created_at: float = 1_700_000_000.0
    has_previews: bool = False
    id: str = field(default_factory=lambda: str(next(_ids)))

    def __post_init__(self):
        self.replies: List[FakePosted] = []
        self.sent: List[FakePosted] = []
        self.reactions: List[str] = []
        self.deleted = False
        self.suppress_calls = 0

    @property
    def jump_url(self) -> str:
        return f"https://discord.com/channels/{self.guild_id}/{self.channel_id}/{self.id}"

    async def reply(self, content=None, embeds=None, files=None) -> FakePosted:
        posted = FakePosted(content, embeds, files)
        self.replies.append(posted)
        return posted

    async def send(self, content=None, embeds=None, files=None) -> FakePosted:
        posted = FakePosted(content, embeds, files)
        self.sent.append(posted)
        return posted

    async def react(self, emoji: str) -> None:
        self.reactions.append(emoji)

    async def delete(self) -> None:
        self.deleted = True

    async def suppress_previews(self) -> None:
        self.suppress_calls += 1


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return FakeObjectStore()


@pytest.fixture
def mocker(request):
    """
    Lightweight replacement for pytest-mock's `mocker` fixture.
    Provides mocker.patch(target, ...) -> started mock (auto-teardown on test end).
    """

    class _SimpleMocker:
        def patch(self, target, *args, **kwargs):
            patcher = mock.patch(target, *args, **kwargs)
            started = patcher.start()
            request.addfinalizer(patcher.stop)
            return started

        def patch_object(self, target, attribute, *args, **kwargs):
            patcher = mock.patch.object(target, attribute, *args, **kwargs)
            started = patcher.start()
            request.addfinalizer(patcher.stop)
            return started

    return _SimpleMocker()
