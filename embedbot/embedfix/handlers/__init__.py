"""Platform handlers."""
from .base import MatchGroups, PlatformHandler
from .instagram import InstagramHandler
from .pixiv import PixivHandler
from .twitter import TwitterHandler

__all__ = ["MatchGroups", "PlatformHandler", "TwitterHandler", "PixivHandler", "InstagramHandler"]
