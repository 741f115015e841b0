"""
Custom exceptions for the embed bot, providing a structured error hierarchy.
"""
from typing import Optional


class BotBaseException(Exception):
    """Base exception for all custom exceptions in this bot."""

    pass


class ConfigurationError(BotBaseException):
    """Raised for errors in bot configuration, like missing keys or invalid values."""

    pass


class APIError(BotBaseException):
    """Raised for errors related to external API interactions (mirror APIs, CDN, etc.)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class UpstreamTimeout(BotBaseException):
    """Raised when an outbound call exceeds its explicit timeout."""

    pass


class MediaTooLargeError(BotBaseException):
    """Raised when a download exceeds its configured byte ceiling."""

    def __init__(self, message: str, limit: int = 0, size: Optional[int] = None):
        super().__init__(message)
        self.limit = limit
        self.size = size


class StorageError(BotBaseException):
    """Raised for object-store failures."""

    pass


class StorageKeyNotFound(StorageError):
    """Raised when a requested object key does not exist."""

    pass
