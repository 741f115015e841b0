"""Embed enhancement pipeline: link previews, repost detection, voting and upload batching."""
from .orchestrator import EmbedFixOrchestrator
from .settings import EmbedFixSettings

__all__ = ["EmbedFixOrchestrator", "EmbedFixSettings"]
