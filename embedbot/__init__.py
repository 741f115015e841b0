"""Discord bot that improves link previews for art platforms and batches image uploads."""

__version__ = "1.0.0"
