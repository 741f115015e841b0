"""
Graceful shutdown handling for the Discord bot.
"""
import asyncio
import signal

from discord.ext import commands

from embedbot.utils.logging import get_logger

logger = get_logger(__name__)

_shutdown_timeout = 30  # seconds


class GracefulShutdown:
    """Closes the bot once, with a timeout, when a termination signal arrives."""

    def __init__(self, bot: commands.Bot, timeout: float = _shutdown_timeout):
        self.bot = bot
        self.timeout = timeout
        self.shutdown_in_progress = False

    async def execute_shutdown(self, signal_num=None) -> None:
        if self.shutdown_in_progress:
            logger.warning("Shutdown already in progress", extra={"subsys": "core"})
            return
        self.shutdown_in_progress = True

        if signal_num:
            logger.info(f"🔄 Received signal {signal_num}, initiating graceful shutdown...", extra={"subsys": "core"})
        else:
            logger.info("🔄 Initiating graceful shutdown...", extra={"subsys": "core"})

        try:
            await asyncio.wait_for(self.bot.close(), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Shutdown timed out after {self.timeout}s", extra={"subsys": "core"})

    def __call__(self, signal_num, frame=None) -> None:
        loop = asyncio.get_event_loop()
        loop.create_task(self.execute_shutdown(signal_num))


def setup_signal_handlers(bot: commands.Bot) -> GracefulShutdown:
    """Set up signal handlers for graceful shutdown."""
    handler = GracefulShutdown(bot)
    signal.signal(signal.SIGINT, handler)
    signal.signal(signal.SIGTERM, handler)
    logger.info("Signal handlers configured for graceful shutdown", extra={"subsys": "core"})
    return handler
