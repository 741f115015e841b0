"""
Contains bot startup and pre-flight check logic.
"""
import hashlib
from typing import Any, Dict

import discord
from discord.ext import commands

from embedbot.config import cdn_configured, storage_configured
from embedbot.exceptions import ConfigurationError
from embedbot.utils.logging import get_logger


def run_pre_flight_checks(config: Dict[str, Any]) -> None:
    """Runs all mandatory startup checks."""
    logger = get_logger(__name__)
    logger.info("--- Running Pre-Flight Checklist ---", extra={"subsys": "core", "event": "preflight_start"})

    # 1. Bot Token Check
    token = config.get("DISCORD_TOKEN")
    if not token:
        logger.critical("DISCORD_TOKEN is missing. Bot cannot start.")
        raise ConfigurationError("DISCORD_TOKEN not found in environment.")
    token_hash = hashlib.sha256(token.encode()).hexdigest()[:12]
    logger.info(f"🔑 Token hash={token_hash} validated", extra={"subsys": "core"})

    # 2. Intents Check
    intents = create_bot_intents()
    required_intents = {
        "message_content": intents.message_content,
        "guilds": intents.guilds,
        "guild_messages": intents.guild_messages,
        "guild_reactions": intents.guild_reactions,
    }
    missing = [name for name, enabled in required_intents.items() if not enabled]
    if missing:
        for name in missing:
            logger.error(f"Required intent '{name}' is disabled.", extra={"subsys": "core"})
    else:
        logger.info("✅ Intents verified", extra={"subsys": "core"})

    # 3. Object storage
    if storage_configured(config):
        logger.info(f"🪣 Object storage: bucket={config['S3_BUCKET']}", extra={"subsys": "core"})
        if not cdn_configured(config):
            logger.warning("⚠️ CDN_DOMAIN_URL not set; upload batching off", extra={"subsys": "core"})
    else:
        logger.warning("⚠️ Object storage not configured; voting and upload batching off", extra={"subsys": "core"})

    # 4. Allowed channels
    channels = config.get("EMBEDFIX_ALLOWED_CHANNELS") or []
    if not channels:
        raise ConfigurationError("EMBEDFIX_ALLOWED_CHANNELS must name at least one channel.")
    logger.info(f"📺 Watching channels: {', '.join('#' + c for c in channels)}", extra={"subsys": "core"})

    logger.info(f"discord.py version: {discord.__version__}", extra={"subsys": "core"})
    logger.info("--- Pre-Flight Checklist Complete ---", extra={"subsys": "core", "event": "preflight_done"})


def create_bot_intents() -> discord.Intents:
    """Intents for reading message content and vote reactions in guilds."""
    intents = discord.Intents.default()
    intents.message_content = True
    intents.guilds = True
    intents.guild_messages = True
    intents.guild_reactions = True
    return intents


def get_prefix(bot, message: discord.Message) -> list:
    """Mention or the configured prefix."""
    prefix = bot.config.get("COMMAND_PREFIX", "!") if getattr(bot, "config", None) else "!"
    return commands.when_mentioned_or(prefix)(bot, message)
