"""Configuration loading and environment setup."""
import os
import time
from pathlib import Path
from typing import Dict, Any, Optional

from dotenv import load_dotenv

from .exceptions import ConfigurationError
from .utils.logging import get_logger

logger = get_logger(__name__)

# Load environment variables from .env file with explicit path
load_dotenv(dotenv_path=Path.cwd() / ".env", verbose=False)

# Also try loading from the project root in case we're running from a subdirectory
load_dotenv(dotenv_path=Path(__file__).parent.parent / ".env", verbose=False)


REQUIRED_VARS = ["DISCORD_TOKEN"]
STORAGE_VARS = ["S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"]


def validate_required_env() -> None:
    """Validate that all required environment variables are present."""
    missing_vars = [var for var in REQUIRED_VARS if not os.getenv(var)]
    if missing_vars:
        raise ConfigurationError(
            f"Missing required environment variables: {', '.join(missing_vars)}"
        )

    missing_storage = [var for var in STORAGE_VARS if not os.getenv(var)]
    if missing_storage:
        logger.warning(
            f"⚠️ Object storage not configured ({', '.join(missing_storage)} missing); "
            "vote ledger and upload batching are disabled",
            extra={"subsys": "config", "event": "storage_disabled"},
        )
    elif not os.getenv("CDN_DOMAIN_URL"):
        logger.warning(
            "⚠️ CDN_DOMAIN_URL not set; upload batching is disabled",
            extra={"subsys": "config", "event": "cdn_disabled"},
        )


def _clean_env_value(value: Optional[str]) -> Optional[str]:
    """Strip inline comments and whitespace from an env value."""
    if not value:
        return value
    return value.split("#")[0].strip() or None


def _safe_int(value: Optional[str], default: str, var_name: str) -> int:
    """Safely convert environment variable to int, handling malformed values."""
    try:
        clean_value = _clean_env_value(value) or default
        return int(clean_value)
    except (ValueError, AttributeError):
        logger.warning(f"⚠️ Invalid {var_name} value '{value}', using default {default}")
        return int(default)


def _safe_float(value: Optional[str], default: str, var_name: str) -> float:
    """Safely convert environment variable to float, handling malformed values."""
    try:
        clean_value = _clean_env_value(value) or default
        return float(clean_value)
    except (ValueError, AttributeError):
        logger.warning(f"⚠️ Invalid {var_name} value '{value}', using default {default}")
        return float(default)


def _csv(value: Optional[str], default: str) -> list:
    raw = _clean_env_value(value) or default
    return [s.strip().lower() for s in raw.split(",") if s.strip()]


# Global config cache
_config_cache: Optional[Dict[str, Any]] = None
_cache_timestamp: float = 0
CACHE_TTL = 300  # 5 minute cache TTL


def load_config(force_reload: bool = False) -> Dict[str, Any]:
    """
    Load configuration from environment variables with caching.
    """
    global _config_cache, _cache_timestamp

    current_time = time.time()
    if not force_reload and _config_cache and (current_time - _cache_timestamp) < CACHE_TTL:
        return _config_cache

    config = {
        # DISCORD BOT SETTINGS
        "DISCORD_TOKEN": os.getenv("DISCORD_TOKEN"),
        "COMMAND_PREFIX": os.getenv("COMMAND_PREFIX", "!"),

        # EMBED FIX PIPELINE
        "EMBEDFIX_ALLOWED_CHANNELS": _csv(os.getenv("EMBEDFIX_ALLOWED_CHANNELS"), "art,nsfw"),
        "EMBEDFIX_API_TIMEOUT_S": _safe_float(os.getenv("EMBEDFIX_API_TIMEOUT_S"), "8", "EMBEDFIX_API_TIMEOUT_S"),
        "EMBEDFIX_GUILD_RATE_LIMIT": _safe_int(os.getenv("EMBEDFIX_GUILD_RATE_LIMIT"), "15", "EMBEDFIX_GUILD_RATE_LIMIT"),
        "EMBEDFIX_USER_RATE_LIMIT": _safe_int(os.getenv("EMBEDFIX_USER_RATE_LIMIT"), "5", "EMBEDFIX_USER_RATE_LIMIT"),
        "EMBEDFIX_RATE_WINDOW_S": _safe_float(os.getenv("EMBEDFIX_RATE_WINDOW_S"), "60", "EMBEDFIX_RATE_WINDOW_S"),
        "EMBEDFIX_CACHE_TTL_S": _safe_float(os.getenv("EMBEDFIX_CACHE_TTL_S"), "1800", "EMBEDFIX_CACHE_TTL_S"),
        "EMBEDFIX_CACHE_MAX_SIZE": _safe_int(os.getenv("EMBEDFIX_CACHE_MAX_SIZE"), "500", "EMBEDFIX_CACHE_MAX_SIZE"),
        "EMBEDFIX_NEGATIVE_CACHE_TTL_S": _safe_float(
            os.getenv("EMBEDFIX_NEGATIVE_CACHE_TTL_S"), "300", "EMBEDFIX_NEGATIVE_CACHE_TTL_S"
        ),
        "EMBEDFIX_BREAKER_THRESHOLD": _safe_int(os.getenv("EMBEDFIX_BREAKER_THRESHOLD"), "5", "EMBEDFIX_BREAKER_THRESHOLD"),
        "EMBEDFIX_BREAKER_COOLDOWN_S": _safe_float(
            os.getenv("EMBEDFIX_BREAKER_COOLDOWN_S"), "120", "EMBEDFIX_BREAKER_COOLDOWN_S"
        ),
        "EMBEDFIX_MAX_EMBEDS_PER_MESSAGE": _safe_int(
            os.getenv("EMBEDFIX_MAX_EMBEDS_PER_MESSAGE"), "4", "EMBEDFIX_MAX_EMBEDS_PER_MESSAGE"
        ),
        "EMBEDFIX_MAX_VIDEO_BYTES": _safe_int(
            os.getenv("EMBEDFIX_MAX_VIDEO_BYTES"), str(25 * 1024 * 1024), "EMBEDFIX_MAX_VIDEO_BYTES"
        ),
        "EMBEDFIX_DUPLICATE_WINDOW_S": _safe_float(
            os.getenv("EMBEDFIX_DUPLICATE_WINDOW_S"), "86400", "EMBEDFIX_DUPLICATE_WINDOW_S"
        ),
        "EMBEDFIX_EDIT_WINDOW_S": _safe_float(os.getenv("EMBEDFIX_EDIT_WINDOW_S"), "259200", "EMBEDFIX_EDIT_WINDOW_S"),
        "EMBEDFIX_TWITTER_API": _clean_env_value(os.getenv("EMBEDFIX_TWITTER_API")) or "https://api.fxtwitter.com",
        "EMBEDFIX_PIXIV_PROXY": _clean_env_value(os.getenv("EMBEDFIX_PIXIV_PROXY")) or "https://phixiv.net",
        "EMBEDFIX_INSTAGRAM_PROXY": _clean_env_value(os.getenv("EMBEDFIX_INSTAGRAM_PROXY")) or "ddinstagram.com",
        "EMBEDFIX_VIDEO_FALLBACK": _clean_env_value(os.getenv("EMBEDFIX_VIDEO_FALLBACK")) or "https://vxtwitter.com",

        # OUTBOUND HTTP
        "HTTP_MAX_PER_HOST": _safe_int(os.getenv("HTTP_MAX_PER_HOST"), "4", "HTTP_MAX_PER_HOST"),
        "HTTP_MAX_CONNECTIONS": _safe_int(os.getenv("HTTP_MAX_CONNECTIONS"), "64", "HTTP_MAX_CONNECTIONS"),

        # UPLOAD BATCHING
        "UPLOAD_BATCH_WINDOW_S": _safe_float(os.getenv("UPLOAD_BATCH_WINDOW_S"), "120", "UPLOAD_BATCH_WINDOW_S"),
        "UPLOAD_CLEANUP_BUFFER_S": _safe_float(os.getenv("UPLOAD_CLEANUP_BUFFER_S"), "600", "UPLOAD_CLEANUP_BUFFER_S"),
        "UPLOAD_MAX_IMAGES_PER_BATCH": _safe_int(
            os.getenv("UPLOAD_MAX_IMAGES_PER_BATCH"), "10", "UPLOAD_MAX_IMAGES_PER_BATCH"
        ),
        "UPLOAD_DUPLICATE_WINDOW_S": _safe_float(
            os.getenv("UPLOAD_DUPLICATE_WINDOW_S"), "86400", "UPLOAD_DUPLICATE_WINDOW_S"
        ),
        "UPLOAD_PREFIX": _clean_env_value(os.getenv("UPLOAD_PREFIX")) or "temp/uploads",

        # OBJECT STORAGE
        "S3_ENDPOINT_URL": _clean_env_value(os.getenv("S3_ENDPOINT_URL")),
        "S3_REGION": _clean_env_value(os.getenv("S3_REGION")) or "auto",
        "S3_ACCESS_KEY_ID": _clean_env_value(os.getenv("S3_ACCESS_KEY_ID")),
        "S3_SECRET_ACCESS_KEY": _clean_env_value(os.getenv("S3_SECRET_ACCESS_KEY")),
        "S3_BUCKET": _clean_env_value(os.getenv("S3_BUCKET")),
        "CDN_DOMAIN_URL": _clean_env_value(os.getenv("CDN_DOMAIN_URL")),

        # VOTE LEDGER
        "VOTES_KEY": _clean_env_value(os.getenv("VOTES_KEY")) or "data/embed-fix/embed-votes.json",
        "VOTES_CACHE_TTL_S": _safe_float(os.getenv("VOTES_CACHE_TTL_S"), "30", "VOTES_CACHE_TTL_S"),

        # LOGGING / OBSERVABILITY
        "LOG_LEVEL": os.getenv("LOG_LEVEL", "INFO"),
        "LOG_JSONL_PATH": os.getenv("LOG_JSONL_PATH", "logs/embedbot.jsonl"),
        "OBS_ENABLE_PROMETHEUS": os.getenv("OBS_ENABLE_PROMETHEUS", "false").lower() == "true",
        "PROMETHEUS_PORT": _safe_int(os.getenv("PROMETHEUS_PORT"), "8000", "PROMETHEUS_PORT"),
    }

    _config_cache = config
    _cache_timestamp = current_time

    logger.debug("Configuration loaded", extra={"subsys": "config", "event": "config_loaded"})
    return config


def storage_configured(config: Dict[str, Any]) -> bool:
    """True when the S3 bucket and credentials are all set."""
    return all(config.get(var) for var in STORAGE_VARS)


def cdn_configured(config: Dict[str, Any]) -> bool:
    return storage_configured(config) and bool(config.get("CDN_DOMAIN_URL"))
