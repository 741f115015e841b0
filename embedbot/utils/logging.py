"""Dual-sink logging: a Rich console for operators and a JSONL file for tooling.

Call sites attach structure through ``extra``; the JSONL sink keeps these keys
and drops the ones a record does not carry.
"""
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, NoReturn, Optional

from rich.logging import RichHandler

from .env import get_str

STRUCTURED_KEYS = ("subsys", "event", "guild_id", "user_id", "msg_id", "detail")
QUIET_LOGGERS = ("discord", "httpx", "httpcore", "botocore", "boto3", "s3transfer", "urllib3")

_LEVEL_ICONS = ((logging.ERROR, "✖"), (logging.WARNING, "⚠"), (logging.INFO, "✔"))


def _level_icon(record: logging.LogRecord) -> bool:
    record.level_icon = next((icon for level, icon in _LEVEL_ICONS if record.levelno >= level), "ℹ")
    return True


class JsonlFormatter(logging.Formatter):
    """One JSON object per line: ts, level, logger name, then structured extras."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        for key in STRUCTURED_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def init_logging(level: Optional[str] = None, jsonl_path: Optional[str] = None) -> None:
    """Install the console and JSONL sinks on the root logger, replacing any others."""
    level = (level or get_str("LOG_LEVEL", "INFO") or "INFO").upper()
    path = Path(jsonl_path or get_str("LOG_JSONL_PATH", "logs/embedbot.jsonl"))
    path.parent.mkdir(parents=True, exist_ok=True)

    pretty = RichHandler(rich_tracebacks=True, show_path=False, log_time_format="%Y-%m-%d %H:%M:%S")
    pretty.set_name("pretty_handler")
    pretty.addFilter(_level_icon)
    pretty.setFormatter(logging.Formatter(fmt="%(level_icon)s %(message)s"))

    jsonl = logging.FileHandler(str(path), encoding="utf-8")
    jsonl.set_name("jsonl_handler")
    jsonl.setFormatter(JsonlFormatter())

    logging.basicConfig(handlers=[pretty, jsonl], level=level, force=True)

    third_party_level = (get_str("THIRD_PARTY_LOG_LEVEL", "WARNING") or "WARNING").upper()
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(third_party_level)

    logging.getLogger(__name__).info(f"Logging to console and {path}", extra={"subsys": "logging"})


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def shutdown_logging_and_exit(exit_code: int) -> NoReturn:
    try:
        logging.getLogger(__name__).info("Shutting down", extra={"subsys": "logging"})
    finally:
        logging.shutdown()
        sys.exit(exit_code)
