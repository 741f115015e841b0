"""Environment parsing helpers for consistent boolean/numeric handling."""
from __future__ import annotations

import os
from typing import Optional


def _raw(name: str) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None:
        return None
    # Inline comments in .env files
    return raw.split("#")[0].strip()


def get_bool(name: str, default: bool = False) -> bool:
    """Parse a boolean env var with common truthy values."""
    raw = _raw(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "on"}


def get_int(name: str, default: int) -> int:
    raw = _raw(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def get_str(name: str, default: Optional[str] = None) -> Optional[str]:
    raw = _raw(name)
    if not raw:
        return default
    return raw

