"""Runtime settings for joku.

Settings come from environment variables and may be overridden by keyword
arguments (the CLI passes its flags through here)::

    JOKU_CONFIG             path to config.toml
    JOKU_HTTP_TIMEOUT       per-request ECP timeout, seconds
    JOKU_DISCOVERY_TIMEOUT  SSDP collection window, seconds
    JOKU_LOG_LEVEL          logging level name
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

DEFAULT_HTTP_TIMEOUT = 3.0
DEFAULT_DISCOVERY_TIMEOUT = 3.0


def default_config_path() -> Path:
    """``$XDG_CONFIG_HOME/joku/config.toml`` or ``~/.config/joku/config.toml``."""
    xdg = os.environ.get("XDG_CONFIG_HOME")
    base = Path(xdg) if xdg else Path.home() / ".config"
    return base / "joku" / "config.toml"


@dataclass
class Settings:
    config_path: Path
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    discovery_timeout: float = DEFAULT_DISCOVERY_TIMEOUT
    log_level: int = logging.WARNING

    @classmethod
    def from_env(cls, **overrides: Any) -> Settings:
        """Build settings from ``JOKU_*`` variables; non-``None`` *overrides* win."""
        values: dict[str, Any] = {
            "config_path": Path(os.environ["JOKU_CONFIG"]).expanduser()
            if os.environ.get("JOKU_CONFIG")
            else default_config_path(),
            "http_timeout": _positive_float("JOKU_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT),
            "discovery_timeout": _positive_float(
                "JOKU_DISCOVERY_TIMEOUT", DEFAULT_DISCOVERY_TIMEOUT
            ),
            "log_level": _log_level(os.environ.get("JOKU_LOG_LEVEL", "WARNING")),
        }
        for key, value in overrides.items():
            if value is None:
                continue
            if key == "config_path":
                value = Path(value).expanduser()
            elif key in ("http_timeout", "discovery_timeout") and value <= 0:
                raise ValueError(f"{key} must be > 0, got {value}")
            values[key] = value
        return cls(**values)


def _positive_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{name} must be > 0, got {raw!r}")
    return value


def _log_level(raw: str) -> int:
    level = logging.getLevelName(raw.strip().upper())
    if not isinstance(level, int):
        raise ValueError(f"JOKU_LOG_LEVEL is not a logging level: {raw!r}")
    return level
