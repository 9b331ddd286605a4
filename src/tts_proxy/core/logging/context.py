"""
Request Context and Configuration State for Logging.

The request id lives in a ContextVar so concurrent requests served by the
same event loop each see their own id. Level and file settings are
process-wide module state.

Environment Variables:
    - TTS_PROXY_LOG_LEVEL: Override log level (1-4 or a level name)
    - TTS_PROXY_LOG_DIR: Directory for the JSONL log file
    - TTS_PROXY_JSONL_FILE: JSONL filename (default tts-proxy.jsonl)
    - TTS_PROXY_LOG_ROTATE_BYTES: Max log file size before rotation
    - TTS_PROXY_LOG_ROTATE_BACKUP: Number of rotated files to keep
"""
from __future__ import annotations

import os
from contextvars import ContextVar
from typing import Any, Dict

import yaml

from .levels import LEVEL_NAMES, LogLevel

# "-" marks log lines emitted outside any request
_request_id: ContextVar[str] = ContextVar("request_id", default="-")

_configured: bool = False
_log_config: Dict[str, Any] = {}
_current_level: LogLevel = LogLevel.NORMAL


def get_request_id() -> str:
    """Request id bound to the current context, or "-"."""
    return _request_id.get()


def set_request_id(rid: str) -> None:
    """Bind a request id to the current context for log correlation."""
    _request_id.set(rid)


def get_level() -> LogLevel:
    return _current_level


def set_level(level: LogLevel) -> None:
    global _current_level
    _current_level = level


def get_level_name() -> str:
    return LEVEL_NAMES.get(_current_level, "NORMAL")


def is_configured() -> bool:
    return _configured


def set_configured(value: bool) -> None:
    global _configured
    _configured = value


def get_log_config() -> Dict[str, Any]:
    return _log_config


def set_log_config(config: Dict[str, Any]) -> None:
    global _log_config
    _log_config = config


def read_logging_config() -> Dict[str, Any]:
    """
    Resolve logging configuration from the settings file and environment.

    Priority (highest first):
        1. TTS_PROXY_LOG_* environment variables
        2. ``logging`` section of the settings file
        3. Defaults applied by configure_logging()

    Returns:
        Dictionary with resolved logging configuration.
    """
    cfg: Dict[str, Any] = {}

    from tts_proxy.core.config import load_settings, settings_path
    try:
        settings = load_settings(settings_path(), missing_ok=True)
        cfg.update(settings.raw.get("logging", {}) or {})
    except (OSError, yaml.YAMLError):
        # Unreadable or malformed settings: logging still has to come up
        pass

    if os.getenv("TTS_PROXY_LOG_LEVEL"):
        cfg["level"] = os.environ["TTS_PROXY_LOG_LEVEL"]
    if os.getenv("TTS_PROXY_LOG_DIR"):
        cfg["log_dir"] = os.environ["TTS_PROXY_LOG_DIR"]
    if os.getenv("TTS_PROXY_JSONL_FILE"):
        cfg["jsonl_file"] = os.environ["TTS_PROXY_JSONL_FILE"]
    for env_name, key in (
        ("TTS_PROXY_LOG_ROTATE_BYTES", "rotate_max_bytes"),
        ("TTS_PROXY_LOG_ROTATE_BACKUP", "rotate_backup_count"),
    ):
        value = os.getenv(env_name)
        if value and value.isdigit():
            cfg[key] = int(value)

    return cfg
