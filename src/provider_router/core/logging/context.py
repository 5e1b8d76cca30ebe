"""
Request correlation and shared logging state.

The request id lives in a ContextVar so concurrent asyncio tasks keep
their own ids. Level and configuration are process-wide.

Environment Variables:
    - PROVIDER_ROUTER_LOG_LEVEL: Log level (1-4 or name)
    - PROVIDER_ROUTER_LOG_DIR: Directory for the JSONL log file
    - PROVIDER_ROUTER_JSONL_FILE: JSONL filename
    - PROVIDER_ROUTER_LOG_ROTATE_BYTES: Max file size before rotation
    - PROVIDER_ROUTER_LOG_ROTATE_BACKUP: Rotated files to keep
    - PROVIDER_ROUTER_SETTINGS: Settings file consulted for `logging:`
"""
from __future__ import annotations

import os
from contextvars import ContextVar
from typing import Any, Dict

import yaml

from .levels import LEVEL_NAMES, LogLevel

_request_id: ContextVar[str] = ContextVar("request_id", default="-")

_configured: bool = False
_log_config: Dict[str, Any] = {}
_current_level: LogLevel = LogLevel.NORMAL


def get_request_id() -> str:
    """Request id for the current context, "-" outside a request."""
    return _request_id.get()


def set_request_id(rid: str) -> None:
    _request_id.set(rid)


def get_level() -> LogLevel:
    return _current_level


def set_level(level: LogLevel) -> None:
    global _current_level
    _current_level = level


def get_level_name() -> str:
    return LEVEL_NAMES.get(int(_current_level), "NORMAL")


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


def _env_int(name: str) -> int | None:
    raw = os.getenv(name)
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def read_logging_config() -> Dict[str, Any]:
    """
    Resolve logging options from the settings file and environment.

    Environment variables win over the `logging:` section of the
    settings file. A missing settings file is not an error here; an
    unreadable one is ignored so logging can still come up and report it.
    """
    from provider_router.core.config import ConfigValidationError, load_settings

    cfg: Dict[str, Any] = {}

    settings_path = os.getenv("PROVIDER_ROUTER_SETTINGS", "config/settings.yaml")
    try:
        settings = load_settings(settings_path, missing_ok=True)
    except (ConfigValidationError, yaml.YAMLError, OSError):
        settings = None
    if settings is not None:
        section = settings.raw.get("logging", {})
        if isinstance(section, dict):
            cfg.update(section)

    if os.getenv("PROVIDER_ROUTER_LOG_LEVEL"):
        cfg["level"] = os.environ["PROVIDER_ROUTER_LOG_LEVEL"]
    if os.getenv("PROVIDER_ROUTER_LOG_DIR"):
        cfg["log_dir"] = os.environ["PROVIDER_ROUTER_LOG_DIR"]
    if os.getenv("PROVIDER_ROUTER_JSONL_FILE"):
        cfg["jsonl_file"] = os.environ["PROVIDER_ROUTER_JSONL_FILE"]

    rotate_bytes = _env_int("PROVIDER_ROUTER_LOG_ROTATE_BYTES")
    if rotate_bytes is not None:
        cfg["rotate_max_bytes"] = rotate_bytes
    rotate_backup = _env_int("PROVIDER_ROUTER_LOG_ROTATE_BACKUP")
    if rotate_backup is not None:
        cfg["rotate_backup_count"] = rotate_backup

    return cfg
