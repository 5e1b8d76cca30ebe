"""
Log formatters: JSON Lines for files, colored text for the console.

JSONL (file):
    {"ts":"2025-03-02T10:14:05+00:00","level":2,"tag":"INFO","message":"route_selected","request_id":"a1b2c3","extra":{"provider":"gemini_free"}}

Console:
    10:14:05 [ INFO  ] (a1b2c3) route_selected provider=gemini_free 0.412s

Console coloring for extra fields:
    - provider ids: cyan for free/local tiers, yellow for paid
    - budget_percent: green < 75% < yellow < 90% < red
    - status: red for 4xx/5xx
"""
from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Dict

from .colors import Colors, get_tag_color
from .redaction import redact

_FREE_SUFFIXES = ("_free",)
_LOCAL_PROVIDERS = {"ollama"}


def _colors_enabled() -> bool:
    # Looked up at call time so tests can flip the package flag
    import provider_router.core.logging as log_module
    return getattr(log_module, "_USE_COLORS", False)


def _paint(text: str, color: str) -> str:
    if not _colors_enabled():
        return text
    return f"{color}{text}{Colors.RESET}"


class JsonlFormatter(logging.Formatter):
    """
    One JSON object per line.

    Keys: ts, level, tag, message, request_id, plus event, seconds and
    extra when the record carries them.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created).astimezone().isoformat(),
            "level": getattr(record, "numeric_level", 2),
            "tag": getattr(record, "tag", record.levelname),
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", "-"),
        }

        event = getattr(record, "event", None)
        if event:
            payload["event"] = event

        seconds = getattr(record, "seconds", None)
        if seconds is not None:
            payload["seconds"] = seconds

        extra_data = redact(getattr(record, "extra_data", None))
        if extra_data:
            payload["extra"] = extra_data

        return json.dumps(payload, ensure_ascii=False, default=str)


class ColoredConsoleFormatter(logging.Formatter):
    """Human-readable line: HH:MM:SS [ TAG ] (rid) message key=value 0.123s"""

    def format(self, record: logging.LogRecord) -> str:
        tag = getattr(record, "tag", record.levelname)
        rid = getattr(record, "request_id", "-")

        parts = [
            _paint(datetime.fromtimestamp(record.created).strftime("%H:%M:%S"), Colors.DIM),
            _paint(f"[{tag:^7}]", get_tag_color(tag)),
        ]
        if rid != "-":
            parts.append(_paint(f"({rid})", Colors.DIM + Colors.CYAN))
        parts.append(record.getMessage())

        event = getattr(record, "event", None)
        if event:
            parts.append(_paint(f"event={event}", Colors.BLUE))

        seconds = getattr(record, "seconds", None)
        if seconds is not None:
            if seconds < 0.5:
                time_color = Colors.GREEN
            elif seconds < 5.0:
                time_color = Colors.YELLOW
            else:
                time_color = Colors.RED
            parts.append(_paint(f"{seconds:.3f}s", time_color))

        extra_data = redact(getattr(record, "extra_data", None))
        if extra_data:
            for key, value in extra_data.items():
                parts.append(_paint(f"{key}={value}", self._field_color(key, value)))

        return " ".join(parts)

    def _field_color(self, key: str, value: Any) -> str:
        """Pick a color for an extra field from its name and value."""
        if key == "provider" and isinstance(value, str):
            if value in _LOCAL_PROVIDERS or value.endswith(_FREE_SUFFIXES):
                return Colors.CYAN
            return Colors.YELLOW

        if key == "budget_percent" and isinstance(value, (int, float)):
            if value < 75:
                return Colors.GREEN
            if value < 90:
                return Colors.YELLOW
            return Colors.RED

        if key == "status" and isinstance(value, int):
            return Colors.RED if value >= 400 else Colors.GREEN

        if key in ("cache", "cached") and value in (True, "hit"):
            return Colors.GREEN

        return Colors.DIM
