"""
Redaction of credential-like log fields.

Keyword fields whose names look like secrets are replaced with
"[REDACTED]" before a record reaches any handler. Nested mappings and
lists are walked, so a headers dict carrying Authorization is covered.

Names ending in "token" (token, access_token, accessToken) are redacted;
counters such as prompt_tokens or token_count are not.
"""
from __future__ import annotations

import re
from typing import Any, Mapping

REDACTED = "[REDACTED]"

SENSITIVE_KEY_PATTERNS = (
    re.compile(r"api[-_]?key", re.IGNORECASE),
    re.compile(r"secret", re.IGNORECASE),
    re.compile(r"password", re.IGNORECASE),
    re.compile(r"authori[sz]ation", re.IGNORECASE),
    re.compile(r"session", re.IGNORECASE),
    re.compile(r"cookie", re.IGNORECASE),
    re.compile(r"token$", re.IGNORECASE),
)


def is_sensitive(name: Any) -> bool:
    return isinstance(name, str) and any(p.search(name) for p in SENSITIVE_KEY_PATTERNS)


def redact(value: Any) -> Any:
    """Copy of `value` with sensitive mapping entries replaced; None values are kept."""
    if isinstance(value, Mapping):
        return {
            key: REDACTED if is_sensitive(key) and item is not None else redact(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact(item) for item in value]
    return value
