"""
Secret redaction for structured log fields.

Any field whose name contains one of the sensitive fragments below is
replaced with ``[REDACTED]`` before it reaches a handler. Nested dicts are
redacted recursively.
"""
from __future__ import annotations

from typing import Any, Dict, Mapping

REDACTED = "[REDACTED]"

SENSITIVE_FRAGMENTS = (
    "key",
    "secret",
    "password",
    "token",
    "authorization",
)


def is_sensitive(name: str) -> bool:
    lowered = name.lower()
    return any(fragment in lowered for fragment in SENSITIVE_FRAGMENTS)


def redact_fields(fields: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Return a copy of ``fields`` with secret-shaped values masked.

    Example:
        >>> redact_fields({"api_key": "sk-123", "chars": 12})
        {'api_key': '[REDACTED]', 'chars': 12}
    """
    clean: Dict[str, Any] = {}
    for name, value in fields.items():
        if is_sensitive(str(name)):
            clean[name] = REDACTED
        elif isinstance(value, Mapping):
            clean[name] = redact_fields(value)
        else:
            clean[name] = value
    return clean
