"""
cloudbase_manager.tier0_core.redact
────────────────────────────────────
Keeps credential material out of logs and error text.

Key matching ignores case, ``_`` and ``-``, so ``SecretKey``, ``secret_key``
and ``x-tc-token`` style names are all caught. Free text is scrubbed for TC3
signatures and credentials embedded in proxy URLs.
"""
from __future__ import annotations

import re
from typing import Any

REDACTED = "[REDACTED]"

# normalized: lower case, no "_" or "-"
_SENSITIVE_KEYS: frozenset[str] = frozenset({
    "secretkey", "secret", "token", "sessiontoken", "xtctoken", "authorization",
    "privatekey", "platformsecret", "codesecret", "password",
})

_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"Signature=[0-9a-fA-F]+"), "Signature=[REDACTED]"),
    (re.compile(r"(https?://)[^/\s:@]+:[^/\s@]+@", re.I), r"\1[REDACTED]@"),
    (re.compile(r"(secret[_-]?key|token|password)\s*=\s*[^\s&\"',]+", re.I), r"\1=[REDACTED]"),
]


def is_sensitive(key: Any) -> bool:
    return str(key).lower().replace("_", "").replace("-", "") in _SENSITIVE_KEYS


def _redact_value(value: Any) -> Any:
    if isinstance(value, dict):
        return redact_dict(value)
    if isinstance(value, (list, tuple)):
        return type(value)(_redact_value(item) for item in value)
    return value


def redact_dict(data: dict[str, Any]) -> dict[str, Any]:
    """Copy of ``data`` with every sensitive value, at any depth, replaced by REDACTED."""
    return {
        key: REDACTED if is_sensitive(key) else _redact_value(value)
        for key, value in data.items()
    }


def scrub_string(text: str) -> str:
    for pattern, replacement in _PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def structlog_redact_processor(
    logger: Any, method: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    return redact_dict(event_dict)


__all__ = [
    "REDACTED",
    "is_sensitive",
    "redact_dict",
    "scrub_string",
    "structlog_redact_processor",
]
