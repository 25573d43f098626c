"""Helpers for safe debug logging.

Scanned party-mode tokens authorize a driving window, so they are masked
before they reach log output. Event payloads are passed through
:func:`redact_for_log` before DEBUG logging.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

_SENSITIVE_VALUE_KEYS: frozenset[str] = frozenset(
    {
        "qrpayload",
        "payload",
        "token",
        "tokens",
        "allowedtokens",
    }
)

_VISIBLE_TOKEN_CHARS = 3


def redact_token(token: str | None) -> str:
    """Mask all but the first few characters of a scanned token."""
    if token is None:
        return "<none>"
    if len(token) <= _VISIBLE_TOKEN_CHARS:
        return "*" * len(token)
    return f"{token[:_VISIBLE_TOKEN_CHARS]}…<{len(token)} chars>"


def redact_for_log(value: Any, *, max_string: int = 512, _depth: int = 0) -> Any:
    """Return a redacted copy of *value* suitable for debug logs."""
    if _depth > 20:
        return "<max-depth>"

    if value is None:
        return None

    if isinstance(value, str):
        if len(value) > max_string:
            return f"{value[:max_string]}…<truncated>"
        return value

    if isinstance(value, (int, float, bool)):
        return value

    if isinstance(value, bytes):
        return f"<bytes:{len(value)}b>"

    if isinstance(value, Mapping):
        redacted: dict[str, Any] = {}
        for k, v in value.items():
            key = str(k)
            if key.lower() in _SENSITIVE_VALUE_KEYS and v is not None:
                redacted[key] = "<redacted>"
            else:
                redacted[key] = redact_for_log(v, max_string=max_string, _depth=_depth + 1)
        return redacted

    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return [redact_for_log(v, max_string=max_string, _depth=_depth + 1) for v in value]

    return repr(value)
