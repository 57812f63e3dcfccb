"""Redaction helpers so secrets never reach logs or response bodies."""

import re
from typing import Any, Dict, Iterable, Optional

from .constants import SECRET_PREVIEW_CHARS

_SENSITIVE_KEYS = {
    "api_key",
    "access_token",
    "authorization",
    "x-api-key",
    "proxy-authorization",
    "cookie",
    "set-cookie",
}

_BEARER_PATTERN = re.compile(r"\b(Bearer|Basic)\s+[A-Za-z0-9._~+/=-]+", re.IGNORECASE)


def sanitize_for_log(value: Any) -> Any:
    """Recursively sanitize payload values for logging."""
    if isinstance(value, dict):
        sanitized = {}
        for key, item in value.items():
            if isinstance(key, str) and key.lower() in _SENSITIVE_KEYS:
                sanitized[key] = "[REDACTED]"
            else:
                sanitized[key] = sanitize_for_log(item)
        return sanitized

    if isinstance(value, list):
        return [sanitize_for_log(item) for item in value]

    return value


def redact_headers(headers: Dict[str, str]) -> Dict[str, str]:
    return {
        k: "[REDACTED]" if k.lower() in _SENSITIVE_KEYS else v
        for k, v in headers.items()
    }


def sanitize_error_message(
    error: BaseException | str, sensitive_values: Optional[Iterable[str]] = None
) -> str:
    """Strip credential material from an error string before it is surfaced."""
    message = str(error)
    message = _BEARER_PATTERN.sub(r"\1 [REDACTED]", message)
    for value in sensitive_values or ():
        if value:
            message = message.replace(value, "[REDACTED]")
    return message


def preview_secret(value: Optional[str], chars: int = SECRET_PREVIEW_CHARS) -> Optional[str]:
    """Return a bounded preview of a secret, e.g. ``eyJhbGci...``."""
    if not value:
        return None
    if len(value) <= chars * 2:
        # Short values would be almost fully revealed by a fixed-size prefix.
        return value[: max(1, len(value) // 4)] + "..."
    return value[:chars] + "..."
