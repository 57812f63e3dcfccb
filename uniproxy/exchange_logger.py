"""Optional JSONL log of proxied request/response exchanges."""

import asyncio
import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from .redaction import redact_headers, sanitize_for_log

logger = logging.getLogger(__name__)

_LOG_DIR: Optional[Path] = None
_LOG_MESSAGE_CONTENT = True

# Lock to ensure atomic writes to log files when running in threads
_log_lock = threading.Lock()


def configure_exchange_log(log_dir: Optional[str], log_message_content: bool = True) -> None:
    """Enable logging into ``log_dir``, or disable it when ``log_dir`` is None."""
    global _LOG_DIR, _LOG_MESSAGE_CONTENT
    _LOG_MESSAGE_CONTENT = log_message_content
    if log_dir is None:
        _LOG_DIR = None
        return
    _LOG_DIR = Path(log_dir)
    _LOG_DIR.mkdir(parents=True, exist_ok=True)


def is_enabled() -> bool:
    return _LOG_DIR is not None


def get_log_path(label: str) -> Path:
    """Get log file path for a given label (provider id or 'proxy')."""
    if _LOG_DIR is None:
        raise RuntimeError("Exchange log is not configured")
    _LOG_DIR.mkdir(parents=True, exist_ok=True)
    date_str = datetime.now(timezone.utc).strftime("%Y-%m-%d")
    return _LOG_DIR / f"{label}_{date_str}.jsonl"


def _redact_message_content(value: Any) -> Any:
    """Recursively redact message content fields when requested."""
    if isinstance(value, dict):
        redacted: Dict[str, Any] = {}
        for key, item in value.items():
            if key == "content":
                redacted[key] = "[REDACTED]"
            else:
                redacted[key] = _redact_message_content(item)
        return redacted
    if isinstance(value, list):
        return [_redact_message_content(item) for item in value]
    return value


def _decode_payload(value: Any) -> Any:
    """Decode an opaque body: JSON when possible, otherwise text."""
    if not isinstance(value, (bytes, bytearray)):
        return value
    if not value:
        return None
    try:
        return json.loads(value)
    except (UnicodeDecodeError, ValueError):
        return value.decode("utf-8", errors="replace")


def _sanitize_exchange_payload(payload: Any) -> Any:
    sanitized = sanitize_for_log(_decode_payload(payload))
    if _LOG_MESSAGE_CONTENT:
        return sanitized
    return _redact_message_content(sanitized)


def _log_exchange_sync(
    label: str,
    request_id: str,
    method: str,
    path: str,
    request_data: Any,
    response_data: Any,
    status_code: Optional[int],
    latency_ms: float,
    error: Optional[Dict[str, Any]] = None,
    request_headers: Optional[Dict[str, str]] = None,
) -> None:
    entry: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "request_id": request_id,
        "label": label,
        "method": method,
        "path": path,
        "status_code": status_code,
        "latency_ms": round(latency_ms, 2),
        "request": _sanitize_exchange_payload(request_data),
        "request_headers": redact_headers(request_headers) if request_headers else None,
        "response": _sanitize_exchange_payload(response_data),
        "error": error,
    }

    log_path = None
    try:
        log_path = get_log_path(label)
        json_line = json.dumps(entry, ensure_ascii=False, default=str) + "\n"
        with _log_lock:
            with open(log_path, "a", encoding="utf-8") as f:
                f.write(json_line)
    except (OSError, TypeError, ValueError) as log_error:
        logger.warning("Failed to write exchange log (%s): %s", log_path, log_error)


async def log_exchange(
    label: str,
    request_id: str,
    method: str,
    path: str,
    request_data: Any,
    response_data: Any,
    status_code: Optional[int],
    latency_ms: float,
    error: Optional[Dict[str, Any]] = None,
    request_headers: Optional[Dict[str, str]] = None,
) -> None:
    """Append one exchange to ``<label>_<date>.jsonl``; no-op when disabled.

    File I/O runs in a worker thread so the event loop is never blocked.
    """
    if not is_enabled():
        return
    await asyncio.to_thread(
        _log_exchange_sync,
        label,
        request_id,
        method,
        path,
        request_data,
        response_data,
        status_code,
        latency_ms,
        error,
        request_headers,
    )
