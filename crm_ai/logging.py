"""Logging setup: request correlation, JSON lines output and key redaction.

Every handler installed by ``configure_logging`` carries two filters. One
stamps the current request id on the record; the other masks anything shaped
like a vendor API key, so a provider error body echoing a key cannot leak it
into a log sink.
"""

from __future__ import annotations

import contextvars
import json
import logging
import os
import pathlib
import re
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any

BASE_DIR = pathlib.Path(__file__).resolve().parent.parent

DEFAULT_LOG_FILE = "logs/crm_ai.jsonl"
LOG_FILE_MAX_BYTES = 10_000_000
LOG_FILE_BACKUPS = 5

_configured = False
_request_id: contextvars.ContextVar[str | None] = contextvars.ContextVar("request_id", default=None)

_SECRET_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"sk-ant-[A-Za-z0-9_\-]+"), "sk-ant-***"),
    (re.compile(r"sk-[A-Za-z0-9_\-]{8,}"), "sk-***"),
    (re.compile(r"xai-[A-Za-z0-9_\-]{8,}"), "xai-***"),
    (re.compile(r"AIza[A-Za-z0-9_\-]{20,}"), "AIza***"),
    (re.compile(r"(?i)bearer\s+[A-Za-z0-9._\-]+"), "Bearer ***"),
    (re.compile(r"(?i)(x-goog-api-key|x-api-key)([\"']?\s*[:=]\s*[\"']?)[^\s\"',}]+"), r"\1\2***"),
    (re.compile(r"(?i)([?&]key=)[^&\s]+"), r"\1***"),
)

# Attributes every LogRecord has; anything else arrived through ``extra=``.
_STANDARD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {
    "message",
    "asctime",
    "request_id",
}


def redact_secrets(text: str) -> str:
    """Mask anything that looks like a vendor API key or bearer token."""
    for pattern, replacement in _SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def set_request_id(request_id: str | None) -> contextvars.Token[str | None]:
    return _request_id.set(request_id)


def reset_request_id(token: contextvars.Token[str | None]) -> None:
    _request_id.reset(token)


def get_request_id() -> str | None:
    return _request_id.get()


class RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id.get()
        return True


class SecretRedactionFilter(logging.Filter):
    """Scrub key material from the rendered message and string extras."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact_secrets(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        for key, value in list(record.__dict__.items()):
            if key not in _STANDARD_ATTRS and isinstance(value, str):
                record.__dict__[key] = redact_secrets(value)
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line: fixed fields first, then ``extra`` fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if getattr(record, "request_id", None):
            payload["request_id"] = record.request_id
        payload.update(
            (key, value)
            for key, value in record.__dict__.items()
            if key not in _STANDARD_ATTRS and not key.startswith("_")
        )
        if record.exc_info:
            payload["exc_info"] = redact_secrets(self.formatException(record.exc_info))
        return json.dumps(payload, ensure_ascii=True, default=str)


def _log_file_path() -> pathlib.Path:
    path = pathlib.Path(os.getenv("LOG_FILE", DEFAULT_LOG_FILE))
    if not path.is_absolute():
        path = BASE_DIR / path
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def _with_filters(handler: logging.Handler) -> logging.Handler:
    handler.addFilter(RequestContextFilter())
    handler.addFilter(SecretRedactionFilter())
    return handler


def configure_logging() -> None:
    """Install console and rotating JSON file handlers on the root logger (once)."""
    global _configured
    if _configured:
        return

    console_level = logging.getLevelName(os.getenv("LOG_LEVEL", "WARNING").upper())
    if not isinstance(console_level, int):
        console_level = logging.WARNING

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    console = _with_filters(logging.StreamHandler())
    console.setLevel(console_level)
    console.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s (request_id=%(request_id)s)")
    )
    root_logger.addHandler(console)

    json_file = _with_filters(
        RotatingFileHandler(_log_file_path(), maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUPS)
    )
    json_file.setLevel(logging.INFO)
    json_file.setFormatter(JsonFormatter())
    root_logger.addHandler(json_file)

    # Request URLs and SQL parameters stay out of the logs.
    for noisy in ("uvicorn", "httpx", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    _configured = True


__all__ = [
    "configure_logging",
    "get_request_id",
    "redact_secrets",
    "reset_request_id",
    "set_request_id",
]
