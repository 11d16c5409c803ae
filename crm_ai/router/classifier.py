"""Failure classification and user-facing summaries for fallback runs."""

from __future__ import annotations

import re
from dataclasses import dataclass
from http import HTTPStatus

from crm_ai.core.exceptions import (
    DecryptionError,
    InvalidResponseError,
    ProviderNetworkError,
    ProviderTimeoutError,
    SoftFailureError,
    UnsupportedProviderError,
)
from crm_ai.core.schemas import FallbackAttempt, get_provider_display_name

NETWORK_ERROR = "NETWORK_ERROR"
TIMEOUT = "TIMEOUT"
PROVIDER_5XX = "PROVIDER_5XX"
MODEL_OVERLOADED = "MODEL_OVERLOADED"
RATE_LIMIT = "RATE_LIMIT"
INVALID_KEY = "INVALID_KEY"
PERMISSION_DENIED = "PERMISSION_DENIED"
MODEL_NOT_FOUND = "MODEL_NOT_FOUND"
INVALID_RESPONSE = "INVALID_RESPONSE"
PROMPT_TOO_LONG = "PROMPT_TOO_LONG"
CONTENT_POLICY = "CONTENT_POLICY"
PROVIDER_SOFT_FAILURE = "PROVIDER_SOFT_FAILURE"
UNSUPPORTED_PROVIDER = "UNSUPPORTED_PROVIDER"
INTERNAL_ERROR = "INTERNAL_ERROR"

KEY_ERROR_KINDS = frozenset({INVALID_KEY, PERMISSION_DENIED})

SITE_OVERLOADED = 529

SOFT_FAILURE_PATTERNS: tuple[str, ...] = (
    "i'm unable to connect",
    "unable to connect to",
    "api key needs credits",
    "api key needs permissions",
    "check your api key",
    "verify your api key",
    "no credits",
    "insufficient credits",
    "permission denied",
    "not authorized",
    "invalid api key",
    "authentication failed",
    "rate limit exceeded",
    "quota exceeded",
    "model is currently overloaded",
    "currently experiencing high demand",
    "please try again later",
    "service temporarily unavailable",
    "server is busy",
    "capacity limit",
)

_STATUS_PATTERNS = (
    re.compile(r"(?:api\s*)?error:\s*(\d{3})", re.IGNORECASE),
    re.compile(r"status[:\s]+(\d{3})", re.IGNORECASE),
    re.compile(r"\b([45]\d{2})\b"),
)


@dataclass(frozen=True)
class ErrorClassification:
    error_kind: str
    status_code: int | None = None


def extract_status_code(error: BaseException) -> int | None:
    """Return the HTTP status carried by ``error`` or mentioned in its message."""
    for attr in ("status_code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(error, "response", None)
    status = getattr(response, "status_code", None)
    if isinstance(status, int):
        return status

    message = str(error)
    for pattern in _STATUS_PATTERNS:
        match = pattern.search(message)
        if match:
            return int(match.group(1))
    return None


def _has(message: str, *needles: str) -> bool:
    return any(needle in message for needle in needles)


def classify_error(error: BaseException) -> ErrorClassification:
    """Map a provider failure onto an error kind for diagnostics."""
    if isinstance(error, DecryptionError):
        return ErrorClassification(INVALID_KEY)
    if isinstance(error, UnsupportedProviderError):
        return ErrorClassification(UNSUPPORTED_PROVIDER)
    if isinstance(error, (ProviderTimeoutError, TimeoutError)):
        return ErrorClassification(TIMEOUT)
    if isinstance(error, ProviderNetworkError):
        return ErrorClassification(NETWORK_ERROR)
    if isinstance(error, SoftFailureError):
        return ErrorClassification(PROVIDER_SOFT_FAILURE)
    if isinstance(error, InvalidResponseError):
        return ErrorClassification(INVALID_RESPONSE)

    message = str(error).lower()
    status = extract_status_code(error)

    if status is None:
        if _has(message, "network", "econnrefused", "enotfound", "connection refused"):
            return ErrorClassification(NETWORK_ERROR)
        if _has(message, "timeout", "timed out"):
            return ErrorClassification(TIMEOUT)

    if status is not None:
        if status == SITE_OVERLOADED:
            return ErrorClassification(MODEL_OVERLOADED, status)
        if status >= HTTPStatus.INTERNAL_SERVER_ERROR:
            if _has(message, "overloaded"):
                return ErrorClassification(MODEL_OVERLOADED, status)
            return ErrorClassification(PROVIDER_5XX, status)
        if status == HTTPStatus.TOO_MANY_REQUESTS:
            return ErrorClassification(RATE_LIMIT, status)
        if status == HTTPStatus.UNAUTHORIZED:
            return ErrorClassification(INVALID_KEY, status)
        if status == HTTPStatus.FORBIDDEN:
            return ErrorClassification(PERMISSION_DENIED, status)
        if status == HTTPStatus.NOT_FOUND:
            return ErrorClassification(MODEL_NOT_FOUND, status)
        if status == HTTPStatus.BAD_REQUEST:
            if _has(message, "too long", "context_length", "maximum context", "token"):
                return ErrorClassification(PROMPT_TOO_LONG, status)
            if "content" in message and "policy" in message:
                return ErrorClassification(CONTENT_POLICY, status)
            if _has(message, "api key not valid", "api_key_invalid"):
                return ErrorClassification(INVALID_KEY, status)
            return ErrorClassification(INTERNAL_ERROR, status)

    if _has(message, "rate limit", "quota", "too many requests"):
        return ErrorClassification(RATE_LIMIT, status)
    if _has(message, "overloaded", "capacity", "busy"):
        return ErrorClassification(MODEL_OVERLOADED, status)
    if _has(
        message,
        "invalid x-api-key",
        "invalid api key",
        "authentication",
        "api key not valid",
        "api_key_invalid",
        "decrypt",
    ) or ("invalid" in message and "key" in message):
        return ErrorClassification(INVALID_KEY, status)
    if _has(message, "permission denied", "forbidden", "not authorized", "billing", "payment", "insufficient"):
        return ErrorClassification(PERMISSION_DENIED, status)

    return ErrorClassification(INTERNAL_ERROR, status)


def detect_soft_failure(text: str | None) -> str | None:
    """Return the matched pattern when a 2xx answer reads like an error message."""
    if not text or not isinstance(text, str):
        return None
    lowered = text.lower()
    for pattern in SOFT_FAILURE_PATTERNS:
        if pattern in lowered:
            return pattern
    return None


def summarize_provider_errors(errors: list[FallbackAttempt]) -> str:
    """Turn per-provider failures into one actionable, non-technical message."""
    if not errors:
        return "AI service temporarily unavailable. Please try again."

    quota = billing = rate_limited = key_issue = model_issue = network = timeout = False

    for error in errors:
        message = (error.message or "").lower()
        kind = error.error_kind or ""

        if _has(message, "quota", "insufficient_quota", "rate_limit_exceeded"):
            quota = True
        if _has(message, "billing", "credit", "payment", "insufficient funds", "balance is too low"):
            billing = True
        if error.status_code == HTTPStatus.TOO_MANY_REQUESTS or kind == RATE_LIMIT or _has(
            message, "rate limit", "too many requests"
        ):
            rate_limited = True
        if (
            kind in KEY_ERROR_KINDS
            or error.status_code in (HTTPStatus.UNAUTHORIZED, HTTPStatus.FORBIDDEN)
            or _has(message, "invalid api key", "api key not valid", "unauthorized", "authentication")
        ):
            key_issue = True
        if (
            kind == MODEL_NOT_FOUND
            or error.status_code == HTTPStatus.NOT_FOUND
            or _has(message, "model not found", "model_not_found", "does not exist", "invalid model")
        ):
            model_issue = True
        if kind == NETWORK_ERROR or _has(message, "network", "econnrefused", "enotfound"):
            network = True
        if kind == TIMEOUT or _has(message, "timeout", "timed out"):
            timeout = True

    issues: list[str] = []
    if billing or quota:
        issues.append("API quota/billing issue detected")
    if key_issue:
        issues.append("API key issue detected")
    if model_issue:
        issues.append("model configuration issue")
    if rate_limited and not quota:
        issues.append("rate limited")
    if network:
        issues.append("network connectivity issue")
    if timeout:
        issues.append("request timed out")

    names = ", ".join(dict.fromkeys(get_provider_display_name(e.provider_type) for e in errors))

    if not issues:
        return (
            f"I tried all available AI providers ({names}) but none could respond. "
            "Please try again in a moment."
        )
    if billing or quota:
        return (
            f"AI request failed ({names}): {issues[0]}. "
            "Please check your API billing status in Settings -> AI Providers."
        )
    if key_issue:
        return (
            f"AI request failed ({names}): {issues[0]}. "
            "Please verify your API keys in Settings -> AI Providers."
        )
    if model_issue:
        return (
            f"AI request failed ({names}): {issues[0]}. "
            "The selected model may have been deprecated or renamed."
        )
    if rate_limited:
        return f"AI request failed ({names}): {issues[0]}. Please wait a moment and try again."
    return f"AI request failed ({names}): {', '.join(issues)}. Please try again."


__all__ = [
    "ErrorClassification",
    "classify_error",
    "detect_soft_failure",
    "extract_status_code",
    "summarize_provider_errors",
]
