"""Helper utilities for provider adapters."""

from __future__ import annotations

from typing import Any

import httpx

MAX_ERROR_DETAIL_LENGTH = 300


def _compact(detail: str) -> str:
    compact = " ".join(detail.split())
    if len(compact) > MAX_ERROR_DETAIL_LENGTH:
        compact = f"{compact[: MAX_ERROR_DETAIL_LENGTH - 3]}..."
    return compact


def extract_error_detail(response: httpx.Response) -> str | None:
    """Return a trimmed vendor error detail, if available."""

    detail: str | None = None
    try:
        data = response.json()
    except ValueError:
        text_summary = (getattr(response, "text", None) or "").strip()
        if text_summary:
            detail = text_summary
    else:
        if isinstance(data, dict):
            error_obj = data.get("error")
            if isinstance(error_obj, dict):
                parts = [
                    part.strip()
                    for part in (
                        error_obj.get("status"),
                        error_obj.get("type"),
                        error_obj.get("code"),
                        error_obj.get("message"),
                    )
                    if isinstance(part, str) and part.strip()
                ]
                if parts:
                    detail = " - ".join(dict.fromkeys(parts))
                elif error_obj:
                    detail = str(error_obj)
            elif isinstance(error_obj, str) and error_obj.strip():
                detail = error_obj
            elif isinstance(data.get("message"), str):
                detail = data["message"]
            elif data:
                detail = str(data)
        elif data:
            detail = str(data)

    return _compact(detail) if detail else None


def join_text_parts(parts: Any, *, type_field: str | None = None) -> str:
    """Concatenate ``text`` fields from a list of content blocks."""
    if not isinstance(parts, list):
        return ""
    pieces: list[str] = []
    for part in parts:
        if not isinstance(part, dict):
            continue
        if type_field and part.get(type_field) not in (None, "text"):
            continue
        text = part.get("text")
        if isinstance(text, str):
            pieces.append(text)
    return "".join(pieces)


__all__ = ["extract_error_detail", "join_text_parts", "MAX_ERROR_DETAIL_LENGTH"]
