"""Anthropic messages adapter."""

from __future__ import annotations

from typing import Any

from .base import ProviderAdapter
from .utils import join_text_parts

DEFAULT_API_VERSION = "2023-06-01"


class AnthropicProvider(ProviderAdapter):
    provider_id = "anthropic"
    vendor_name = "Anthropic"
    key_prefix = "sk-ant-"

    def _headers(self, api_key: str) -> dict[str, str]:
        return {
            "x-api-key": api_key,
            "anthropic-version": self._config.api_version or DEFAULT_API_VERSION,
            "Content-Type": "application/json",
        }

    def _build_payload(
        self,
        prompt: str,
        model: str,
        *,
        system_prompt: str | None,
        max_tokens: int,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system_prompt:
            payload["system"] = system_prompt
        return payload

    def _parse_response(self, data: dict[str, Any]) -> str:
        content = data.get("content")
        if not isinstance(content, list) or not content:
            raise self._invalid("content")
        text = join_text_parts(content, type_field="type")
        if not text:
            raise self._invalid("content[].text")
        return text
