"""OpenAI chat-completions adapter."""

from __future__ import annotations

from typing import Any

from .base import ProviderAdapter


class OpenAIProvider(ProviderAdapter):
    provider_id = "openai"
    vendor_name = "OpenAI"
    key_prefix = "sk-"

    def _headers(self, api_key: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
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
        messages: list[dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})
        return {
            "model": model,
            "messages": messages,
            "max_tokens": max_tokens,
        }

    def _parse_response(self, data: dict[str, Any]) -> str:
        choices = data.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            raise self._invalid("choices[0]")
        message = choices[0].get("message")
        if not isinstance(message, dict):
            raise self._invalid("choices[0].message")
        content = message.get("content")
        if not isinstance(content, str):
            raise self._invalid("choices[0].message.content")
        return content
