"""Google Gemini generateContent adapter."""

from __future__ import annotations

from typing import Any

from crm_ai.core.exceptions import InvalidResponseError

from .base import ProviderAdapter
from .utils import join_text_parts


class GoogleProvider(ProviderAdapter):
    provider_id = "google"
    vendor_name = "Gemini"
    key_prefix = "AIza"
    key_min_length = 35

    def _url(self, model: str) -> str:
        model_slug = model.removeprefix("models/")
        return f"{self._base_url}{self._path.format(model=model_slug)}"

    def _headers(self, api_key: str) -> dict[str, str]:
        # Header auth keeps the key out of request URLs and therefore out of logs.
        return {
            "x-goog-api-key": api_key,
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
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {"maxOutputTokens": max_tokens},
        }
        if system_prompt:
            payload["systemInstruction"] = {"parts": [{"text": system_prompt}]}
        return payload

    def _parse_response(self, data: dict[str, Any]) -> str:
        candidates = data.get("candidates")
        if not isinstance(candidates, list) or not candidates:
            feedback = data.get("promptFeedback")
            block_reason = feedback.get("blockReason") if isinstance(feedback, dict) else None
            if block_reason:
                raise InvalidResponseError(
                    self.provider_id, f"Invalid response structure: prompt blocked ({block_reason})"
                )
            raise self._invalid("candidates")

        candidate = candidates[0]
        if not isinstance(candidate, dict):
            raise self._invalid("candidates[0]")
        content = candidate.get("content")
        parts = content.get("parts") if isinstance(content, dict) else None
        text = join_text_parts(parts)
        if not text:
            finish_reason = candidate.get("finishReason")
            if finish_reason and finish_reason != "STOP":
                raise InvalidResponseError(
                    self.provider_id,
                    f"Invalid response structure: no text (finishReason={finish_reason})",
                )
            raise self._invalid("candidates[0].content.parts[].text")
        return text
