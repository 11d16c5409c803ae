"""xAI (Grok) adapter; the API mirrors OpenAI chat-completions."""

from __future__ import annotations

from .openai import OpenAIProvider


class XAIProvider(OpenAIProvider):
    provider_id = "xai"
    vendor_name = "xAI"
    key_prefix = "xai-"
