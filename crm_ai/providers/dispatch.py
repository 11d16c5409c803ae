"""Typed dispatch from provider type to adapter."""

from __future__ import annotations

from crm_ai.core.config import AppConfig, load_config
from crm_ai.core.exceptions import UnsupportedProviderError
from crm_ai.core.schemas import ProviderType

from .anthropic import AnthropicProvider
from .base import ProviderAdapter
from .google import GoogleProvider
from .openai import OpenAIProvider
from .xai import XAIProvider


class AdapterSet:
    """Builds and caches one adapter per configured vendor."""

    _adapter_map: dict[str, type[ProviderAdapter]] = {
        ProviderType.OPENAI.value: OpenAIProvider,
        ProviderType.ANTHROPIC.value: AnthropicProvider,
        ProviderType.GOOGLE.value: GoogleProvider,
        ProviderType.XAI.value: XAIProvider,
    }

    def __init__(self, config: AppConfig | None = None) -> None:
        self._config = config or load_config()
        self._instances: dict[str, ProviderAdapter] = {}

    def supports(self, provider_type: str) -> bool:
        return provider_type in self._adapter_map and self._config.provider(provider_type) is not None

    def get_adapter(self, provider_type: str) -> ProviderAdapter:
        if provider_type not in self._instances:
            adapter_cls = self._adapter_map.get(provider_type)
            provider_model = self._config.provider(provider_type)
            if adapter_cls is None or provider_model is None:
                raise UnsupportedProviderError(provider_type)
            self._instances[provider_type] = adapter_cls(
                provider_model, timeout=self._config.ai_timeout_seconds
            )
        return self._instances[provider_type]
