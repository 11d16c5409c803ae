"""Provider adapter interface and the shared HTTP call path."""

from __future__ import annotations

import asyncio
from http import HTTPStatus
from typing import Any, ClassVar

import httpx

from crm_ai.core.config import ProviderModel
from crm_ai.core.exceptions import (
    AdapterError,
    InvalidResponseError,
    ProviderAuthError,
    ProviderNetworkError,
    ProviderTimeoutError,
)

from .utils import extract_error_detail

HEALTHCHECK_PROMPT = "test"
HEALTHCHECK_MAX_TOKENS = 16


class ProviderAdapter:
    """Translates a plain prompt into one vendor call and back into plain text."""

    provider_id: ClassVar[str]
    vendor_name: ClassVar[str]
    key_prefix: ClassVar[str] = ""
    key_min_length: ClassVar[int] = 20

    def __init__(self, config: ProviderModel, *, timeout: float) -> None:
        self._config = config
        self._timeout = timeout
        self._base_url = config.base_url.rstrip("/")
        self._path = config.path

    @property
    def timeout(self) -> float:
        return self._timeout

    async def call(
        self,
        api_key: str,
        prompt: str,
        model: str | None = None,
        *,
        system_prompt: str | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Send ``prompt`` and return the vendor's answer text.

        Raises an ``AdapterError`` subclass for non-2xx responses, timeouts,
        network failures and responses without answer text.
        """
        resolved_model = self._resolve_model(model)
        payload = self._build_payload(
            prompt,
            resolved_model,
            system_prompt=system_prompt,
            max_tokens=max_tokens or self._config.max_tokens,
        )
        data = await self._post(self._url(resolved_model), payload, self._headers(api_key.strip()))
        text = self._parse_response(data)
        if not text.strip():
            raise InvalidResponseError(self.provider_id, "Invalid response structure: empty text")
        return text

    async def validate_api_key(self, api_key: str) -> None:
        """Issue a minimal request to confirm the vendor accepts ``api_key``."""
        api_key = api_key.strip()
        if not self.check_key_format(api_key):
            raise ProviderAuthError(self.provider_id, f"Invalid {self.vendor_name} API key format")
        model = self._resolve_model(None)
        payload = self._build_payload(
            HEALTHCHECK_PROMPT, model, system_prompt=None, max_tokens=HEALTHCHECK_MAX_TOKENS
        )
        await self._post(self._url(model), payload, self._headers(api_key))

    def check_key_format(self, api_key: str) -> bool:
        trimmed = api_key.strip()
        return trimmed.startswith(self.key_prefix) and len(trimmed) >= self.key_min_length

    def _resolve_model(self, model: str | None) -> str:
        if model:
            return model
        default_model = self._config.default_model
        if not default_model:
            raise AdapterError(self.provider_id, "No default model configured")
        return default_model

    def _url(self, model: str) -> str:
        return f"{self._base_url}{self._path}"

    def _headers(self, api_key: str) -> dict[str, str]:
        raise NotImplementedError

    def _build_payload(
        self,
        prompt: str,
        model: str,
        *,
        system_prompt: str | None,
        max_tokens: int,
    ) -> dict[str, Any]:
        raise NotImplementedError

    def _parse_response(self, data: dict[str, Any]) -> str:
        raise NotImplementedError

    def _invalid(self, missing: str) -> InvalidResponseError:
        return InvalidResponseError(
            self.provider_id, f"Invalid response structure: missing {missing}"
        )

    async def _send(
        self, url: str, payload: dict[str, Any], headers: dict[str, str]
    ) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.post(url, json=payload, headers=headers)

    async def _post(
        self, url: str, payload: dict[str, Any], headers: dict[str, str]
    ) -> dict[str, Any]:
        try:
            # httpx limits each connect/read/write separately; wait_for caps the whole call.
            response = await asyncio.wait_for(self._send(url, payload, headers), self._timeout)
        except (httpx.TimeoutException, asyncio.TimeoutError) as exc:
            raise ProviderTimeoutError(
                self.provider_id,
                f"{self.vendor_name} request timed out after {self._timeout:g}s",
            ) from exc
        except httpx.RequestError as exc:
            raise ProviderNetworkError(
                self.provider_id, f"{self.vendor_name} network error: {type(exc).__name__}"
            ) from exc

        if response.status_code in {HTTPStatus.UNAUTHORIZED, HTTPStatus.FORBIDDEN}:
            detail = extract_error_detail(response)
            message = f"{self.vendor_name} API error: {response.status_code}"
            if detail:
                message = f"{message} - {detail}"
            raise ProviderAuthError(
                self.provider_id, message, status_code=response.status_code, body=detail
            )
        if response.is_error:
            detail = extract_error_detail(response)
            message = f"{self.vendor_name} API error: {response.status_code}"
            if detail:
                message = f"{message} - {detail}"
            raise AdapterError(
                self.provider_id, message, status_code=response.status_code, body=detail
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise InvalidResponseError(
                self.provider_id, "Invalid response structure: body is not JSON"
            ) from exc
        if not isinstance(data, dict):
            raise InvalidResponseError(
                self.provider_id, "Invalid response structure: body is not an object"
            )
        return data
