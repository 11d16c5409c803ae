"""Sequential first-success fallback across an organization's AI providers."""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

from crm_ai.core.config import AppConfig, load_config
from crm_ai.core.exceptions import (
    NoProvidersConnectedError,
    ProviderFetchError,
    SoftFailureError,
    UnsupportedProviderError,
)
from crm_ai.core.schemas import FallbackAttempt, OrchestrationResult, ProviderConfig
from crm_ai.logging import redact_secrets
from crm_ai.providers.dispatch import AdapterSet
from crm_ai.router.classifier import classify_error, detect_soft_failure
from crm_ai.router.registry import ProviderRegistry
from crm_ai.security.vault import CredentialVault
from crm_ai.telemetry.events import EventLog
from crm_ai.telemetry.usage import UsageRecord, UsageTracker

logger = logging.getLogger("crm_ai.fallback")

R = TypeVar("R")

MAX_ATTEMPT_MESSAGE_LENGTH = 300


def order_providers(
    providers: Sequence[ProviderConfig], preferred_provider: str | None = None
) -> list[ProviderConfig]:
    """Connection order, with an explicitly preferred provider moved to the front."""
    ordered = list(providers)
    if not preferred_provider:
        return ordered
    for index, provider in enumerate(ordered):
        if provider.provider_type == preferred_provider:
            if index:
                ordered.insert(0, ordered.pop(index))
            break
    return ordered


class FallbackOrchestrator:
    """Tries providers one at a time, in order, until one returns an answer.

    Individual failures (decryption, vendor errors, timeouts) are recorded as
    attempts and never abort the sweep. Providers are never raced in parallel
    and never retried within one run.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        vault: CredentialVault,
        adapters: AdapterSet,
        *,
        config: AppConfig | None = None,
        events: EventLog | None = None,
        usage: UsageTracker | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._registry = registry
        self._vault = vault
        self._adapters = adapters
        self._config = config or load_config()
        self._events = events
        self._usage = usage
        self._clock = clock

    async def run_with_fallback(
        self,
        feature: str,
        providers: Sequence[ProviderConfig],
        invoke: Callable[[ProviderConfig], Awaitable[R]],
        *,
        preferred_provider: str | None = None,
        organization_id: str | None = None,
    ) -> OrchestrationResult[R]:
        """Run ``invoke`` against each provider until one succeeds.

        Raises ``NoProvidersConnectedError`` when there is nothing to try. When
        every provider fails, returns a result with ``success=False`` and the
        failures in invocation order.
        """
        ordered = order_providers(providers, preferred_provider)
        if not ordered:
            logger.info(
                "No providers connected",
                extra={"event": "no_providers", "feature": feature, "organization_id": organization_id},
            )
            raise NoProvidersConnectedError(organization_id)

        errors: list[FallbackAttempt] = []
        attempts: list[FallbackAttempt] = []
        last_failure: FallbackAttempt | None = None

        for attempt_index, provider in enumerate(ordered, start=1):
            provider_type = provider.provider_type
            if last_failure is not None:
                self._log_switch(feature, organization_id, last_failure, provider_type, attempt_index)
                last_failure = None

            started = self._clock()
            try:
                result = await invoke(provider)
            except UnsupportedProviderError as exc:
                logger.warning(
                    "Provider skipped",
                    extra={
                        "event": "provider_skipped",
                        "feature": feature,
                        "provider_from": provider_type,
                        "error_message": str(exc),
                    },
                )
                self._record_event(
                    "provider_skipped",
                    "WARNING",
                    organization_id=organization_id,
                    provider_from=provider_type,
                    message=str(exc),
                    meta={"feature": feature},
                )
                continue
            except Exception as exc:
                attempt = self._failed_attempt(provider_type, exc, started)
                errors.append(attempt)
                attempts.append(attempt)
                self._log_failure(feature, organization_id, provider, attempt, attempt_index)
                last_failure = attempt
                continue

            attempts.append(
                FallbackAttempt(
                    provider_type=provider_type,
                    outcome="success",
                    latency_ms=(self._clock() - started) * 1000,
                )
            )
            logger.info(
                "Provider succeeded",
                extra={
                    "event": "provider_success",
                    "feature": feature,
                    "provider_to": provider_type,
                    "attempt": attempt_index,
                },
            )
            return OrchestrationResult(
                success=True,
                result=result,
                provider_used=provider_type,
                errors=errors,
                attempts=attempts,
            )

        if not attempts:
            raise NoProvidersConnectedError(
                organization_id,
                message="None of the connected AI providers are currently supported.",
            )

        self._log_exhausted(feature, organization_id, errors)
        return OrchestrationResult(success=False, errors=errors, attempts=attempts)

    async def run_with_connected_providers(
        self,
        feature: str,
        organization_id: str,
        invoke: Callable[[ProviderConfig, str], Awaitable[R]],
        *,
        use_cache: bool = True,
        preferred_provider: str | None = None,
        user_id: str | None = None,
    ) -> OrchestrationResult[R]:
        """Look up the organization's providers, decrypt each key, and fall back.

        Raises ``ProviderFetchError`` if the lookup fails,
        ``NoProvidersConnectedError`` if nothing is connected, and
        ``AllProvidersFailedError`` if every provider fails.
        """
        started = self._clock()
        lookup = await self._registry.get_connected_providers(organization_id, use_cache=use_cache)
        if lookup.fetch_error:
            raise ProviderFetchError(lookup.error_message or "Provider lookup failed")

        async def with_credential(provider: ProviderConfig) -> R:
            api_key = self._vault.decrypt(provider.api_key_encrypted)
            return await invoke(provider, api_key)

        result = await self.run_with_fallback(
            feature,
            lookup.providers,
            with_credential,
            preferred_provider=preferred_provider,
            organization_id=organization_id,
        )
        self._track_usage(feature, organization_id, user_id, lookup.providers, result, started)
        return result.raise_for_failure()

    async def complete(
        self,
        feature: str,
        organization_id: str,
        prompt: str,
        *,
        system_prompt: str | None = None,
        max_tokens: int | None = None,
        use_cache: bool = True,
        preferred_provider: str | None = None,
        user_id: str | None = None,
    ) -> OrchestrationResult[str]:
        """Answer ``prompt`` with the first connected provider that responds."""

        async def call_adapter(provider: ProviderConfig, api_key: str) -> str:
            adapter = self._adapters.get_adapter(provider.provider_type)
            text = await adapter.call(
                api_key,
                prompt,
                provider.model,
                system_prompt=system_prompt,
                max_tokens=max_tokens,
            )
            if self._config.soft_failure_detection:
                pattern = detect_soft_failure(text)
                if pattern:
                    raise SoftFailureError(
                        provider.provider_type,
                        f"Response looks like a provider error message ('{pattern}')",
                    )
            return text

        return await self.run_with_connected_providers(
            feature,
            organization_id,
            call_adapter,
            use_cache=use_cache,
            preferred_provider=preferred_provider,
            user_id=user_id,
        )

    def _failed_attempt(
        self, provider_type: str, exc: Exception, started: float
    ) -> FallbackAttempt:
        classification = classify_error(exc)
        message = redact_secrets(str(exc) or type(exc).__name__)[:MAX_ATTEMPT_MESSAGE_LENGTH]
        return FallbackAttempt(
            provider_type=provider_type,
            outcome="error",
            error_kind=classification.error_kind,
            message=message,
            status_code=classification.status_code,
            latency_ms=(self._clock() - started) * 1000,
        )

    def _track_usage(
        self,
        feature: str,
        organization_id: str,
        user_id: str | None,
        providers: Sequence[ProviderConfig],
        result: OrchestrationResult,
        started: float,
    ) -> None:
        if self._usage is None:
            return
        winner = next((p for p in providers if p.provider_type == result.provider_used), None)
        self._usage.track(
            UsageRecord(
                organization_id=organization_id,
                user_id=user_id,
                feature=feature,
                success=result.success,
                attempts=len(result.attempts),
                latency_ms=(self._clock() - started) * 1000,
                provider=result.provider_used,
                model=winner.model if winner else None,
                error_code=None if result.success else "ALL_PROVIDERS_FAILED",
            )
        )

    def _record_event(self, kind: str, level: str, **fields) -> None:
        if self._events is not None:
            self._events.record(kind, level, **fields)

    def _log_failure(
        self,
        feature: str,
        organization_id: str | None,
        provider: ProviderConfig,
        attempt: FallbackAttempt,
        attempt_index: int,
    ) -> None:
        logger.warning(
            "Provider failed",
            extra={
                "event": "provider_fail",
                "feature": feature,
                "provider_from": provider.provider_type,
                "model": provider.model,
                "error_kind": attempt.error_kind,
                "status_code": attempt.status_code,
                "error_message": attempt.message,
                "attempt": attempt_index,
            },
        )
        self._record_event(
            "provider_fail",
            "WARNING",
            organization_id=organization_id,
            provider_from=provider.provider_type,
            model=provider.model,
            error_code=attempt.error_kind,
            message=attempt.message,
            meta={"feature": feature, "attempt": attempt_index, "status_code": attempt.status_code},
        )

    def _log_switch(
        self,
        feature: str,
        organization_id: str | None,
        failure: FallbackAttempt,
        provider_to: str,
        attempt_index: int,
    ) -> None:
        logger.info(
            "Provider switched",
            extra={
                "event": "provider_switched",
                "feature": feature,
                "provider_from": failure.provider_type,
                "provider_to": provider_to,
                "reason": failure.error_kind,
                "attempt": attempt_index,
            },
        )
        self._record_event(
            "provider_switched",
            "INFO",
            organization_id=organization_id,
            provider_from=failure.provider_type,
            provider_to=provider_to,
            error_code=failure.error_kind,
            message=failure.message,
            meta={"feature": feature, "attempt": attempt_index},
        )

    def _log_exhausted(
        self, feature: str, organization_id: str | None, errors: list[FallbackAttempt]
    ) -> None:
        summary = ", ".join(f"{e.provider_type}: {e.error_kind}" for e in errors)
        logger.error(
            "All providers exhausted",
            extra={
                "event": "providers_exhausted",
                "feature": feature,
                "providers_tried": len(errors),
                "summary": summary,
            },
        )
        self._record_event(
            "providers_exhausted",
            "ERROR",
            organization_id=organization_id,
            message=summary,
            meta={
                "feature": feature,
                "tried": [
                    {"provider": e.provider_type, "error_kind": e.error_kind, "status_code": e.status_code}
                    for e in errors
                ],
            },
        )


__all__ = ["FallbackOrchestrator", "order_providers"]
