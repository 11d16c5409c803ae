"""Custom exception types."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from crm_ai.core.schemas import FallbackAttempt
    from crm_ai.quota.buckets import ExceededBucket


class VaultConfigurationError(Exception):
    """Raised when the master encryption key is missing or malformed."""


class DecryptionError(Exception):
    """Raised when a stored credential cannot be decrypted."""


class AdapterError(Exception):
    """Raised when a vendor call does not produce a usable answer."""

    kind = "http_error"

    def __init__(
        self,
        provider_id: str,
        message: str = "Provider error",
        *,
        status_code: int | None = None,
        body: Any | None = None,
    ) -> None:
        super().__init__(message)
        self.provider_id = provider_id
        self.message = message
        self.status_code = status_code
        self.body = body


class ProviderAuthError(AdapterError):
    """Raised when the vendor rejects the API key (401/403)."""

    kind = "auth"


class InvalidResponseError(AdapterError):
    """Raised when a vendor response lacks the expected text."""

    kind = "invalid_response"

    def __init__(self, provider_id: str, message: str = "Invalid response structure", **kwargs: Any) -> None:
        super().__init__(provider_id, message, **kwargs)


class SoftFailureError(AdapterError):
    """Raised when a 2xx answer is itself an error message from the vendor."""

    kind = "soft_failure"


class ProviderTimeoutError(AdapterError):
    """Raised when the per-call timeout fires."""

    kind = "timeout"


class ProviderNetworkError(AdapterError):
    """Raised when the vendor cannot be reached."""

    kind = "network"


class UnsupportedProviderError(Exception):
    """Raised when no adapter is registered for a provider type."""

    def __init__(self, provider_type: str) -> None:
        super().__init__(f"No adapter configured for provider '{provider_type}'")
        self.provider_type = provider_type


class ProviderFetchError(Exception):
    """Raised when an organization's provider list cannot be loaded."""

    def __init__(self, message: str, code: str = "PROVIDER_FETCH_FAILED") -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class NoProvidersConnectedError(Exception):
    """Raised when an organization has no active AI provider."""

    default_message = (
        "No AI provider is connected yet. Connect ChatGPT, Claude, Gemini or Grok "
        "in Settings -> AI Providers to use this feature."
    )

    def __init__(self, organization_id: str | None = None, message: str | None = None) -> None:
        self.organization_id = organization_id
        self.user_message = message or self.default_message
        super().__init__(self.user_message)


class AllProvidersFailedError(Exception):
    """Raised when every connected provider was attempted and failed."""

    def __init__(self, errors: list[FallbackAttempt], user_message: str) -> None:
        super().__init__(user_message)
        self.errors = list(errors)
        self.providers_attempted = [attempt.provider_type for attempt in self.errors]
        self.user_message = user_message


class RateLimitExceeded(Exception):
    """Raised by callers when a rate limit bucket is exhausted."""

    def __init__(self, exceeded: ExceededBucket) -> None:
        super().__init__(exceeded.message)
        self.exceeded = exceeded
        self.retry_after_seconds = exceeded.retry_after_seconds
