"""Domain types shared by the registry, adapters and the fallback orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict

R = TypeVar("R")


class ProviderType(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    XAI = "xai"


ALLOWED_PROVIDERS: tuple[str, ...] = tuple(item.value for item in ProviderType)

PROVIDER_DISPLAY_NAMES: dict[str, str] = {
    ProviderType.OPENAI.value: "ChatGPT",
    ProviderType.ANTHROPIC.value: "Claude",
    ProviderType.GOOGLE.value: "Gemini",
    ProviderType.XAI.value: "Grok",
}


def is_allowed_provider(provider_type: str) -> bool:
    return provider_type in ALLOWED_PROVIDERS


def get_provider_display_name(provider_type: str) -> str:
    return PROVIDER_DISPLAY_NAMES.get(provider_type, provider_type)


class ProviderConfig(BaseModel):
    """One organization's connection to one AI vendor."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str
    organization_id: str
    provider_type: str
    display_name: str | None = None
    model: str | None = None
    api_key_encrypted: str
    active: bool = True
    created_at: datetime | None = None

    @property
    def label(self) -> str:
        return self.display_name or get_provider_display_name(self.provider_type)

    def public_view(self) -> dict[str, Any]:
        """Serializable view without credential material."""
        return {
            "id": self.id,
            "provider_type": self.provider_type,
            "display_name": self.label,
            "model": self.model,
            "active": self.active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class FallbackAttempt:
    """Outcome of one provider invocation during an orchestration run."""

    provider_type: str
    outcome: Literal["success", "error"]
    error_kind: str | None = None
    message: str | None = None
    status_code: int | None = None
    latency_ms: float = 0.0
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider_type,
            "outcome": self.outcome,
            "error_kind": self.error_kind,
            "message": self.message,
            "status_code": self.status_code,
            "latency_ms": round(self.latency_ms, 1),
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class OrchestrationResult(Generic[R]):
    success: bool
    result: R | None = None
    provider_used: str | None = None
    errors: list[FallbackAttempt] = field(default_factory=list)
    attempts: list[FallbackAttempt] = field(default_factory=list)

    @property
    def providers_attempted(self) -> list[str]:
        return [attempt.provider_type for attempt in self.attempts]

    def raise_for_failure(self) -> OrchestrationResult[R]:
        """Return self on success, otherwise raise ``AllProvidersFailedError``."""
        if self.success:
            return self

        from crm_ai.core.exceptions import AllProvidersFailedError
        from crm_ai.router.classifier import summarize_provider_errors

        raise AllProvidersFailedError(self.errors, summarize_provider_errors(self.errors))
