"""AI completion route for CRM features."""

from __future__ import annotations

import asyncio
import logging
from typing import Annotated, Any, Optional

from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from crm_ai.core.container import ServiceContainer, get_container
from crm_ai.core.exceptions import (
    AllProvidersFailedError,
    NoProvidersConnectedError,
    ProviderFetchError,
    RateLimitExceeded,
)
from crm_ai.core.schemas import ProviderType, get_provider_display_name
from crm_ai.quota.plans import buckets_for_plan, get_org_plan, group_for_feature

logger = logging.getLogger("crm_ai.api")

router = APIRouter(prefix="/v1")

ANONYMOUS_USER = "anonymous"


class CompletionRequest(BaseModel):
    prompt: str = Field(min_length=1)
    feature: str = Field(default="ai_generic", min_length=1, max_length=64)
    system_prompt: Optional[str] = None
    max_tokens: Optional[int] = Field(default=None, gt=0, le=8192)
    preferred_provider: Optional[ProviderType] = None


class CompletionResponse(BaseModel):
    success: bool = True
    content: str
    provider: str
    provider_name: str
    attempts: list[dict[str, Any]]


def _error_response(
    status_code: int,
    message: str,
    code: str,
    error_type: str,
    *,
    headers: dict[str, str] | None = None,
    **extra: Any,
) -> JSONResponse:
    error: dict[str, Any] = {"message": message, "type": error_type, "code": code}
    error.update(extra)
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error},
        headers=headers,
    )


@router.post("/organizations/{organization_id}/ai/completions", response_model=CompletionResponse)
async def create_completion(
    organization_id: str,
    payload: CompletionRequest,
    user_id: Annotated[Optional[str], Header(alias="x-user-id")] = None,
    container: ServiceContainer = Depends(get_container),
) -> CompletionResponse | JSONResponse:
    subject = user_id or ANONYMOUS_USER
    plan = await asyncio.to_thread(get_org_plan, container.database, organization_id)
    buckets = buckets_for_plan(plan, group_for_feature(payload.feature))

    try:
        await asyncio.to_thread(container.guard.enforce, subject, organization_id, buckets)
        result = await container.orchestrator.complete(
            payload.feature,
            organization_id,
            payload.prompt,
            system_prompt=payload.system_prompt,
            max_tokens=payload.max_tokens,
            preferred_provider=payload.preferred_provider.value if payload.preferred_provider else None,
            user_id=user_id,
        )
    except RateLimitExceeded as exc:
        return _error_response(
            429,
            exc.exceeded.message,
            "RATE_LIMITED",
            "rate_limit_exceeded",
            headers={"Retry-After": str(exc.retry_after_seconds)},
            retry_after_seconds=exc.retry_after_seconds,
            bucket=exc.exceeded.bucket,
        )
    except NoProvidersConnectedError as exc:
        # Not an outage: the organization still has to connect a provider.
        return _error_response(200, exc.user_message, "NO_PROVIDERS", "no_providers")
    except ProviderFetchError as exc:
        return _error_response(503, exc.message, "PROVIDER_FETCH_ERROR", "provider_fetch_error")
    except AllProvidersFailedError as exc:
        return _error_response(
            503,
            exc.user_message,
            "ALL_PROVIDERS_FAILED",
            "providers_unavailable",
            providers_attempted=exc.providers_attempted,
            details=[attempt.to_dict() for attempt in exc.errors],
        )

    provider = result.provider_used or ""
    return CompletionResponse(
        content=result.result or "",
        provider=provider,
        provider_name=get_provider_display_name(provider),
        attempts=[attempt.to_dict() for attempt in result.attempts],
    )
