"""Admin endpoints for organization provider management."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from crm_ai.core.container import ServiceContainer, get_container
from crm_ai.core.exceptions import AdapterError, ProviderAuthError
from crm_ai.core.schemas import is_allowed_provider

router = APIRouter(prefix="/admin")


class CredentialsPayload(BaseModel):
    api_key: str = Field(min_length=1)
    model: Optional[str] = None
    display_name: Optional[str] = None


@router.get("/organizations/{organization_id}/providers")
def list_providers(
    organization_id: str,
    container: ServiceContainer = Depends(get_container),
) -> dict:
    providers = container.store.list_all(organization_id)
    return {"providers": [provider.public_view() for provider in providers]}


@router.get("/events")
def list_events(
    limit: int = 25,
    container: ServiceContainer = Depends(get_container),
) -> dict:
    """Return recent orchestrator events."""
    limit_value = max(1, min(limit, 100))
    return {"events": container.events.list_recent(limit=limit_value)}


@router.post("/organizations/{organization_id}/providers/{provider_type}/credentials")
async def set_provider_credentials(
    organization_id: str,
    provider_type: str,
    payload: CredentialsPayload,
    validate: bool = True,
    container: ServiceContainer = Depends(get_container),
) -> dict:
    if not is_allowed_provider(provider_type) or not container.adapters.supports(provider_type):
        raise HTTPException(status_code=404, detail="Provider not supported")

    api_key = payload.api_key.strip()
    adapter = container.adapters.get_adapter(provider_type)
    if not adapter.check_key_format(api_key):
        raise HTTPException(
            status_code=400, detail=f"Invalid {adapter.vendor_name} API key format"
        )

    if validate:
        try:
            await adapter.validate_api_key(api_key)
        except ProviderAuthError as exc:
            container.events.record(
                "provider_credentials_invalid",
                "WARNING",
                organization_id=organization_id,
                provider_from=provider_type,
                message="Credential validation failed: invalid API key",
                meta={"source": "admin_credentials", "status_code": exc.status_code},
            )
            raise HTTPException(status_code=400, detail="Invalid API key") from exc
        except AdapterError as exc:
            container.events.record(
                "provider_health_fail",
                "WARNING",
                organization_id=organization_id,
                provider_from=provider_type,
                message=exc.message,
                meta={"source": "admin_credentials"},
            )
            raise HTTPException(
                status_code=503, detail=f"Provider health check failed: {exc.message}"
            ) from exc

    provider = container.store.upsert_provider(
        organization_id,
        provider_type,
        api_key,
        model=payload.model,
        display_name=payload.display_name,
    )
    container.registry.invalidate(organization_id)
    container.events.record(
        "provider_credentials_updated",
        "INFO",
        organization_id=organization_id,
        provider_from=provider_type,
        message="API key saved via admin",
        meta={"source": "admin_credentials", "validated": validate},
    )
    return {"status": "ok", "provider": provider.public_view()}


@router.delete("/organizations/{organization_id}/providers/{provider_type}")
def delete_provider(
    organization_id: str,
    provider_type: str,
    container: ServiceContainer = Depends(get_container),
) -> dict:
    removed = container.store.deactivate_provider(organization_id, provider_type)
    if not removed:
        raise HTTPException(status_code=404, detail="Provider connection not found")
    container.registry.invalidate(organization_id)
    container.events.record(
        "provider_credentials_removed",
        "INFO",
        organization_id=organization_id,
        provider_from=provider_type,
        message="Provider disconnected via admin",
        meta={"source": "admin_credentials"},
    )
    return {"status": "ok"}
