"""Storage helpers for organization AI provider connections."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import select, update

from crm_ai.core.schemas import ProviderConfig, get_provider_display_name
from crm_ai.security.vault import CredentialVault

from .database import Database
from .models import AIProvider


class ProviderStore:
    """Reads and writes rows of the ``ai_providers`` table.

    Plaintext keys only pass through ``upsert_provider`` on their way into the
    vault; everything returned from here carries ciphertext only.
    """

    def __init__(self, database: Database, vault: CredentialVault) -> None:
        self._database = database
        self._vault = vault

    def upsert_provider(
        self,
        organization_id: str,
        provider_type: str,
        api_key: str,
        *,
        model: str | None = None,
        display_name: str | None = None,
    ) -> ProviderConfig:
        """Insert or update the provider connection for ``(organization, type)``."""
        encrypted = self._vault.encrypt(api_key)
        now = datetime.now(timezone.utc)

        with self._database.session_scope() as session:
            existing = session.scalar(
                select(AIProvider)
                .where(AIProvider.organization_id == organization_id)
                .where(AIProvider.provider_type == provider_type)
            )
            if existing:
                values = {
                    "api_key_encrypted": encrypted,
                    "model": model,
                    "display_name": display_name or existing.display_name,
                    "active": True,
                }
                if not existing.active:
                    # Reconnecting moves the provider to the end of the connection order.
                    values["created_at"] = now
                session.execute(
                    update(AIProvider).where(AIProvider.id == existing.id).values(**values)
                )
                row_id = existing.id
            else:
                row = AIProvider(
                    organization_id=organization_id,
                    provider_type=provider_type,
                    display_name=display_name or get_provider_display_name(provider_type),
                    model=model,
                    api_key_encrypted=encrypted,
                    active=True,
                    created_at=now,
                )
                session.add(row)
                session.flush()
                row_id = row.id

        with self._database.session_scope() as session:
            stored = session.get(AIProvider, row_id)
            return ProviderConfig.model_validate(stored)

    def deactivate_provider(self, organization_id: str, provider_type: str) -> bool:
        """Soft-delete a provider connection. Returns False if none was active."""
        with self._database.session_scope() as session:
            result = session.execute(
                update(AIProvider)
                .where(AIProvider.organization_id == organization_id)
                .where(AIProvider.provider_type == provider_type)
                .where(AIProvider.active.is_(True))
                .values(active=False)
            )
            return bool(result.rowcount)

    def list_active(self, organization_id: str) -> list[ProviderConfig]:
        """Return active providers in connection order (oldest first)."""
        with self._database.session_scope() as session:
            rows = session.scalars(
                select(AIProvider)
                .where(AIProvider.organization_id == organization_id)
                .where(AIProvider.active.is_(True))
                .order_by(AIProvider.created_at.asc(), AIProvider.id.asc())
            ).all()
            return [ProviderConfig.model_validate(row) for row in rows]

    def list_all(self, organization_id: str) -> list[ProviderConfig]:
        with self._database.session_scope() as session:
            rows = session.scalars(
                select(AIProvider)
                .where(AIProvider.organization_id == organization_id)
                .order_by(AIProvider.created_at.asc(), AIProvider.id.asc())
            ).all()
            return [ProviderConfig.model_validate(row) for row in rows]
