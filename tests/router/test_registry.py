from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

from crm_ai.core.schemas import ProviderConfig
from crm_ai.router.registry import ProviderCache, ProviderRegistry
from crm_ai.storage.models import AIProvider
from crm_ai.storage.providers import ProviderStore

ORG_ID = "org-registry"


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _insert_row(database, provider_type: str, *, active: bool = True, key: str = "cipher", minutes: int = 0):
    with database.session_scope() as session:
        session.add(
            AIProvider(
                organization_id=ORG_ID,
                provider_type=provider_type,
                api_key_encrypted=key,
                active=active,
                created_at=datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=minutes),
            )
        )


@pytest.mark.asyncio
async def test_providers_are_returned_in_connection_order(database, vault):
    store = ProviderStore(database, vault)
    store.upsert_provider(ORG_ID, "google", "AIzaSyTestKey0123456789abcdefghijklmn")
    store.upsert_provider(ORG_ID, "openai", "sk-openai-test-key-0123456789")
    store.upsert_provider(ORG_ID, "anthropic", "sk-ant-test-key-0123456789")
    registry = ProviderRegistry(store)

    lookup = await registry.get_connected_providers(ORG_ID)

    assert lookup.fetch_error is False
    assert [p.provider_type for p in lookup.providers] == ["google", "openai", "anthropic"]
    assert all(p.api_key_encrypted != "sk-openai-test-key-0123456789" for p in lookup.providers)


@pytest.mark.asyncio
async def test_inactive_unsupported_and_keyless_rows_are_filtered(database, vault):
    _insert_row(database, "openai", minutes=0)
    _insert_row(database, "anthropic", active=False, minutes=1)
    _insert_row(database, "mistral", minutes=2)
    _insert_row(database, "xai", key="", minutes=3)
    registry = ProviderRegistry(ProviderStore(database, vault))

    lookup = await registry.get_connected_providers(ORG_ID)

    assert [p.provider_type for p in lookup.providers] == ["openai"]


@pytest.mark.asyncio
async def test_no_providers_is_not_a_fetch_error(database, vault):
    registry = ProviderRegistry(ProviderStore(database, vault))

    lookup = await registry.get_connected_providers("org-empty")

    assert lookup.providers == []
    assert lookup.fetch_error is False
    assert lookup.error_message is None


@pytest.mark.asyncio
async def test_database_errors_are_reported_structurally(vault):
    class BrokenStore:
        def list_active(self, organization_id):
            raise OperationalError("SELECT", {}, Exception("database is locked"))

    registry = ProviderRegistry(BrokenStore())

    lookup = await registry.get_connected_providers(ORG_ID)

    assert lookup.fetch_error is True
    assert lookup.providers == []
    assert lookup.error_message


@pytest.mark.asyncio
async def test_duplicate_active_types_are_a_fetch_error(vault):
    class DuplicateStore:
        def list_active(self, organization_id):
            return [
                ProviderConfig(id="a", organization_id=ORG_ID, provider_type="openai", api_key_encrypted="x"),
                ProviderConfig(id="b", organization_id=ORG_ID, provider_type="openai", api_key_encrypted="y"),
            ]

    registry = ProviderRegistry(DuplicateStore())

    lookup = await registry.get_connected_providers(ORG_ID)

    assert lookup.fetch_error is True
    assert "openai" in lookup.error_message


@pytest.mark.asyncio
async def test_cache_serves_until_bypassed_or_invalidated(database, vault):
    store = ProviderStore(database, vault)
    store.upsert_provider(ORG_ID, "openai", "sk-openai-test-key-0123456789")
    registry = ProviderRegistry(store, ProviderCache(ttl_seconds=60))

    first = await registry.get_connected_providers(ORG_ID)
    store.upsert_provider(ORG_ID, "anthropic", "sk-ant-test-key-0123456789")
    cached = await registry.get_connected_providers(ORG_ID)
    fresh = await registry.get_connected_providers(ORG_ID, use_cache=False)

    assert [p.provider_type for p in first.providers] == ["openai"]
    assert [p.provider_type for p in cached.providers] == ["openai"]
    assert [p.provider_type for p in fresh.providers] == ["openai", "anthropic"]

    registry.invalidate(ORG_ID)
    refreshed = await registry.get_connected_providers(ORG_ID)
    assert [p.provider_type for p in refreshed.providers] == ["openai", "anthropic"]


def test_provider_cache_expires_entries():
    clock = FakeClock()
    cache = ProviderCache(ttl_seconds=60, clock=clock)
    cache.set(ORG_ID, [])

    clock.now += 59
    assert cache.get(ORG_ID) == []
    clock.now += 1
    assert cache.get(ORG_ID) is None


def test_provider_cache_evicts_oldest_when_full():
    cache = ProviderCache(ttl_seconds=60, max_size=2)
    cache.set("org-a", [])
    cache.set("org-b", [])
    cache.set("org-c", [])

    assert cache.get("org-a") is None
    assert cache.get("org-b") == []
    assert cache.get("org-c") == []
    assert cache.stats()["size"] == 2

    cache.clear()
    assert cache.stats()["size"] == 0


def test_provider_cache_is_keyed_per_organization():
    cache = ProviderCache()
    cache.set("org-a", [])

    assert cache.get("org-b") is None
