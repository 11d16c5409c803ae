"""Process-wide wiring of the stores, registry, adapters and orchestrator."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from crm_ai.core.config import AppConfig, database_url, load_config
from crm_ai.providers.dispatch import AdapterSet
from crm_ai.quota.guard import RateLimitGuard
from crm_ai.router.fallback import FallbackOrchestrator
from crm_ai.router.registry import ProviderCache, ProviderRegistry
from crm_ai.security.vault import CredentialVault
from crm_ai.storage.database import Database
from crm_ai.storage.providers import ProviderStore
from crm_ai.telemetry.events import EventLog
from crm_ai.telemetry.usage import UsageLogger, UsageTracker


@dataclass
class ServiceContainer:
    config: AppConfig
    database: Database
    vault: CredentialVault
    store: ProviderStore
    registry: ProviderRegistry
    adapters: AdapterSet
    events: EventLog
    usage: UsageTracker
    guard: RateLimitGuard
    orchestrator: FallbackOrchestrator


def build_container(
    config: AppConfig | None = None,
    database: Database | None = None,
    vault: CredentialVault | None = None,
    *,
    events_enabled: bool | None = None,
) -> ServiceContainer:
    config = config or load_config()
    database = database or Database(database_url())
    vault = vault or CredentialVault.from_env()

    store = ProviderStore(database, vault)
    registry = ProviderRegistry(
        store,
        ProviderCache(
            ttl_seconds=config.provider_cache_ttl_seconds,
            max_size=config.provider_cache_max_size,
        ),
    )
    adapters = AdapterSet(config)
    events = EventLog(database, enabled=events_enabled)
    usage = UsageTracker(UsageLogger(database))
    orchestrator = FallbackOrchestrator(
        registry,
        vault,
        adapters,
        config=config,
        events=events,
        usage=usage,
    )
    return ServiceContainer(
        config=config,
        database=database,
        vault=vault,
        store=store,
        registry=registry,
        adapters=adapters,
        events=events,
        usage=usage,
        guard=RateLimitGuard(database),
        orchestrator=orchestrator,
    )


@lru_cache(maxsize=1)
def get_container() -> ServiceContainer:
    """FastAPI dependency returning the shared container (overridable in tests)."""
    return build_container()


__all__ = ["ServiceContainer", "build_container", "get_container"]
