"""Organization provider lookup and caching."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter, OrderedDict
from dataclasses import dataclass, field
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError

from crm_ai.core.exceptions import ProviderFetchError
from crm_ai.core.schemas import ProviderConfig, is_allowed_provider
from crm_ai.storage.providers import ProviderStore

logger = logging.getLogger("crm_ai.registry")

GENERIC_FETCH_ERROR = "Unable to load AI provider configuration. Please retry in a few moments."


@dataclass
class ProvidersLookup:
    providers: list[ProviderConfig] = field(default_factory=list)
    fetch_error: bool = False
    error_message: str | None = None


@dataclass
class _CacheEntry:
    providers: list[ProviderConfig]
    stored_at: float


class ProviderCache:
    """Per-organization provider lists with a TTL and a bounded size.

    Entries are keyed by organization id only, so one organization can never be
    served another's providers. The oldest entry is evicted when full.
    """

    def __init__(
        self,
        ttl_seconds: float = 60.0,
        max_size: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._max_size = max_size
        self._clock = clock
        self._entries: OrderedDict[str, _CacheEntry] = OrderedDict()

    def get(self, organization_id: str) -> list[ProviderConfig] | None:
        entry = self._entries.get(organization_id)
        if entry is None:
            return None
        if self._clock() - entry.stored_at >= self._ttl:
            del self._entries[organization_id]
            return None
        return list(entry.providers)

    def set(self, organization_id: str, providers: list[ProviderConfig]) -> None:
        self._entries.pop(organization_id, None)
        while len(self._entries) >= self._max_size:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Evicted provider cache entry", extra={"organization_id": evicted})
        self._entries[organization_id] = _CacheEntry(list(providers), self._clock())

    def invalidate(self, organization_id: str) -> None:
        self._entries.pop(organization_id, None)

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> dict[str, float]:
        return {"size": len(self._entries), "max_size": self._max_size, "ttl_seconds": self._ttl}


def _duplicate_types(providers: list[ProviderConfig]) -> list[str]:
    counts = Counter(provider.provider_type for provider in providers)
    return sorted(provider_type for provider_type, count in counts.items() if count > 1)


class ProviderRegistry:
    """Single entry point for fetching an organization's connected providers."""

    def __init__(self, store: ProviderStore, cache: ProviderCache | None = None) -> None:
        self._store = store
        self._cache = cache

    @property
    def cache(self) -> ProviderCache | None:
        return self._cache

    def invalidate(self, organization_id: str) -> None:
        if self._cache is not None:
            self._cache.invalidate(organization_id)

    async def get_connected_providers(
        self, organization_id: str, *, use_cache: bool = True
    ) -> ProvidersLookup:
        """Return active, supported providers in connection order.

        Lookup failures are reported through ``fetch_error`` rather than raised,
        so callers can tell "no providers" apart from "lookup failed".
        """
        cached = self._cache.get(organization_id) if use_cache and self._cache else None
        if cached is not None:
            return ProvidersLookup(providers=cached)

        try:
            rows = await asyncio.to_thread(self._store.list_active, organization_id)
        except (SQLAlchemyError, ProviderFetchError) as exc:
            logger.error(
                "Provider fetch failed",
                exc_info=True,
                extra={"event": "provider_fetch_error", "organization_id": organization_id},
            )
            message = exc.message if isinstance(exc, ProviderFetchError) else GENERIC_FETCH_ERROR
            return ProvidersLookup(fetch_error=True, error_message=message)

        providers = [
            row
            for row in rows
            if row.active and row.api_key_encrypted and is_allowed_provider(row.provider_type)
        ]
        skipped = len(rows) - len(providers)
        if skipped:
            logger.info(
                "Ignored unsupported or keyless provider rows",
                extra={"organization_id": organization_id, "skipped": skipped},
            )

        duplicates = _duplicate_types(providers)
        if duplicates:
            logger.error(
                "Multiple active providers of the same type",
                extra={
                    "event": "provider_integrity_error",
                    "organization_id": organization_id,
                    "provider_types": duplicates,
                },
            )
            return ProvidersLookup(
                fetch_error=True,
                error_message=(
                    "AI provider configuration is inconsistent "
                    f"(duplicate active: {', '.join(duplicates)}). Please reconnect the provider."
                ),
            )

        if use_cache and self._cache is not None:
            self._cache.set(organization_id, providers)
        return ProvidersLookup(providers=providers)


__all__ = ["ProviderCache", "ProviderRegistry", "ProvidersLookup"]
