"""
Sync orchestration.

Pulls a fresh aggregate view from every registered provider, writes each
provider's slice through to the persistence store, and hands back a
correlated snapshot. Also rebuilds snapshots from the store without
touching the providers.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date
from typing import Mapping, Optional

from pydantic import BaseModel, Field

from internal.correlation.engine import CorrelationEngine
from internal.ingestion.aggregator import ProviderAggregator, ProviderRegistry, validate_date_range
from pkg.cloud.factory import BackendFactory, build_backends
from pkg.config import Settings, get_settings
from pkg.models import AggregateSnapshot, CloudCredentials, ProviderId
from pkg.store import PersistenceStore

logger = logging.getLogger(__name__)


class SyncResult(BaseModel):
    """Outcome of one sync run."""

    snapshot: AggregateSnapshot
    failed_providers: list[ProviderId] = Field(default_factory=list)


def build_registry(
    connections: Mapping[ProviderId, CloudCredentials],
    settings: Optional[Settings] = None,
    factory: Optional[BackendFactory] = None,
) -> ProviderRegistry:
    """Build a registry holding one entry per stored connection."""
    settings = settings or get_settings()
    factory = factory or build_backends

    registry = ProviderRegistry()
    for provider, credentials in connections.items():
        primary, fallback = factory(provider, settings)
        registry.add(provider, credentials, primary, fallback)
    return registry


class CloudSyncService:
    """Aggregate -> write-through -> correlated snapshot."""

    def __init__(
        self,
        store: PersistenceStore,
        aggregator: ProviderAggregator,
        correlation: Optional[CorrelationEngine] = None,
    ) -> None:
        self._store = store
        self._aggregator = aggregator
        self._correlation = correlation or CorrelationEngine()

    async def sync(
        self,
        user_id: str,
        start_date: date | str,
        end_date: date | str,
    ) -> SyncResult:
        """Fetch every registered provider and persist what came back.

        Each table write is atomic per provider. A provider whose write
        fails is reported in ``failed_providers``; other providers are
        unaffected.

        Raises
        ------
        PreconditionError
            If the date range is invalid. Nothing is fetched or written.
        """
        start, end = validate_date_range(start_date, end_date)

        costs_by_provider, resources, budgets = await asyncio.gather(
            self._aggregator.fetch_costs(start, end),
            self._aggregator.fetch_resources(),
            self._aggregator.fetch_budgets(),
        )

        failed: list[ProviderId] = []
        for provider in self._aggregator.registry.providers:
            try:
                self._store.replace_costs(user_id, provider, costs_by_provider.get(provider, []))
                self._store.replace_resources(
                    user_id, provider, [r for r in resources if r.provider == provider]
                )
                self._store.replace_budgets(
                    user_id, provider, [b for b in budgets if b.provider == provider]
                )
                self._store.mark_synced(user_id, provider)
            except Exception:
                logger.exception("Failed to store %s data for user %s", provider.value, user_id)
                failed.append(provider)

        snapshot = AggregateSnapshot(
            costs_by_provider=costs_by_provider,
            resources=self._correlation.correlate(resources, costs_by_provider),
            budgets=budgets,
        )
        logger.info(
            "Sync for user %s: %d providers, %d resources, %d budgets, %d write failures",
            user_id,
            len(self._aggregator.registry),
            len(snapshot.resources),
            len(snapshot.budgets),
            len(failed),
        )
        return SyncResult(snapshot=snapshot, failed_providers=failed)

    def load_snapshot(self, user_id: str) -> AggregateSnapshot:
        """Rebuild the aggregate view from stored data, re-correlating in full."""
        costs_by_provider = self._store.list_costs(user_id)
        resources = self._store.list_resources(user_id)
        return AggregateSnapshot(
            costs_by_provider=costs_by_provider,
            resources=self._correlation.correlate(resources, costs_by_provider),
            budgets=self._store.list_budgets(user_id),
        )
