"""
Tests for internal/ingestion/sync.py
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys

import pytest

_PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if _PROJECT_ROOT not in sys.path:
    sys.path.insert(0, _PROJECT_ROOT)

from fakes import FakeBackend, budget, cost, failing, resource  # noqa: E402
from internal.ingestion.aggregator import ProviderAggregator, ProviderRegistry  # noqa: E402
from internal.ingestion.sync import CloudSyncService, build_registry  # noqa: E402
from pkg.config import Settings  # noqa: E402
from pkg.errors import PreconditionError  # noqa: E402
from pkg.models import CloudCredentials, ProviderId  # noqa: E402
from pkg.store import PersistenceStore  # noqa: E402

USER = "user-1"
CREDS = CloudCredentials()


class FlakyStore(PersistenceStore):
    """Fails cost writes for the given providers."""

    def __init__(self, session, broken: set[ProviderId]):
        super().__init__(session)
        self.broken = broken

    def replace_costs(self, user_id, provider, costs):
        if provider in self.broken:
            raise RuntimeError("disk full")
        return super().replace_costs(user_id, provider, costs)


def _registry() -> ProviderRegistry:
    registry = ProviderRegistry()
    registry.add(
        ProviderId.AWS,
        CREDS,
        FakeBackend(
            "aws",
            costs=[cost("2024-01-01", 80.0, "Amazon EC2", "us-east-1")],
            resources=[resource("i-1", "EC2 t3.micro", "us-east-1", utilization=10)],
            budgets=[budget("aws-budget", 1000, 400)],
        ),
        failing("aws-fallback"),
    )
    registry.add(
        ProviderId.AZURE,
        CREDS,
        failing("azure"),
        FakeBackend(
            "azure-fallback",
            costs=[cost("2024-01-01", 40.0, "Storage", "eastus")],
            resources=[resource("disk-1", "Managed Disk", "eastus")],
        ),
    )
    return registry


def _service(store) -> CloudSyncService:
    return CloudSyncService(store, ProviderAggregator(_registry()))


class TestSync:
    def test_persists_every_provider(self, db_session):
        store = PersistenceStore(db_session)
        result = asyncio.run(_service(store).sync(USER, "2024-01-01", "2024-01-31"))

        assert result.failed_providers == []
        assert set(store.list_costs(USER)) == {ProviderId.AWS, ProviderId.AZURE}
        assert sorted(r.id for r in store.list_resources(USER)) == ["disk-1", "i-1"]
        assert [b.id for b in store.list_budgets(USER)] == ["aws-budget"]

    def test_snapshot_is_correlated(self, db_session):
        result = asyncio.run(_service(PersistenceStore(db_session)).sync(USER, "2024-01-01", "2024-01-31"))

        costs = {r.id: r.cost for r in result.snapshot.resources}
        assert costs == {"i-1": 80.0, "disk-1": 40.0}

    def test_write_failure_isolated_to_provider(self, db_session, caplog):
        store = FlakyStore(db_session, broken={ProviderId.AWS})
        with caplog.at_level(logging.ERROR):
            result = asyncio.run(_service(store).sync(USER, "2024-01-01", "2024-01-31"))

        assert result.failed_providers == [ProviderId.AWS]
        assert list(store.list_costs(USER)) == [ProviderId.AZURE]
        assert [r.id for r in store.list_resources(USER)] == ["disk-1"]
        assert "Failed to store aws data" in caplog.text
        # the snapshot still carries what was fetched
        assert {r.id for r in result.snapshot.resources} == {"i-1", "disk-1"}

    def test_resync_replaces_previous_data(self, db_session):
        store = PersistenceStore(db_session)
        service = _service(store)
        asyncio.run(service.sync(USER, "2024-01-01", "2024-01-31"))
        asyncio.run(service.sync(USER, "2024-01-01", "2024-01-31"))

        assert len(store.list_costs(USER)[ProviderId.AWS]) == 1
        assert len(store.list_resources(USER)) == 2

    def test_marks_connections_synced(self, db_session):
        store = PersistenceStore(db_session)
        store.save_connection(USER, ProviderId.AWS, CREDS)
        asyncio.run(_service(store).sync(USER, "2024-01-01", "2024-01-31"))

        [status] = store.connection_status(USER)
        assert status["last_sync_at"] is not None

    def test_invalid_range_writes_nothing(self, db_session):
        store = PersistenceStore(db_session)
        registry = _registry()
        service = CloudSyncService(store, ProviderAggregator(registry))

        with pytest.raises(PreconditionError):
            asyncio.run(service.sync(USER, "2024-02-01", "2024-01-01"))

        assert store.list_costs(USER) == {}
        assert registry.get(ProviderId.AWS).primary.calls == []


class TestLoadSnapshot:
    def test_rebuilds_from_store(self, db_session):
        store = PersistenceStore(db_session)
        service = _service(store)
        synced = asyncio.run(service.sync(USER, "2024-01-01", "2024-01-31")).snapshot

        loaded = service.load_snapshot(USER)
        assert sorted((r.id, r.cost) for r in loaded.resources) == sorted(
            (r.id, r.cost) for r in synced.resources
        )
        assert [b.id for b in loaded.budgets] == ["aws-budget"]

    def test_empty_store(self, db_session):
        snapshot = _service(PersistenceStore(db_session)).load_snapshot(USER)
        assert snapshot.costs_by_provider == {}
        assert snapshot.resources == []
        assert snapshot.budgets == []


class TestBuildRegistry:
    def test_one_entry_per_connection(self):
        seen = []

        def factory(provider, settings):
            seen.append(provider)
            return FakeBackend(f"{provider.value}-primary"), FakeBackend(f"{provider.value}-fallback")

        registry = build_registry(
            {ProviderId.GCP: CREDS, ProviderId.AWS: CREDS},
            settings=Settings(),
            factory=factory,
        )
        assert registry.providers == [ProviderId.GCP, ProviderId.AWS]
        assert registry.get(ProviderId.AWS).primary.name == "aws-primary"
        assert seen == [ProviderId.GCP, ProviderId.AWS]

    def test_default_factory_uses_simulated_backends(self):
        registry = build_registry({ProviderId.AZURE: CREDS}, settings=Settings(use_live_backends=False))
        entry = registry.get(ProviderId.AZURE)
        assert entry.primary.name == "azure-simulated"
        assert entry.fallback.name == "azure-simulated"
