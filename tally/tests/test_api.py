"""
Tests for api/routes.py

Uses FastAPI TestClient with an in-memory SQLite database and canned
provider backends so tests run without external services.
"""

from __future__ import annotations

import os
import sys

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

_PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if _PROJECT_ROOT not in sys.path:
    sys.path.insert(0, _PROJECT_ROOT)

from api.routes import configure_routes, router as api_router  # noqa: E402
from fakes import FakeBackend, budget, cost, failing, resource  # noqa: E402
from pkg.config import Settings  # noqa: E402
from pkg.database import get_session  # noqa: E402
from pkg.models import ProviderId  # noqa: E402

USER = "alice"
BASE = f"/api/v1/users/{USER}"

PROVIDER_DATA = {
    ProviderId.AWS: FakeBackend(
        "aws-fake",
        costs=[
            cost("2024-01-01", 700.0, "Amazon EC2", "us-east-1"),
            cost("2024-01-02", 300.0, "Amazon EC2", "us-east-1"),
            cost("2024-01-01", 100.0, "Amazon S3", "global"),
        ],
        resources=[
            resource("i-1", "EC2 m5.large", "us-east-1", utilization=10, tags={"Environment": "Production"}),
            resource("logs", "S3 Bucket", "global"),
        ],
        budgets=[budget("monthly", 2000, 1100)],
    ),
    ProviderId.AZURE: FakeBackend(
        "azure-fake",
        costs=[cost("2024-01-01", 250.0, "Storage", "eastus")],
        resources=[resource("disk-1", "Managed Disk", "eastus")],
        budgets=[budget("quarterly", 1000, 1200, period="quarterly")],
    ),
}


def _fake_factory(provider, settings):
    return PROVIDER_DATA[provider], failing(f"{provider.value}-fallback")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def client(session_factory):
    """TestClient wired to SQLite and the canned backends."""

    def _override_get_session():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app = FastAPI()
    app.include_router(api_router)
    app.dependency_overrides[get_session] = _override_get_session

    configure_routes(backend_factory=_fake_factory, settings=Settings(provider_timeout_seconds=5))
    yield TestClient(app)
    configure_routes()


@pytest.fixture()
def synced(client):
    """Connect AWS and Azure, then run one sync."""
    client.put(f"{BASE}/connections/aws", json={"access_key_id": "AKIA", "secret_access_key": "s"})
    client.put(f"{BASE}/connections/azure", json={"tenant_id": "t", "client_id": "c"})
    resp = client.post(f"{BASE}/sync", json={"start_date": "2024-01-01", "end_date": "2024-01-31"})
    assert resp.status_code == 200
    return client


# ===== Connections ==========================================================


class TestConnections:
    def test_save_and_list(self, client):
        resp = client.put(f"{BASE}/connections/gcp", json={"project_id": "my-project-1"})
        assert resp.status_code == 200
        assert resp.json() == {"provider": "gcp", "is_active": True, "last_sync_at": None}

        listed = client.get(f"{BASE}/connections").json()
        assert listed == [{"provider": "gcp", "is_active": True, "last_sync_at": None}]

    def test_credentials_never_returned(self, client):
        client.put(f"{BASE}/connections/aws", json={"secret_access_key": "very-secret"})
        assert "very-secret" not in client.get(f"{BASE}/connections").text

    def test_unknown_provider_rejected(self, client):
        resp = client.put(f"{BASE}/connections/oracle", json={})
        assert resp.status_code == 422

    def test_remove(self, client):
        client.put(f"{BASE}/connections/aws", json={})
        assert client.delete(f"{BASE}/connections/aws").status_code == 204
        assert client.get(f"{BASE}/connections").json() == []

    def test_remove_absent_is_noop(self, client):
        assert client.delete(f"{BASE}/connections/azure").status_code == 204

    def test_connection_test(self, client):
        client.put(f"{BASE}/connections/aws", json={})
        resp = client.post(f"{BASE}/connections/test")
        assert resp.status_code == 200
        assert resp.json() == {"results": {"aws": True}}

    def test_users_isolated(self, client):
        client.put(f"{BASE}/connections/aws", json={})
        assert client.get("/api/v1/users/bob/connections").json() == []


# ===== Sync =================================================================


class TestSync:
    def test_sync_reports_counts(self, client):
        client.put(f"{BASE}/connections/aws", json={})
        client.put(f"{BASE}/connections/azure", json={})
        resp = client.post(f"{BASE}/sync", json={"start_date": "2024-01-01", "end_date": "2024-01-31"})

        assert resp.status_code == 200
        data = resp.json()
        assert data["providers"] == ["aws", "azure"]
        assert data["failed_providers"] == []
        assert data["date_range"] == {"start": "2024-01-01", "end": "2024-01-31"}
        assert data["cost_records"] == 4
        assert data["resources"] == 3
        assert data["budgets"] == 2

    def test_sync_without_connections(self, client):
        resp = client.post(f"{BASE}/sync")
        assert resp.status_code == 200
        assert resp.json()["providers"] == []

    def test_marks_last_sync(self, synced):
        statuses = synced.get(f"{BASE}/connections").json()
        assert all(s["last_sync_at"] for s in statuses)

    def test_bad_date_format(self, client):
        resp = client.post(f"{BASE}/sync", json={"start_date": "01/02/2024"})
        assert resp.status_code == 400

    def test_inverted_range(self, client):
        resp = client.post(f"{BASE}/sync", json={"start_date": "2024-02-01", "end_date": "2024-01-01"})
        assert resp.status_code == 400
        assert resp.json()["detail"]["code"] == "precondition_failed"


# ===== Costs ================================================================


class TestCosts:
    def test_costs_grouped_by_provider(self, synced):
        data = synced.get(f"{BASE}/costs").json()
        assert set(data["costs_by_provider"]) == {"aws", "azure"}
        assert data["total_cost"] == 1350.0
        assert data["record_count"] == 4
        assert [c["date"] for c in data["costs_by_provider"]["aws"]][0] == "2024-01-02"

    def test_costs_filtered_by_provider(self, synced):
        data = synced.get(f"{BASE}/costs", params={"provider": "azure"}).json()
        assert list(data["costs_by_provider"]) == ["azure"]
        assert data["total_cost"] == 250.0

    def test_breakdown_by_service(self, synced):
        data = synced.get(f"{BASE}/costs/breakdown", params={"dimension": "service"}).json()
        assert data["dimension"] == "service"
        assert list(data["breakdown"].items()) == [
            ("Amazon EC2", 1000.0),
            ("Storage", 250.0),
            ("Amazon S3", 100.0),
        ]
        assert data["total_cost"] == 1350.0

    def test_breakdown_by_provider(self, synced):
        data = synced.get(f"{BASE}/costs/breakdown", params={"dimension": "provider"}).json()
        assert data["breakdown"] == {"aws": 1100.0, "azure": 250.0}

    def test_invalid_dimension(self, synced):
        resp = synced.get(f"{BASE}/costs/breakdown", params={"dimension": "colour"})
        assert resp.status_code == 400
        assert resp.json()["detail"]["code"] == "precondition_failed"


# ===== Inventory ============================================================


class TestInventory:
    def test_resources_carry_correlated_cost(self, synced):
        resources = {r["id"]: r for r in synced.get(f"{BASE}/resources").json()}
        assert resources["i-1"]["cost"] == 1000.0
        assert resources["logs"]["cost"] == 100.0
        assert resources["disk-1"]["cost"] == 250.0

    def test_resource_filters(self, synced):
        by_search = synced.get(f"{BASE}/resources", params={"search": "disk"}).json()
        assert [r["id"] for r in by_search] == ["disk-1"]

        by_type = synced.get(f"{BASE}/resources", params={"type": "S3 Bucket"}).json()
        assert [r["id"] for r in by_type] == ["logs"]

        by_provider = synced.get(f"{BASE}/resources", params={"provider": "aws", "region": "all"}).json()
        assert sorted(r["id"] for r in by_provider) == ["i-1", "logs"]

    def test_budgets(self, synced):
        budgets = {b["id"]: b for b in synced.get(f"{BASE}/budgets").json()}
        assert budgets["monthly"]["utilization"] == 55.0
        assert budgets["monthly"]["exceeded"] is False
        assert budgets["quarterly"]["exceeded"] is True
        assert budgets["quarterly"]["remaining"] == 0.0


# ===== Recommendations and metrics ==========================================


class TestRecommendations:
    def test_ranked_recommendations(self, synced):
        recs = synced.get(f"{BASE}/recommendations").json()
        savings = [r["potential_savings"] for r in recs]
        assert savings == sorted(savings, reverse=True)
        assert recs[0]["category"] == "compute"
        assert recs[0]["potential_savings"] == 400.0
        assert {r["provider"] for r in recs} == {"aws", "azure"}

    def test_filter_by_category_and_provider(self, synced):
        recs = synced.get(
            f"{BASE}/recommendations", params={"category": "storage", "provider": "azure"}
        ).json()
        assert len(recs) == 1
        assert recs[0]["potential_savings"] == 50.0

    def test_disconnected_provider_not_recommended(self, synced):
        synced.delete(f"{BASE}/connections/azure")
        recs = synced.get(f"{BASE}/recommendations").json()
        assert {r["provider"] for r in recs} == {"aws"}

    def test_summary(self, synced):
        summary = synced.get(f"{BASE}/recommendations/summary").json()
        # aws: compute 400 + storage 20; azure: storage 50
        assert summary["count"] == 3
        assert summary["total_potential_savings"] == 470.0
        assert summary["quick_wins"] == 2
        assert summary["potential_reduction"] == round(470 / 1350 * 100, 2)

    def test_metrics(self, synced):
        metrics = synced.get(f"{BASE}/metrics").json()
        assert metrics == {
            "total_spend": 1350.0,
            "total_budget": 3000.0,
            "total_budget_spent": 2300.0,
            "budget_utilization": 76.67,
            "total_resources": 3,
            "total_resources_cost": 1350.0,
        }

    def test_empty_user(self, client):
        assert client.get(f"{BASE}/recommendations").json() == []
        assert client.get(f"{BASE}/metrics").json()["total_resources"] == 0
