"""
Tests for pkg/cost/calculator.py
"""

from __future__ import annotations

import os
import sys

import pytest

_PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if _PROJECT_ROOT not in sys.path:
    sys.path.insert(0, _PROJECT_ROOT)

from pkg.cost.calculator import (  # noqa: E402
    aggregate_costs,
    budget_utilization,
    calculate_cloud_metrics,
    filter_resources,
    flatten_costs,
    summarize_recommendations,
)
from pkg.errors import PreconditionError  # noqa: E402
from pkg.models import (  # noqa: E402
    BudgetRecord,
    CostRecord,
    ProviderId,
    Recommendation,
    ResourceRecord,
)


def _cost(day: str, amount: float, service: str = "Compute", region: str | None = "eastus"):
    return CostRecord(date=day, amount=amount, service=service, region=region)


def _rec(rid: int, savings: float, effort: str = "Medium", resources: int = 1):
    return Recommendation(
        id=rid,
        title=f"rec {rid}",
        description="",
        potential_savings=savings,
        effort=effort,
        impact="High",
        category="compute",
        resources=resources,
        provider=ProviderId.AWS,
    )


@pytest.fixture()
def costs_by_provider():
    return {
        ProviderId.AWS: [
            _cost("2024-01-01", 100.10, "Amazon EC2", "us-east-1"),
            _cost("2024-01-02", 50.20, "Amazon S3", "us-east-1"),
        ],
        ProviderId.AZURE: [
            _cost("2024-01-01", 0.1, "Virtual Machines", "eastus"),
            _cost("2024-01-01", 0.2, "Storage", None),
        ],
    }


# ---------------------------------------------------------------------------
# calculate_cloud_metrics
# ---------------------------------------------------------------------------


class TestCloudMetrics:
    def test_totals(self, costs_by_provider):
        resources = [
            ResourceRecord(id="a", name="a", type="EC2", provider=ProviderId.AWS, cost=12.5),
            ResourceRecord(id="b", name="b", type="VM", provider=ProviderId.AZURE, cost=7.25),
        ]
        budgets = [
            BudgetRecord(id="b1", name="b1", amount=1000, spent=250, provider=ProviderId.AWS),
            BudgetRecord(id="b2", name="b2", amount=1000, spent=500, provider=ProviderId.AZURE),
        ]
        metrics = calculate_cloud_metrics(costs_by_provider, resources, budgets)

        assert metrics["total_spend"] == 150.6
        assert metrics["total_budget"] == 2000.0
        assert metrics["total_budget_spent"] == 750.0
        assert metrics["budget_utilization"] == 37.5
        assert metrics["total_resources"] == 2
        assert metrics["total_resources_cost"] == 19.75

    def test_decimal_precision(self):
        costs = {ProviderId.AZURE: [_cost("2024-01-01", 0.1), _cost("2024-01-02", 0.2)]}
        assert calculate_cloud_metrics(costs, [], [])["total_spend"] == 0.3

    def test_empty_inputs(self):
        metrics = calculate_cloud_metrics({}, [], [])
        assert metrics["total_spend"] == 0.0
        assert metrics["budget_utilization"] == 0.0
        assert metrics["total_resources"] == 0

    def test_none_costs(self):
        assert calculate_cloud_metrics(None, [], [])["total_spend"] == 0.0


# ---------------------------------------------------------------------------
# summarize_recommendations
# ---------------------------------------------------------------------------


class TestSummarizeRecommendations:
    def test_summary(self):
        costs = {ProviderId.AWS: [_cost("2024-01-01", 1000.0)]}
        recs = [
            _rec(1, 200.0, effort="Medium", resources=3),
            _rec(2, 50.0, effort="Low", resources=3),
            _rec(3, 10.0, effort="Low", resources=1),
        ]
        summary = summarize_recommendations(recs, costs)

        assert summary["count"] == 3
        assert summary["total_potential_savings"] == 260.0
        # the same resources can be counted by more than one rule
        assert summary["resources_affected"] == 7
        assert summary["quick_wins"] == 2
        assert summary["potential_reduction"] == 26.0

    def test_zero_spend_has_zero_reduction(self):
        summary = summarize_recommendations([_rec(1, 100.0)], {})
        assert summary["potential_reduction"] == 0.0

    def test_no_recommendations(self):
        summary = summarize_recommendations([])
        assert summary == {
            "count": 0,
            "total_potential_savings": 0.0,
            "resources_affected": 0,
            "quick_wins": 0,
            "potential_reduction": 0.0,
        }


# ---------------------------------------------------------------------------
# budget_utilization
# ---------------------------------------------------------------------------


class TestBudgetUtilization:
    def test_under_budget(self):
        budget = BudgetRecord(id="b", name="Prod", amount=800, spent=200, provider=ProviderId.GCP)
        out = budget_utilization(budget)
        assert out["utilization"] == 25.0
        assert out["remaining"] == 600.0
        assert out["exceeded"] is False
        assert out["provider"] == "gcp"

    def test_exceeded_budget(self):
        budget = BudgetRecord(id="b", name="Dev", amount=100, spent=130, provider=ProviderId.AWS)
        out = budget_utilization(budget)
        assert out["utilization"] == 130.0
        assert out["remaining"] == 0.0
        assert out["exceeded"] is True

    def test_zero_amount(self):
        budget = BudgetRecord(id="b", name="Empty", amount=0, spent=0, provider=ProviderId.AWS)
        assert budget_utilization(budget)["utilization"] == 0.0


# ---------------------------------------------------------------------------
# aggregate_costs
# ---------------------------------------------------------------------------


class TestAggregateCosts:
    def test_by_service_sorted_descending(self, costs_by_provider):
        out = aggregate_costs(costs_by_provider[ProviderId.AWS], "service")
        assert list(out.items()) == [("Amazon EC2", 100.1), ("Amazon S3", 50.2)]

    def test_by_region_missing_region_is_unknown(self, costs_by_provider):
        out = aggregate_costs(costs_by_provider[ProviderId.AZURE], "region")
        assert out == {"unknown": 0.2, "eastus": 0.1}

    def test_by_date(self, costs_by_provider):
        out = aggregate_costs(costs_by_provider[ProviderId.AWS], "date")
        assert out == {"2024-01-01": 100.1, "2024-01-02": 50.2}

    def test_by_provider(self, costs_by_provider):
        out = aggregate_costs(flatten_costs(costs_by_provider), "provider")
        assert list(out.items()) == [("aws", 150.3), ("azure", 0.3)]

    def test_empty(self):
        assert aggregate_costs([], "service") == {}

    def test_invalid_dimension(self, costs_by_provider):
        with pytest.raises(PreconditionError):
            aggregate_costs(costs_by_provider[ProviderId.AWS], "colour")


# ---------------------------------------------------------------------------
# filter_resources
# ---------------------------------------------------------------------------


class TestFilterResources:
    @pytest.fixture()
    def resources(self):
        return [
            ResourceRecord(id="1", name="web-server-1", type="EC2 t3.micro", provider=ProviderId.AWS, region="us-east-1"),
            ResourceRecord(id="2", name="database-1", type="RDS MySQL", provider=ProviderId.AWS, region="us-west-2"),
            ResourceRecord(id="3", name="vm-web-1", type="Virtual Machine", provider=ProviderId.AZURE, region="East US"),
        ]

    def test_no_filters(self, resources):
        assert filter_resources(resources) == resources

    def test_search_matches_name_or_type(self, resources):
        assert [r.id for r in filter_resources(resources, search="WEB")] == ["1", "3"]
        assert [r.id for r in filter_resources(resources, search="mysql")] == ["2"]

    def test_exact_filters(self, resources):
        assert [r.id for r in filter_resources(resources, provider="aws")] == ["1", "2"]
        assert [r.id for r in filter_resources(resources, region="East US")] == ["3"]
        assert [r.id for r in filter_resources(resources, resource_type="RDS MySQL")] == ["2"]

    def test_all_disables_filter(self, resources):
        assert len(filter_resources(resources, provider="all", region="all", resource_type="all")) == 3

    def test_filters_combine(self, resources):
        assert filter_resources(resources, search="web", provider="azure", region="us-east-1") == []
