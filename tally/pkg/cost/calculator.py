"""
Cost calculation utilities for Tally.

Provides the dashboard metrics, recommendation summaries, per-budget
utilization and cost breakdowns. All monetary sums use
``decimal.Decimal`` to avoid floating-point precision errors and are
converted back to ``float`` at the boundary.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Mapping, Optional, Sequence

from pkg.errors import PreconditionError
from pkg.models import BudgetRecord, CostRecord, ProviderId, Recommendation, ResourceRecord

logger = logging.getLogger(__name__)

_TWO_PLACES = Decimal("0.01")
_ZERO = Decimal("0")
_HUNDRED = Decimal("100")

QUICK_WIN_EFFORT = "Low"
COST_GROUPINGS = ("service", "region", "date", "provider")


def calculate_cloud_metrics(
    costs_by_provider: Optional[Mapping[ProviderId, Sequence[CostRecord]]],
    resources: Sequence[ResourceRecord],
    budgets: Sequence[BudgetRecord],
) -> dict[str, Any]:
    """Headline numbers for the overview dashboard.

    ``total_spend`` comes from billing records while
    ``total_resources_cost`` is the sum of correlated per-resource
    estimates; the two are independent and usually differ.

    Returns
    -------
    dict
        Keys: ``total_spend``, ``total_budget``, ``total_budget_spent``,
        ``budget_utilization`` (percent, 0 without budgets),
        ``total_resources``, ``total_resources_cost``.
    """
    total_spend = _sum(c.amount for costs in (costs_by_provider or {}).values() for c in costs)
    total_resources_cost = _sum(r.cost for r in resources)
    total_budget = _sum(b.amount for b in budgets)
    total_budget_spent = _sum(b.spent for b in budgets)

    return {
        "total_spend": _money(total_spend),
        "total_budget": _money(total_budget),
        "total_budget_spent": _money(total_budget_spent),
        "budget_utilization": _percent(total_budget_spent, total_budget),
        "total_resources": len(resources),
        "total_resources_cost": _money(total_resources_cost),
    }


def summarize_recommendations(
    recommendations: Sequence[Recommendation],
    costs_by_provider: Optional[Mapping[ProviderId, Sequence[CostRecord]]] = None,
) -> dict[str, Any]:
    """Totals shown above the recommendation list.

    ``resources_affected`` sums each recommendation's resource count, so a
    resource hit by two rules is counted twice.
    """
    total_savings = _sum(r.potential_savings for r in recommendations)
    total_spend = _sum(c.amount for costs in (costs_by_provider or {}).values() for c in costs)

    return {
        "count": len(recommendations),
        "total_potential_savings": _money(total_savings),
        "resources_affected": sum(r.resources for r in recommendations),
        "quick_wins": sum(1 for r in recommendations if r.effort == QUICK_WIN_EFFORT),
        "potential_reduction": _percent(total_savings, total_spend),
    }


def budget_utilization(budget: BudgetRecord) -> dict[str, Any]:
    """Spent-vs-allocated for a single budget."""
    spent = Decimal(str(budget.spent))
    amount = Decimal(str(budget.amount))
    return {
        "id": budget.id,
        "name": budget.name,
        "provider": budget.provider.value,
        "period": budget.period,
        "amount": budget.amount,
        "spent": budget.spent,
        "remaining": _money(max(amount - spent, _ZERO)),
        "utilization": _percent(spent, amount),
        "exceeded": spent > amount,
    }


def aggregate_costs(
    costs: Iterable[CostRecord],
    group_by: str = "service",
) -> dict[str, float]:
    """Aggregate cost records by a given dimension.

    Parameters
    ----------
    costs:
        Cost records, or ``(provider, record)`` pairs from
        :func:`flatten_costs` (needed for ``group_by="provider"``).
    group_by:
        One of ``"service"``, ``"region"``, ``"date"``, ``"provider"``.

    Returns
    -------
    dict[str, float]
        Mapping of dimension value -> total amount, sorted descending.
    """
    if group_by not in COST_GROUPINGS:
        raise PreconditionError(
            f"Unsupported group_by {group_by!r}; expected one of {', '.join(COST_GROUPINGS)}"
        )

    totals: dict[str, Decimal] = defaultdict(lambda: _ZERO)
    for item in costs:
        provider, cost = item if isinstance(item, tuple) else (None, item)
        if group_by == "provider":
            key = provider.value if provider is not None else "unknown"
        elif group_by == "date":
            key = cost.date.isoformat()
        else:
            key = getattr(cost, group_by) or "unknown"
        totals[str(key)] += Decimal(str(cost.amount))

    # Sort descending by cost, convert back to float for API compatibility
    return dict(
        sorted(
            ((k, _money(v)) for k, v in totals.items()),
            key=lambda kv: kv[1],
            reverse=True,
        )
    )


def flatten_costs(
    costs_by_provider: Mapping[ProviderId, Sequence[CostRecord]],
) -> list[tuple[ProviderId, CostRecord]]:
    """Pair every record with its provider, for provider breakdowns."""
    return [(provider, cost) for provider, costs in costs_by_provider.items() for cost in costs]


def filter_resources(
    resources: Sequence[ResourceRecord],
    search: Optional[str] = None,
    resource_type: Optional[str] = None,
    provider: Optional[str] = None,
    region: Optional[str] = None,
) -> list[ResourceRecord]:
    """Case-insensitive search over name and type plus exact-match filters.

    ``None`` or ``"all"`` disables a filter.
    """
    needle = (search or "").strip().lower()

    def _keep(resource: ResourceRecord) -> bool:
        if needle and needle not in resource.name.lower() and needle not in resource.type.lower():
            return False
        if _active(resource_type) and resource.type != resource_type:
            return False
        if _active(provider) and resource.provider.value != provider:
            return False
        if _active(region) and resource.region != region:
            return False
        return True

    return [r for r in resources if _keep(r)]


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _active(value: Optional[str]) -> bool:
    return bool(value) and value != "all"


def _sum(values: Iterable[float]) -> Decimal:
    return sum((Decimal(str(v or 0)) for v in values), _ZERO)


def _money(value: Decimal) -> float:
    return float(value.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP))


def _percent(part: Decimal, whole: Decimal) -> float:
    if whole <= 0:
        return 0.0
    return float((part / whole * _HUNDRED).quantize(_TWO_PLACES, rounding=ROUND_HALF_UP))
