"""
Cost-to-resource correlation engine.

Inventory records and billing records come from independent provider APIs
with no shared key, so each resource's monthly cost is inferred from the
free-text service, type and region labels. Strategies are tried in order
and the first one producing a positive figure wins:

1. category keyword match (sum of matching, region-compatible cost records)
2. partial textual match (average of matching cost records)
3. proportional fallback allocation (small share of the provider's spend)

A provider without cost records leaves every one of its resources at zero.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Mapping, Sequence

from pkg.categories import cost_keywords
from pkg.models import CostRecord, ProviderId, ResourceRecord

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Thresholds (tunable)
# ---------------------------------------------------------------------------
FALLBACK_ALLOCATION_SHARE = Decimal("0.1")  # share of the per-resource average
FALLBACK_MIN_DIVISOR = 10  # spread provider spend over at least this many resources
GLOBAL_REGION_SENTINELS = frozenset({"all regions", "global"})
VENDOR_PREFIXES = ("microsoft.", "amazon ", "aws ", "google ")

_ZERO = Decimal("0")
_TWO_PLACES = Decimal("0.01")


class CorrelationEngine:
    """Assigns an estimated cost to every resource from billing records."""

    def correlate(
        self,
        resources: Sequence[ResourceRecord],
        costs_by_provider: Mapping[ProviderId, Sequence[CostRecord]],
    ) -> list[ResourceRecord]:
        """Correlate a mixed-provider resource list.

        Resources are grouped by provider and each group is matched only
        against that provider's cost records. Output order follows input
        order. Inputs are never mutated; new records are returned.
        """
        if not resources:
            return []

        positions: dict[ProviderId, list[int]] = defaultdict(list)
        for index, resource in enumerate(resources):
            positions[resource.provider].append(index)

        correlated: list[ResourceRecord] = list(resources)
        for provider, indexes in positions.items():
            group = [resources[i] for i in indexes]
            provider_costs = costs_by_provider.get(provider) or []
            for index, result in zip(indexes, self.correlate_provider(group, provider_costs)):
                correlated[index] = result

        return correlated

    def correlate_provider(
        self,
        resources: Sequence[ResourceRecord],
        costs: Sequence[CostRecord],
    ) -> list[ResourceRecord]:
        """Correlate the resources of a single provider with its cost records."""
        if not resources:
            return []

        provider_total = sum((_dec(c.amount) for c in costs), _ZERO)
        results: list[ResourceRecord] = []
        tier_counts = {"category": 0, "partial": 0, "fallback": 0, "none": 0}

        for resource in resources:
            amount, tier = self._estimate(resource, costs, provider_total, len(resources))
            tier_counts[tier] += 1
            results.append(resource.model_copy(update={"cost": _round_money(amount)}))

        logger.debug(
            "Correlated %d resources against %d cost records: %s",
            len(resources),
            len(costs),
            tier_counts,
        )
        return results

    # ------------------------------------------------------------------
    # Tiers
    # ------------------------------------------------------------------

    def _estimate(
        self,
        resource: ResourceRecord,
        costs: Sequence[CostRecord],
        provider_total: Decimal,
        resource_count: int,
    ) -> tuple[Decimal, str]:
        if not costs:
            return _ZERO, "none"

        amount = self.category_match(resource, costs)
        if amount > 0:
            return amount, "category"

        amount = self.partial_match(resource, costs)
        if amount > 0:
            return amount, "partial"

        amount = self.fallback_allocation(provider_total, resource_count)
        if amount > 0:
            return amount, "fallback"
        return _ZERO, "none"

    @staticmethod
    def category_match(resource: ResourceRecord, costs: Iterable[CostRecord]) -> Decimal:
        """Sum of cost records billed under the resource's category keywords."""
        keywords = cost_keywords(resource.type)
        if not keywords:
            return _ZERO

        total = _ZERO
        for cost in costs:
            service = cost.service.lower()
            # an empty label is contained by every keyword; leave it to the fallback
            if not service:
                continue
            service_match = any(kw in service or service in kw for kw in keywords)
            if service_match and regions_compatible(resource.region, cost.region):
                total += _dec(cost.amount)
        return total

    @staticmethod
    def partial_match(resource: ResourceRecord, costs: Iterable[CostRecord]) -> Decimal:
        """Average of cost records whose service text overlaps the resource's."""
        resource_type = _strip_vendor(resource.type.lower())
        resource_name = resource.name.lower()

        matches: list[Decimal] = []
        for cost in costs:
            service = _strip_vendor(cost.service.lower())
            if not service:
                continue
            if (
                service in resource_type
                or service in resource_name
                or (resource_type and resource_type in service)
            ):
                matches.append(_dec(cost.amount))

        if not matches:
            return _ZERO
        return sum(matches, _ZERO) / len(matches)

    @staticmethod
    def fallback_allocation(provider_total: Decimal, resource_count: int) -> Decimal:
        """Conservative placeholder share of the provider's total spend."""
        if resource_count < 1:
            return _ZERO
        divisor = max(resource_count, FALLBACK_MIN_DIVISOR)
        return provider_total / divisor * FALLBACK_ALLOCATION_SHARE


def regions_compatible(resource_region: str | None, cost_region: str | None) -> bool:
    """Whether a cost record's region can be attributed to a resource's region."""
    resource_region = (resource_region or "").lower()
    cost_region = (cost_region or "").lower()
    if not resource_region or not cost_region:
        return True
    if cost_region in GLOBAL_REGION_SENTINELS:
        return True
    return cost_region in resource_region or resource_region in cost_region


def _strip_vendor(value: str) -> str:
    for prefix in VENDOR_PREFIXES:
        if value.startswith(prefix):
            return value[len(prefix):]
    return value


def _dec(value: float | None) -> Decimal:
    return Decimal(str(value or 0))


def _round_money(value: Decimal) -> float:
    if value <= 0:
        return 0.0
    return float(value.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP))
