"""
Cost optimization recommendation engine.

Evaluates a fixed battery of heuristic rules against each registered
provider's correlated resources. Every rule that fires yields exactly one
recommendation for that provider, with savings derived as a fraction of
the cost of the resources that triggered it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Iterable, Mapping, Optional, Sequence

from pkg.categories import ResourceCategory, classify, is_network_gear
from pkg.models import CostRecord, ProviderId, Recommendation, ResourceRecord

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Thresholds (tunable)
# ---------------------------------------------------------------------------
UNDERUTILIZED_THRESHOLD = 30.0  # utilization % below which compute is underused
UNDERUTILIZED_SAVINGS_RATE = Decimal("0.4")
STORAGE_SAVINGS_RATE = Decimal("0.2")
RESERVED_COST_THRESHOLD = 1000.0  # monthly cost above which a commitment pays off
RESERVED_SAVINGS_RATE = Decimal("0.15")
NETWORK_SAVINGS_RATE = Decimal("0.1")
NETWORK_MIN_SAVINGS = Decimal("100")
DEV_TEST_SAVINGS_RATE = Decimal("0.3")
DEV_TEST_MIN_SAVINGS = Decimal("200")

ENVIRONMENT_TAG_KEYS = ("environment", "env")
DEV_TEST_MARKERS = ("dev", "development", "test")

_TWO_PLACES = Decimal("0.01")


@dataclass(frozen=True)
class HeuristicRule:
    """One row of the rule battery."""

    key: str
    title: str
    description: str
    selects: Callable[[ResourceRecord], bool]
    savings_rate: Decimal
    effort: str
    impact: str
    category: str
    min_savings: Optional[Decimal] = None


def _is_underutilized_compute(resource: ResourceRecord) -> bool:
    return (
        classify(resource.type) == ResourceCategory.COMPUTE
        and (resource.utilization or 0.0) < UNDERUTILIZED_THRESHOLD
    )


def _is_storage(resource: ResourceRecord) -> bool:
    return classify(resource.type) == ResourceCategory.STORAGE


def _is_reservation_candidate(resource: ResourceRecord) -> bool:
    return (resource.cost or 0.0) > RESERVED_COST_THRESHOLD and classify(resource.type) in (
        ResourceCategory.COMPUTE,
        ResourceCategory.DATABASE,
    )


def _is_network_gear(resource: ResourceRecord) -> bool:
    return is_network_gear(resource.type)


def _is_dev_test(resource: ResourceRecord) -> bool:
    for key, value in (resource.tags or {}).items():
        if key.lower() in ENVIRONMENT_TAG_KEYS:
            lowered = (value or "").lower()
            if any(marker in lowered for marker in DEV_TEST_MARKERS):
                return True
    return False


RULES: tuple[HeuristicRule, ...] = (
    HeuristicRule(
        key="underutilized_compute",
        title="Right-size underutilized {provider} instances",
        description=(
            "{count} compute resource(s) are running below "
            f"{UNDERUTILIZED_THRESHOLD:.0f}% utilization and can be downsized."
        ),
        selects=_is_underutilized_compute,
        savings_rate=UNDERUTILIZED_SAVINGS_RATE,
        effort="Medium",
        impact="High",
        category="compute",
    ),
    HeuristicRule(
        key="storage_optimization",
        title="Optimize {provider} storage",
        description=(
            "{count} storage resource(s) could move to cheaper tiers or "
            "have unattached volumes removed."
        ),
        selects=_is_storage,
        savings_rate=STORAGE_SAVINGS_RATE,
        effort="Low",
        impact="Medium",
        category="storage",
    ),
    HeuristicRule(
        key="reserved_capacity",
        title="Reserved capacity opportunities on {provider}",
        description=(
            "{count} steady, high-cost VM or database resource(s) would be "
            "cheaper under a reservation or savings plan."
        ),
        selects=_is_reservation_candidate,
        savings_rate=RESERVED_SAVINGS_RATE,
        effort="Medium",
        impact="High",
        category="commitment",
    ),
    HeuristicRule(
        key="idle_network",
        title="Review idle {provider} load balancers and gateways",
        description=(
            "{count} load balancer or gateway resource(s) may be carrying "
            "little or no traffic."
        ),
        selects=_is_network_gear,
        savings_rate=NETWORK_SAVINGS_RATE,
        effort="Low",
        impact="Low",
        category="network",
        min_savings=NETWORK_MIN_SAVINGS,
    ),
    HeuristicRule(
        key="dev_test_rightsizing",
        title="Right-size {provider} dev/test environments",
        description=(
            "{count} resource(s) tagged as development or test can be "
            "scheduled off-hours or moved to spot capacity."
        ),
        selects=_is_dev_test,
        savings_rate=DEV_TEST_SAVINGS_RATE,
        effort="Low",
        impact="Medium",
        category="compute",
        min_savings=DEV_TEST_MIN_SAVINGS,
    ),
)


class RecommendationEngine:
    """Derives ranked optimization recommendations from correlated resources."""

    def __init__(self, rules: Sequence[HeuristicRule] = RULES) -> None:
        self._rules = tuple(rules)

    def generate_recommendations(
        self,
        resources: Sequence[ResourceRecord],
        costs_by_provider: Mapping[ProviderId, Sequence[CostRecord]],
        providers: Iterable[ProviderId],
    ) -> list[Recommendation]:
        """Run every rule for every registered provider.

        Parameters
        ----------
        resources:
            Resources whose ``cost`` has been filled in by correlation.
        costs_by_provider:
            Raw cost records, used for logging context only; savings are
            always based on resource costs.
        providers:
            The providers currently registered. Providers without
            resources are skipped.

        Returns
        -------
        list[Recommendation]
            Sorted by ``potential_savings`` descending; ties keep the order
            in which the rules fired. IDs follow emission order from 1.
        """
        recommendations: list[Recommendation] = []
        next_id = 1

        for provider in providers:
            provider_resources = [r for r in resources if r.provider == provider]
            if not provider_resources:
                logger.debug("Skipping %s: no resources", _label(provider))
                continue

            for rule in self._rules:
                rec = self._evaluate(rule, provider, provider_resources, next_id)
                if rec is not None:
                    recommendations.append(rec)
                    next_id += 1

            logger.info(
                "Evaluated %d rules for %s (%d resources, %d cost records)",
                len(self._rules),
                _label(provider),
                len(provider_resources),
                len(costs_by_provider.get(provider) or []),
            )

        ranked = sorted(recommendations, key=lambda r: r.potential_savings, reverse=True)
        logger.info("Generated %d recommendations", len(ranked))
        return ranked

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _evaluate(
        rule: HeuristicRule,
        provider: ProviderId,
        resources: Sequence[ResourceRecord],
        rec_id: int,
    ) -> Recommendation | None:
        matched = [r for r in resources if rule.selects(r)]
        if not matched:
            return None

        savings = sum(
            (Decimal(str(r.cost or 0)) * rule.savings_rate for r in matched),
            Decimal("0"),
        )
        if rule.min_savings is not None and savings <= rule.min_savings:
            logger.debug(
                "Suppressed %s for %s: savings %s below minimum %s",
                rule.key,
                _label(provider),
                savings,
                rule.min_savings,
            )
            return None

        label = _label(provider)
        return Recommendation(
            id=rec_id,
            title=rule.title.format(provider=label),
            description=rule.description.format(count=len(matched)),
            potential_savings=float(savings.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)),
            effort=rule.effort,
            impact=rule.impact,
            category=rule.category,
            resources=len(matched),
            provider=provider,
        )


def _label(provider: ProviderId | str) -> str:
    value = provider.value if isinstance(provider, ProviderId) else str(provider)
    return value.upper()
