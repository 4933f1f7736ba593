"""
Simulated fallback backend.

Generates plausible cost, inventory and budget data locally so the
service keeps producing a view when a live provider API is unavailable,
or when live backends are disabled altogether. Output is deterministic
for a given (seed, provider, date).
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Callable

from pkg.cloud.base import ProviderBackend
from pkg.models import CloudCredentials, ProviderId

logger = logging.getLogger(__name__)

MIN_VM_COUNT = 15
VM_COUNT_SPREAD = 10  # 15..24 machines
DATABASE_COUNT = 3


@dataclass(frozen=True)
class _Catalogue:
    services: tuple[str, ...]
    regions: tuple[str, ...]
    daily_cost_range: tuple[float, float]
    vm_sizes: tuple[str, ...]
    vm_type: str
    vm_statuses: tuple[str, ...]
    database_type: str
    budgets: tuple[tuple[str, str, float, str], ...]


_CATALOGUES: dict[ProviderId, _Catalogue] = {
    ProviderId.AWS: _Catalogue(
        services=("EC2-Instance", "S3", "RDS", "Lambda", "CloudFront", "ELB"),
        regions=("us-east-1", "us-west-2", "eu-west-1"),
        daily_cost_range=(10.0, 110.0),
        vm_sizes=("t3.micro", "t3.small", "t3.medium", "m5.large", "c5.xlarge"),
        vm_type="EC2 {size}",
        vm_statuses=("running", "stopped"),
        database_type="RDS MySQL",
        budgets=(
            ("monthly-compute-budget", "Monthly Compute Budget", 5000.0, "monthly"),
            ("quarterly-storage-budget", "Quarterly Storage Budget", 2000.0, "quarterly"),
            ("annual-total-budget", "Annual Total Budget", 50000.0, "yearly"),
        ),
    ),
    ProviderId.AZURE: _Catalogue(
        services=("Virtual Machines", "Storage", "SQL Database", "App Service", "CDN", "Load Balancer"),
        regions=("East US", "West US 2", "North Europe"),
        daily_cost_range=(15.0, 135.0),
        vm_sizes=("Standard_B1s", "Standard_B2s", "Standard_D2s_v3", "Standard_F4s_v2"),
        vm_type="Virtual Machine {size}",
        # Azure reports deallocated VMs; they bill like stopped ones
        vm_statuses=("running", "stopped", "deallocated"),
        database_type="SQL Database",
        budgets=(
            ("monthly-vm-budget", "Monthly VM Budget", 4500.0, "monthly"),
            ("quarterly-database-budget", "Quarterly Database Budget", 3000.0, "quarterly"),
            ("annual-subscription-budget", "Annual Subscription Budget", 60000.0, "yearly"),
        ),
    ),
    ProviderId.GCP: _Catalogue(
        services=(
            "Compute Engine",
            "Cloud Storage",
            "BigQuery",
            "Cloud SQL",
            "Cloud CDN",
            "Cloud Load Balancing",
        ),
        regions=("us-central1", "us-east1", "europe-west1"),
        daily_cost_range=(12.0, 120.0),
        vm_sizes=("e2-micro", "e2-medium", "n2-standard-2", "n2-standard-4"),
        vm_type="Compute Engine {size}",
        vm_statuses=("running", "stopped"),
        database_type="Cloud SQL PostgreSQL",
        budgets=(
            ("monthly-compute-budget", "Monthly Compute Budget", 6000.0, "monthly"),
            ("quarterly-storage-budget", "Quarterly Storage Budget", 2500.0, "quarterly"),
            ("annual-project-budget", "Annual Project Budget", 70000.0, "yearly"),
        ),
    ),
}


class SimulatedBackend(ProviderBackend):
    """Deterministic generated data for one provider."""

    def __init__(
        self,
        provider: ProviderId,
        seed: int = 42,
        today: Callable[[], date] = date.today,
    ):
        self._provider = ProviderId(provider)
        self._seed = seed
        self._today = today
        self._catalogue = _CATALOGUES[self._provider]

    @property
    def name(self) -> str:
        return f"{self._provider.value}-simulated"

    async def fetch_costs(
        self,
        credentials: CloudCredentials,
        start_date: date,
        end_date: date,
    ) -> list[dict[str, Any]]:
        """One record per day x service x region over the inclusive range."""
        low, high = self._catalogue.daily_cost_range
        costs: list[dict[str, Any]] = []

        day = start_date
        while day <= end_date:
            rng = self._rng(day, "costs")
            for service in self._catalogue.services:
                for region in self._catalogue.regions:
                    costs.append(
                        {
                            "date": day.isoformat(),
                            "amount": round(rng.uniform(low, high), 2),
                            "currency": "USD",
                            "service": service,
                            "region": region,
                        }
                    )
            day += timedelta(days=1)

        logger.debug("Generated %d %s cost records", len(costs), self._provider.value)
        return costs

    async def fetch_resources(self, credentials: CloudCredentials) -> list[dict[str, Any]]:
        rng = self._rng(self._today(), "resources")
        cat = self._catalogue

        resources: list[dict[str, Any]] = []
        for i in range(MIN_VM_COUNT + rng.randrange(VM_COUNT_SPREAD)):
            size = rng.choice(cat.vm_sizes)
            region = rng.choice(cat.regions)
            raw_status = rng.choice(cat.vm_statuses)
            running = raw_status == "running"
            resources.append(
                {
                    "id": self._vm_id(rng, i, region, credentials),
                    "name": f"{self._vm_prefix()}-{i + 1}",
                    "type": cat.vm_type.format(size=size),
                    "region": region,
                    "utilization": round(rng.uniform(10, 90)) if running else 0,
                    "status": "running" if running else "stopped",
                    "tags": {
                        "Environment": "Production" if rng.random() > 0.5 else "Development",
                        "Team": f"team-{rng.randint(1, 5)}",
                    },
                }
            )

        for i in range(DATABASE_COUNT):
            resources.append(
                {
                    "id": f"{self._provider.value}-db-{rng.getrandbits(32):08x}",
                    "name": f"database-{i + 1}",
                    "type": cat.database_type,
                    "region": rng.choice(cat.regions),
                    "utilization": round(rng.uniform(20, 80)),
                    "status": "running",
                    "tags": {"Environment": "Production", "Backup": "Enabled"},
                }
            )

        logger.debug("Generated %d %s resources", len(resources), self._provider.value)
        return resources

    async def fetch_budgets(self, credentials: CloudCredentials) -> list[dict[str, Any]]:
        rng = self._rng(self._today(), "budgets")
        return [
            {
                "id": budget_id,
                "name": name,
                "amount": amount,
                # spent lands between 20% and 90% of the ceiling
                "spent": round(amount * rng.uniform(0.2, 0.9), 2),
                "period": period,
            }
            for budget_id, name, amount, period in self._catalogue.budgets
        ]

    async def test_connection(self, credentials: CloudCredentials) -> bool:
        return True

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _rng(self, day: date, stream: str) -> random.Random:
        return random.Random(f"{self._seed}:{self._provider.value}:{day.isoformat()}:{stream}")

    def _vm_prefix(self) -> str:
        return {
            ProviderId.AWS: "web-server",
            ProviderId.AZURE: "vm-web",
            ProviderId.GCP: "gce-app",
        }[self._provider]

    def _vm_id(self, rng: random.Random, index: int, region: str, credentials: CloudCredentials) -> str:
        if self._provider is ProviderId.AWS:
            return f"i-{rng.getrandbits(36):09x}"
        if self._provider is ProviderId.AZURE:
            subscription = credentials.subscription_id or "00000000-0000-0000-0000-000000000000"
            return (
                f"/subscriptions/{subscription}/resourceGroups/rg-{index}"
                f"/providers/Microsoft.Compute/virtualMachines/vm-{index}"
            )
        project = credentials.project_id or "simulated-project"
        return f"projects/{project}/zones/{region}-a/instances/gce-app-{index + 1}"
