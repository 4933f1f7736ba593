"""
Azure backend for Tally.

Uses the Azure SDK to pull daily cost buckets from Azure Cost Management,
list subscription resources, and read Consumption budgets. SDK packages
are imported lazily so the service starts without the azure extra.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date
from typing import Any

from pkg.cloud.base import ProviderBackend
from pkg.errors import AuthorizationError, TransientProviderError
from pkg.models import CloudCredentials

logger = logging.getLogger(__name__)

_MANAGEMENT_SCOPE = "https://management.azure.com/.default"

_BUDGET_PERIODS = {
    "monthly": "monthly",
    "billingmonth": "monthly",
    "quarterly": "quarterly",
    "billingquarter": "quarterly",
    "annually": "yearly",
    "billingannual": "yearly",
}


class AzureBackend(ProviderBackend):
    """Live Azure cost, inventory and budget backend."""

    @property
    def name(self) -> str:
        return "azure-live"

    async def fetch_costs(
        self,
        credentials: CloudCredentials,
        start_date: date,
        end_date: date,
    ) -> list[dict[str, Any]]:
        """Query Cost Management for daily actual cost by service and location."""
        return await self._run("fetch_costs", self._costs_sync, credentials, start_date, end_date)

    async def fetch_resources(self, credentials: CloudCredentials) -> list[dict[str, Any]]:
        return await self._run("fetch_resources", self._resources_sync, credentials)

    async def fetch_budgets(self, credentials: CloudCredentials) -> list[dict[str, Any]]:
        return await self._run("fetch_budgets", self._budgets_sync, credentials)

    async def test_connection(self, credentials: CloudCredentials) -> bool:
        """Acquire a management-plane token for the service principal."""
        token = await self._run("test_connection", self._token_sync, credentials)
        return bool(token)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _run(self, operation: str, func, *args) -> Any:
        try:
            from azure.core.exceptions import (
                ClientAuthenticationError,
                HttpResponseError,
            )
        except ImportError as exc:
            raise TransientProviderError(
                "Azure SDK is not installed (pip install tally[azure])", provider="azure"
            ) from exc

        try:
            return await asyncio.to_thread(func, *args)
        except ClientAuthenticationError as exc:
            raise AuthorizationError(
                f"Azure {operation} rejected credentials: {exc.message}", provider="azure"
            ) from exc
        except HttpResponseError as exc:
            if exc.status_code in (401, 403):
                raise AuthorizationError(
                    f"Azure {operation} rejected credentials: {exc.message}",
                    provider="azure",
                    details={"status": exc.status_code},
                ) from exc
            raise TransientProviderError(
                f"Azure {operation} failed: {exc.message}",
                provider="azure",
                details={"status": exc.status_code},
            ) from exc
        except ValueError as exc:
            # raised by ClientSecretCredential for missing tenant/client ids
            raise AuthorizationError(f"Azure {operation}: {exc}", provider="azure") from exc

    @staticmethod
    def _credential(credentials: CloudCredentials):
        from azure.identity import ClientSecretCredential

        return ClientSecretCredential(
            tenant_id=credentials.tenant_id or "",
            client_id=credentials.client_id or "",
            client_secret=credentials.client_secret or "",
        )

    @staticmethod
    def _scope(credentials: CloudCredentials) -> str:
        if not credentials.subscription_id:
            raise ValueError("subscription_id is required")
        return f"/subscriptions/{credentials.subscription_id}"

    def _token_sync(self, credentials: CloudCredentials) -> str:
        return self._credential(credentials).get_token(_MANAGEMENT_SCOPE).token

    # -- Cost Management -----------------------------------------------

    def _costs_sync(
        self,
        credentials: CloudCredentials,
        start_date: date,
        end_date: date,
    ) -> list[dict[str, Any]]:
        from azure.mgmt.costmanagement import CostManagementClient
        from azure.mgmt.costmanagement.models import (
            ExportType,
            QueryAggregation,
            QueryDataset,
            QueryDefinition,
            QueryGrouping,
            QueryTimePeriod,
            TimeframeType,
        )

        client = CostManagementClient(credential=self._credential(credentials))
        query = QueryDefinition(
            type=ExportType.ACTUAL_COST,
            timeframe=TimeframeType.CUSTOM,
            time_period=QueryTimePeriod(from_property=start_date, to=end_date),
            dataset=QueryDataset(
                granularity="Daily",
                aggregation={"totalCost": QueryAggregation(name="Cost", function="Sum")},
                grouping=[
                    QueryGrouping(type="Dimension", name="ServiceName"),
                    QueryGrouping(type="Dimension", name="ResourceLocation"),
                ],
            ),
        )
        result = client.query.usage(scope=self._scope(credentials), parameters=query)

        columns = [col.name for col in result.columns] if result.columns else []
        costs: list[dict[str, Any]] = []
        for row in result.rows or []:
            row_dict = dict(zip(columns, row))
            costs.append(
                {
                    "date": _usage_date(row_dict.get("UsageDate"), start_date).isoformat(),
                    "amount": float(row_dict.get("Cost") or row_dict.get("totalCost") or 0),
                    "currency": row_dict.get("Currency", "USD"),
                    "service": row_dict.get("ServiceName") or "Unknown",
                    "region": row_dict.get("ResourceLocation") or None,
                }
            )

        logger.info("Fetched %d Azure cost records", len(costs))
        return costs

    # -- Resources -----------------------------------------------------

    def _resources_sync(self, credentials: CloudCredentials) -> list[dict[str, Any]]:
        from azure.mgmt.resource import ResourceManagementClient

        client = ResourceManagementClient(
            credential=self._credential(credentials),
            subscription_id=credentials.subscription_id or "",
        )

        resources = [
            {
                "id": resource.id,
                "name": resource.name,
                "type": resource.type,
                "region": resource.location or "",
                "status": "running",
                "tags": dict(resource.tags) if resource.tags else {},
            }
            for resource in client.resources.list()
        ]

        logger.info("Discovered %d Azure resources", len(resources))
        return resources

    # -- Budgets -------------------------------------------------------

    def _budgets_sync(self, credentials: CloudCredentials) -> list[dict[str, Any]]:
        from azure.mgmt.consumption import ConsumptionManagementClient

        client = ConsumptionManagementClient(
            credential=self._credential(credentials),
            subscription_id=credentials.subscription_id or "",
        )

        budgets: list[dict[str, Any]] = []
        for budget in client.budgets.list(scope=self._scope(credentials)):
            grain = str(budget.time_grain or "Monthly").lower()
            spend = budget.current_spend.amount if budget.current_spend else 0
            budgets.append(
                {
                    "id": budget.id or budget.name,
                    "name": budget.name,
                    "amount": float(budget.amount or 0),
                    "spent": float(spend or 0),
                    "period": _BUDGET_PERIODS.get(grain, "monthly"),
                }
            )

        logger.info("Fetched %d Azure budgets", len(budgets))
        return budgets


def _usage_date(value: Any, default: date) -> date:
    """Cost Management returns UsageDate as an integer ``YYYYMMDD``."""
    if isinstance(value, (int, float)):
        text = str(int(value))
        return date(int(text[:4]), int(text[4:6]), int(text[6:8]))
    if isinstance(value, str) and value:
        return date.fromisoformat(value[:10])
    return default
