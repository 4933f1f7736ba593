"""
GCP backend for Tally.

Costs come from the BigQuery billing export, inventory from Cloud Asset
Inventory and budgets from the Billing Budgets API. Credentials carry a
service account key (JSON text); SDK packages are imported lazily.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from datetime import date
from typing import Any

from pkg.cloud.base import ProviderBackend
from pkg.errors import AuthorizationError, TransientProviderError
from pkg.models import CloudCredentials

# GCP project IDs: 6-30 chars, lowercase letters, digits, hyphens
_PROJECT_ID_RE = re.compile(r"^[a-z][a-z0-9\-]{4,28}[a-z0-9]$")

logger = logging.getLogger(__name__)

_ASSET_TYPES = {
    "compute.googleapis.com/Instance": "Compute Engine",
    "sqladmin.googleapis.com/Instance": "Cloud SQL",
    "storage.googleapis.com/Bucket": "Cloud Storage Bucket",
}

_INSTANCE_STATES = {
    "RUNNING": "running",
    "RUNNABLE": "running",
    "PROVISIONING": "running",
    "STAGING": "running",
    "STOPPING": "stopped",
    "STOPPED": "stopped",
    "SUSPENDED": "stopped",
    "TERMINATED": "terminated",
}


class GCPBackend(ProviderBackend):
    """Live Google Cloud cost, inventory and budget backend."""

    @property
    def name(self) -> str:
        return "gcp-live"

    async def fetch_costs(
        self,
        credentials: CloudCredentials,
        start_date: date,
        end_date: date,
    ) -> list[dict[str, Any]]:
        """Sum the billing export per day, service and region."""
        return await self._run("fetch_costs", self._costs_sync, credentials, start_date, end_date)

    async def fetch_resources(self, credentials: CloudCredentials) -> list[dict[str, Any]]:
        return await self._run("fetch_resources", self._resources_sync, credentials)

    async def fetch_budgets(self, credentials: CloudCredentials) -> list[dict[str, Any]]:
        """Budgets of the billing account; empty without ``billing_account_id``."""
        if not credentials.billing_account_id:
            return []
        return await self._run("fetch_budgets", self._budgets_sync, credentials)

    async def test_connection(self, credentials: CloudCredentials) -> bool:
        """Look the project up through Resource Manager."""
        project = await self._run("test_connection", self._project_sync, credentials)
        return bool(project)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _run(self, operation: str, func, *args) -> Any:
        try:
            from google.api_core import exceptions as gexc
            from google.auth.exceptions import GoogleAuthError
        except ImportError as exc:
            raise TransientProviderError(
                "Google Cloud SDK is not installed (pip install tally[gcp])", provider="gcp"
            ) from exc

        try:
            return await asyncio.to_thread(func, *args)
        except (GoogleAuthError, gexc.Unauthenticated, gexc.PermissionDenied) as exc:
            raise AuthorizationError(f"GCP {operation} rejected credentials: {exc}", provider="gcp") from exc
        except gexc.GoogleAPIError as exc:
            raise TransientProviderError(f"GCP {operation} failed: {exc}", provider="gcp") from exc
        except ValueError as exc:
            # bad project id or unreadable service account key
            raise AuthorizationError(f"GCP {operation}: {exc}", provider="gcp") from exc

    @staticmethod
    def _project_id(credentials: CloudCredentials) -> str:
        pid = credentials.project_id or ""
        # project id is interpolated into the BigQuery table name
        if not _PROJECT_ID_RE.match(pid):
            raise ValueError(
                f"Invalid GCP project ID format: {pid!r}. "
                "Expected 6-30 lowercase alphanumeric/hyphen characters."
            )
        return pid

    @staticmethod
    def _google_credentials(credentials: CloudCredentials):
        if not credentials.service_account_key:
            return None
        from google.oauth2 import service_account

        info = json.loads(credentials.service_account_key)
        return service_account.Credentials.from_service_account_info(info)

    def _project_sync(self, credentials: CloudCredentials) -> str:
        from google.cloud import resourcemanager_v3

        client = resourcemanager_v3.ProjectsClient(credentials=self._google_credentials(credentials))
        project = client.get_project(name=f"projects/{self._project_id(credentials)}")
        return project.project_id

    # -- BigQuery billing export ---------------------------------------

    def _costs_sync(
        self,
        credentials: CloudCredentials,
        start_date: date,
        end_date: date,
    ) -> list[dict[str, Any]]:
        from google.cloud import bigquery

        project_id = self._project_id(credentials)
        client = bigquery.Client(
            project=project_id, credentials=self._google_credentials(credentials)
        )

        # Standard billing export table naming convention
        query = f"""
            SELECT
                DATE(usage_start_time) AS usage_date,
                service.description AS service,
                location.region AS region,
                currency,
                SUM(cost) AS cost
            FROM `{project_id}.billing_export.gcp_billing_export_v1_*`
            WHERE DATE(usage_start_time) BETWEEN @start_date AND @end_date
            GROUP BY usage_date, service, region, currency
        """
        job_config = bigquery.QueryJobConfig(
            query_parameters=[
                bigquery.ScalarQueryParameter("start_date", "DATE", start_date.isoformat()),
                bigquery.ScalarQueryParameter("end_date", "DATE", end_date.isoformat()),
            ]
        )

        costs = [
            {
                "date": row.usage_date.isoformat(),
                "amount": max(float(row.cost or 0), 0.0),  # credits can push a bucket negative
                "currency": row.currency or "USD",
                "service": row.service or "Unknown",
                "region": row.region or None,
            }
            for row in client.query(query, job_config=job_config).result()
        ]

        logger.info("Fetched %d GCP cost records", len(costs))
        return costs

    # -- Cloud Asset Inventory -----------------------------------------

    def _resources_sync(self, credentials: CloudCredentials) -> list[dict[str, Any]]:
        from google.cloud import asset_v1

        client = asset_v1.AssetServiceClient(credentials=self._google_credentials(credentials))
        request = asset_v1.ListAssetsRequest(
            parent=f"projects/{self._project_id(credentials)}",
            asset_types=list(_ASSET_TYPES),
            content_type=asset_v1.ContentType.RESOURCE,
        )

        resources: list[dict[str, Any]] = []
        for asset in client.list_assets(request=request):
            data = asset.resource.data if asset.resource and asset.resource.data else {}
            state = str(data.get("status") or data.get("state") or "RUNNING").upper()
            resources.append(
                {
                    "id": asset.name,
                    "name": asset.name.split("/")[-1] if asset.name else "",
                    "type": _ASSET_TYPES.get(asset.asset_type, asset.asset_type),
                    "region": asset.resource.location if asset.resource else "",
                    "status": _INSTANCE_STATES.get(state, "running"),
                    "tags": {str(k): str(v) for k, v in dict(data.get("labels", {})).items()},
                }
            )

        logger.info("Discovered %d GCP resources", len(resources))
        return resources

    # -- Billing Budgets -----------------------------------------------

    def _budgets_sync(self, credentials: CloudCredentials) -> list[dict[str, Any]]:
        from google.cloud.billing import budgets_v1

        client = budgets_v1.BudgetServiceClient(credentials=self._google_credentials(credentials))
        parent = f"billingAccounts/{credentials.billing_account_id}"

        budgets: list[dict[str, Any]] = []
        for budget in client.list_budgets(parent=parent):
            money = budget.amount.specified_amount if budget.amount else None
            amount = float(money.units or 0) + float(money.nanos or 0) / 1e9 if money else 0.0
            budgets.append(
                {
                    "id": budget.name,
                    "name": budget.display_name or budget.name,
                    "amount": amount,
                    # the Budgets API exposes thresholds, not spend
                    "spent": 0.0,
                    "period": _budget_period(budget),
                }
            )

        logger.info("Fetched %d GCP budgets", len(budgets))
        return budgets


def _budget_period(budget) -> str:
    period = budget.budget_filter.calendar_period if budget.budget_filter else None
    name = getattr(period, "name", str(period or "")).upper()
    if name == "QUARTER":
        return "quarterly"
    if name == "YEAR":
        return "yearly"
    return "monthly"
