"""
AWS backend for Tally.

Uses boto3 to pull daily cost buckets from AWS Cost Explorer, list
EC2/RDS/S3 inventory, and read AWS Budgets. Every SDK call is blocking,
so each operation runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, timedelta
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from pkg.cloud.base import ProviderBackend
from pkg.config import get_settings
from pkg.errors import AuthorizationError, TransientProviderError
from pkg.models import CloudCredentials

logger = logging.getLogger(__name__)

_AUTH_ERROR_CODES = frozenset(
    {
        "AccessDenied",
        "AccessDeniedException",
        "AuthFailure",
        "ExpiredToken",
        "ExpiredTokenException",
        "InvalidClientTokenId",
        "SignatureDoesNotMatch",
        "UnauthorizedOperation",
        "UnrecognizedClientException",
    }
)

_INSTANCE_STATES = {
    "pending": "running",
    "running": "running",
    "stopping": "stopped",
    "stopped": "stopped",
    "shutting-down": "terminated",
    "terminated": "terminated",
}

_BUDGET_PERIODS = {
    "MONTHLY": "monthly",
    "QUARTERLY": "quarterly",
    "ANNUALLY": "yearly",
}


class AWSBackend(ProviderBackend):
    """Live AWS cost, inventory and budget backend."""

    def __init__(self, settings=None):
        self._settings = settings or get_settings()

    # ------------------------------------------------------------------
    # ProviderBackend interface
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        return "aws-live"

    async def fetch_costs(
        self,
        credentials: CloudCredentials,
        start_date: date,
        end_date: date,
    ) -> list[dict[str, Any]]:
        """Pull daily cost buckets from Cost Explorer."""
        return await self._run("fetch_costs", self._costs_sync, credentials, start_date, end_date)

    async def fetch_resources(self, credentials: CloudCredentials) -> list[dict[str, Any]]:
        """List EC2 instances, RDS instances, and S3 buckets."""
        return await self._run("fetch_resources", self._resources_sync, credentials)

    async def fetch_budgets(self, credentials: CloudCredentials) -> list[dict[str, Any]]:
        return await self._run("fetch_budgets", self._budgets_sync, credentials)

    async def test_connection(self, credentials: CloudCredentials) -> bool:
        """Resolve the caller identity through STS."""
        account = await self._run("test_connection", self._account_id, self._session(credentials))
        return bool(account)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _run(self, operation: str, func, *args) -> Any:
        try:
            return await asyncio.to_thread(func, *args)
        except NoCredentialsError as exc:
            raise AuthorizationError(f"AWS {operation}: no credentials", provider="aws") from exc
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code", "")
            if code in _AUTH_ERROR_CODES:
                raise AuthorizationError(
                    f"AWS {operation} rejected credentials: {code}",
                    provider="aws",
                    details={"code": code},
                ) from exc
            raise TransientProviderError(
                f"AWS {operation} failed: {exc}",
                provider="aws",
                details={"code": code},
            ) from exc
        except BotoCoreError as exc:
            raise TransientProviderError(f"AWS {operation} failed: {exc}", provider="aws") from exc

    def _region(self, credentials: CloudCredentials) -> str:
        return credentials.region or self._settings.aws_default_region

    def _session(self, credentials: CloudCredentials) -> boto3.Session:
        kwargs: dict[str, Any] = {"region_name": self._region(credentials)}
        if credentials.access_key_id:
            kwargs["aws_access_key_id"] = credentials.access_key_id
        if credentials.secret_access_key:
            kwargs["aws_secret_access_key"] = credentials.secret_access_key
        return boto3.Session(**kwargs)

    @staticmethod
    def _account_id(session: boto3.Session) -> str:
        return session.client("sts").get_caller_identity()["Account"]

    # -- Cost Explorer -------------------------------------------------

    def _costs_sync(
        self,
        credentials: CloudCredentials,
        start_date: date,
        end_date: date,
    ) -> list[dict[str, Any]]:
        ce = self._session(credentials).client("ce", region_name="us-east-1")

        results: list[dict[str, Any]] = []
        next_token: str | None = None

        while True:
            kwargs: dict[str, Any] = {
                # Cost Explorer treats End as exclusive
                "TimePeriod": {
                    "Start": start_date.isoformat(),
                    "End": (end_date + timedelta(days=1)).isoformat(),
                },
                "Granularity": "DAILY",
                "Metrics": ["UnblendedCost"],
                "GroupBy": [
                    {"Type": "DIMENSION", "Key": "SERVICE"},
                    {"Type": "DIMENSION", "Key": "REGION"},
                ],
            }
            if next_token:
                kwargs["NextPageToken"] = next_token

            response = ce.get_cost_and_usage(**kwargs)

            for result_by_time in response.get("ResultsByTime", []):
                period_start = result_by_time["TimePeriod"]["Start"]
                for group in result_by_time.get("Groups", []):
                    keys = group.get("Keys", [])
                    cost = group.get("Metrics", {}).get("UnblendedCost", {})
                    results.append(
                        {
                            "date": period_start,
                            "amount": float(cost.get("Amount", 0)),
                            "currency": cost.get("Unit", "USD"),
                            "service": keys[0] if len(keys) > 0 else "Unknown",
                            "region": keys[1] if len(keys) > 1 and keys[1] else None,
                        }
                    )

            next_token = response.get("NextPageToken")
            if not next_token:
                break

        logger.info("Fetched %d AWS cost records", len(results))
        return results

    # -- Inventory -----------------------------------------------------

    def _resources_sync(self, credentials: CloudCredentials) -> list[dict[str, Any]]:
        session = self._session(credentials)
        region = self._region(credentials)

        resources: list[dict[str, Any]] = []
        resources.extend(self._list_ec2_instances(session, region))
        resources.extend(self._list_rds_instances(session, region))
        resources.extend(self._list_s3_buckets(session))

        logger.info("Discovered %d AWS resources", len(resources))
        return resources

    @staticmethod
    def _list_ec2_instances(session: boto3.Session, region: str) -> list[dict[str, Any]]:
        ec2 = session.client("ec2", region_name=region)
        paginator = ec2.get_paginator("describe_instances")
        resources: list[dict[str, Any]] = []

        for page in paginator.paginate():
            for reservation in page.get("Reservations", []):
                for instance in reservation.get("Instances", []):
                    tags = {t["Key"]: t["Value"] for t in instance.get("Tags", [])}
                    state = instance.get("State", {}).get("Name", "running")
                    resources.append(
                        {
                            "id": instance["InstanceId"],
                            "name": tags.get("Name", instance["InstanceId"]),
                            "type": f"EC2 {instance.get('InstanceType', '')}".strip(),
                            "region": region,
                            "status": _INSTANCE_STATES.get(state, "running"),
                            "tags": tags,
                        }
                    )
        return resources

    @staticmethod
    def _list_rds_instances(session: boto3.Session, region: str) -> list[dict[str, Any]]:
        rds = session.client("rds", region_name=region)
        paginator = rds.get_paginator("describe_db_instances")
        resources: list[dict[str, Any]] = []

        for page in paginator.paginate():
            for db in page.get("DBInstances", []):
                status = db.get("DBInstanceStatus", "available")
                resources.append(
                    {
                        "id": db["DBInstanceIdentifier"],
                        "name": db["DBInstanceIdentifier"],
                        "type": f"RDS {db.get('Engine', '')}".strip(),
                        "region": region,
                        "status": "stopped" if status in ("stopped", "stopping") else "running",
                        "tags": {t["Key"]: t["Value"] for t in db.get("TagList", [])},
                    }
                )
        return resources

    @staticmethod
    def _list_s3_buckets(session: boto3.Session) -> list[dict[str, Any]]:
        response = session.client("s3").list_buckets()
        return [
            {
                "id": bucket["Name"],
                "name": bucket["Name"],
                "type": "S3 Bucket",
                "region": "global",
                "status": "running",
                "tags": {},
            }
            for bucket in response.get("Buckets", [])
        ]

    # -- Budgets -------------------------------------------------------

    def _budgets_sync(self, credentials: CloudCredentials) -> list[dict[str, Any]]:
        session = self._session(credentials)
        account_id = self._account_id(session)
        client = session.client("budgets", region_name="us-east-1")
        paginator = client.get_paginator("describe_budgets")

        budgets: list[dict[str, Any]] = []
        for page in paginator.paginate(AccountId=account_id):
            for budget in page.get("Budgets", []):
                limit = budget.get("BudgetLimit", {})
                spend = budget.get("CalculatedSpend", {}).get("ActualSpend", {})
                budgets.append(
                    {
                        "id": budget["BudgetName"],
                        "name": budget["BudgetName"],
                        "amount": float(limit.get("Amount", 0)),
                        "spent": float(spend.get("Amount", 0)),
                        "period": _BUDGET_PERIODS.get(budget.get("TimeUnit", ""), "monthly"),
                    }
                )

        logger.info("Fetched %d AWS budgets", len(budgets))
        return budgets
