"""
In-memory provider backends for tests.
"""

from __future__ import annotations

import asyncio
from datetime import date
from typing import Any, Optional

from pkg.cloud.base import ProviderBackend
from pkg.errors import TransientProviderError
from pkg.models import CloudCredentials


class FakeBackend(ProviderBackend):
    """Returns canned payloads, optionally failing or sleeping first."""

    def __init__(
        self,
        name: str = "fake",
        costs: Any = None,
        resources: Any = None,
        budgets: Any = None,
        connected: bool = True,
        fail: Optional[Exception] = None,
        delay: float = 0.0,
    ):
        self._name = name
        self.costs = costs if costs is not None else []
        self.resources = resources if resources is not None else []
        self.budgets = budgets if budgets is not None else []
        self.connected = connected
        self.fail = fail
        self.delay = delay
        self.calls: list[str] = []
        self.cost_ranges: list[tuple[date, date]] = []

    @property
    def name(self) -> str:
        return self._name

    async def _respond(self, operation: str, payload: Any) -> Any:
        self.calls.append(operation)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail is not None:
            raise self.fail
        return payload

    async def fetch_costs(
        self,
        credentials: CloudCredentials,
        start_date: date,
        end_date: date,
    ) -> Any:
        self.cost_ranges.append((start_date, end_date))
        return await self._respond("fetch_costs", self.costs)

    async def fetch_resources(self, credentials: CloudCredentials) -> Any:
        return await self._respond("fetch_resources", self.resources)

    async def fetch_budgets(self, credentials: CloudCredentials) -> Any:
        return await self._respond("fetch_budgets", self.budgets)

    async def test_connection(self, credentials: CloudCredentials) -> bool:
        return await self._respond("test_connection", self.connected)


def failing(name: str = "broken") -> FakeBackend:
    return FakeBackend(name=name, fail=TransientProviderError("provider down", provider=name))


def cost(day: str, amount: float, service: str, region: Optional[str] = None) -> dict[str, Any]:
    return {"date": day, "amount": amount, "currency": "USD", "service": service, "region": region}


def resource(
    rid: str,
    rtype: str,
    region: str = "",
    utilization: Optional[float] = None,
    tags: Optional[dict[str, str]] = None,
    status: str = "running",
) -> dict[str, Any]:
    return {
        "id": rid,
        "name": rid,
        "type": rtype,
        "region": region,
        "utilization": utilization,
        "status": status,
        "tags": tags or {},
    }


def budget(bid: str, amount: float, spent: float, period: str = "monthly") -> dict[str, Any]:
    return {"id": bid, "name": bid, "amount": amount, "spent": spent, "period": period}
