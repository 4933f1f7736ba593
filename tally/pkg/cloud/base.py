"""
Abstract base class for provider backends.

A backend is one data path for one provider: either a live integration
with the vendor's billing and inventory APIs, or a local fallback. The
aggregator treats both identically, so each concrete backend only has to
satisfy this interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date
from typing import Any

from pkg.models import CloudCredentials


class ProviderBackend(ABC):
    """Interface that every provider backend must satisfy.

    Implementations raise :class:`~pkg.errors.TransientProviderError` or
    :class:`~pkg.errors.AuthorizationError` on failure instead of returning
    empty results, so the aggregator can switch to the fallback path.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Return a short backend label (e.g. ``'aws-live'``)."""
        ...

    @abstractmethod
    async def fetch_costs(
        self,
        credentials: CloudCredentials,
        start_date: date,
        end_date: date,
    ) -> list[dict[str, Any]]:
        """Retrieve daily cost buckets for the inclusive date range.

        Each dict should match :class:`~pkg.models.CostRecord`:
        ``date``, ``amount``, ``currency``, ``service``, ``region``.
        """
        ...

    @abstractmethod
    async def fetch_resources(self, credentials: CloudCredentials) -> list[dict[str, Any]]:
        """List inventory visible with these credentials.

        Each dict should match :class:`~pkg.models.ResourceRecord`:
        ``id``, ``name``, ``type``, ``region``, ``utilization``,
        ``status``, ``tags``.
        """
        ...

    @abstractmethod
    async def fetch_budgets(self, credentials: CloudCredentials) -> list[dict[str, Any]]:
        """List configured budgets.

        Each dict should match :class:`~pkg.models.BudgetRecord`:
        ``id``, ``name``, ``amount``, ``spent``, ``period``.
        """
        ...

    @abstractmethod
    async def test_connection(self, credentials: CloudCredentials) -> bool:
        """Return ``True`` when the credentials can reach the provider."""
        ...
