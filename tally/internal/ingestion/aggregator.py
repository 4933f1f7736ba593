"""
Provider aggregation engine.

Holds an explicit registry of provider connections and fans every
aggregate operation out to all of them concurrently. Each provider gets a
primary and a fallback backend; a failing provider degrades to an empty
contribution and never affects the others.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Awaitable, Callable, Iterator, Optional, TypeVar

from pkg.cloud.base import ProviderBackend
from pkg.errors import MalformedDataError, PreconditionError
from pkg.models import (
    BudgetRecord,
    CloudCredentials,
    CostRecord,
    ProviderId,
    ResourceRecord,
    parse_record,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ProviderConnection:
    """Credentials plus the two data paths for one provider."""

    provider: ProviderId
    credentials: CloudCredentials
    primary: ProviderBackend
    fallback: ProviderBackend


class ProviderRegistry:
    """Mapping of ProviderId to :class:`ProviderConnection`.

    Registries are plain values: build one per request or per process,
    there is no shared global instance.
    """

    def __init__(self) -> None:
        self._connections: dict[ProviderId, ProviderConnection] = {}

    def add(
        self,
        provider: ProviderId,
        credentials: CloudCredentials,
        primary: ProviderBackend,
        fallback: ProviderBackend,
    ) -> None:
        """Register *provider*, replacing any existing entry."""
        provider = ProviderId(provider)
        self._connections[provider] = ProviderConnection(
            provider=provider,
            credentials=credentials,
            primary=primary,
            fallback=fallback,
        )
        logger.info(
            "Registered provider %s (primary=%s, fallback=%s)",
            provider.value,
            primary.name,
            fallback.name,
        )

    def remove(self, provider: ProviderId) -> None:
        """Unregister *provider*. Removing an absent provider is a no-op."""
        if self._connections.pop(ProviderId(provider), None) is not None:
            logger.info("Removed provider %s", ProviderId(provider).value)

    def get(self, provider: ProviderId) -> ProviderConnection | None:
        return self._connections.get(provider)

    @property
    def providers(self) -> list[ProviderId]:
        """Return the registered provider ids."""
        return list(self._connections.keys())

    def __iter__(self) -> Iterator[ProviderConnection]:
        return iter(list(self._connections.values()))

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, provider: object) -> bool:
        return provider in self._connections


class ProviderAggregator:
    """Best-effort, concurrent fan-out across all registered providers."""

    def __init__(
        self,
        registry: ProviderRegistry | None = None,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        self._registry = registry if registry is not None else ProviderRegistry()
        self._timeout = timeout_seconds

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    @property
    def provider_names(self) -> list[str]:
        return [p.value for p in self._registry.providers]

    # ------------------------------------------------------------------
    # Aggregate operations
    # ------------------------------------------------------------------

    async def fetch_costs(
        self,
        start_date: date | str,
        end_date: date | str,
    ) -> dict[ProviderId, list[CostRecord]]:
        """Collect cost records from every provider for an inclusive range.

        Raises
        ------
        PreconditionError
            If a date is not ISO formatted or ``start_date > end_date``.
        """
        start, end = validate_date_range(start_date, end_date)

        async def _call(backend: ProviderBackend, conn: ProviderConnection) -> list[CostRecord]:
            raw = await self._bounded(backend.fetch_costs(conn.credentials, start, end))
            return _parse_batch(CostRecord, raw, conn.provider, tag_provider=False)

        return await self._fan_out("fetch_costs", _call, list)

    async def fetch_resources(self) -> list[ResourceRecord]:
        """Collect one flat, provider-tagged resource list."""

        async def _call(backend: ProviderBackend, conn: ProviderConnection) -> list[ResourceRecord]:
            raw = await self._bounded(backend.fetch_resources(conn.credentials))
            return _parse_batch(ResourceRecord, raw, conn.provider)

        by_provider = await self._fan_out("fetch_resources", _call, list)
        return [resource for records in by_provider.values() for resource in records]

    async def fetch_budgets(self) -> list[BudgetRecord]:
        """Collect one flat, provider-tagged budget list."""

        async def _call(backend: ProviderBackend, conn: ProviderConnection) -> list[BudgetRecord]:
            raw = await self._bounded(backend.fetch_budgets(conn.credentials))
            return _parse_batch(BudgetRecord, raw, conn.provider)

        by_provider = await self._fan_out("fetch_budgets", _call, list)
        return [budget for records in by_provider.values() for budget in records]

    async def test_connections(self) -> dict[ProviderId, bool]:
        """Check connectivity of every registered provider."""

        async def _call(backend: ProviderBackend, conn: ProviderConnection) -> bool:
            return bool(await self._bounded(backend.test_connection(conn.credentials)))

        return await self._fan_out("test_connection", _call, lambda: False)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _fan_out(
        self,
        operation: str,
        call: Callable[[ProviderBackend, ProviderConnection], Awaitable[T]],
        zero: Callable[[], T],
    ) -> dict[ProviderId, T]:
        connections = list(self._registry)
        if not connections:
            logger.warning("No providers registered; nothing to %s.", operation)
            return {}

        # gather propagates cancellation of the caller to every provider task
        results = await asyncio.gather(
            *(self._with_fallback(operation, conn, call, zero) for conn in connections)
        )
        return {conn.provider: result for conn, result in zip(connections, results)}

    @staticmethod
    async def _with_fallback(
        operation: str,
        conn: ProviderConnection,
        call: Callable[[ProviderBackend, ProviderConnection], Awaitable[T]],
        zero: Callable[[], T],
    ) -> T:
        """Run the primary path, then the fallback, then give up with *zero*."""
        provider = conn.provider.value
        try:
            result = await call(conn.primary, conn)
            logger.info("%s from %s served by %s", operation, provider, conn.primary.name)
            return result
        except Exception as exc:
            logger.warning(
                "%s from %s failed on %s (%s: %s); trying %s",
                operation,
                provider,
                conn.primary.name,
                type(exc).__name__,
                exc,
                conn.fallback.name,
            )

        try:
            result = await call(conn.fallback, conn)
            logger.info("%s from %s served by fallback %s", operation, provider, conn.fallback.name)
            return result
        except Exception as exc:
            logger.error(
                "%s from %s failed on fallback %s (%s: %s); contributing nothing",
                operation,
                provider,
                conn.fallback.name,
                type(exc).__name__,
                exc,
            )
            return zero()

    async def _bounded(self, coro: Awaitable[T]) -> T:
        if self._timeout is None:
            return await coro
        return await asyncio.wait_for(coro, timeout=self._timeout)


def validate_date_range(start_date: date | str, end_date: date | str) -> tuple[date, date]:
    """Coerce ISO dates and check ``start <= end``."""
    start = _coerce_date(start_date, "start_date")
    end = _coerce_date(end_date, "end_date")
    if start > end:
        raise PreconditionError(
            f"start_date {start.isoformat()} is after end_date {end.isoformat()}",
            details={"start_date": start.isoformat(), "end_date": end.isoformat()},
        )
    return start, end


def _coerce_date(value: date | str, field: str) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError as exc:
        raise PreconditionError(
            f"Invalid {field}: {value!r}. Use YYYY-MM-DD."
        ) from exc


def _parse_batch(
    model: type[T],
    raw: Any,
    provider: ProviderId,
    tag_provider: bool = True,
) -> list[T]:
    """Validate a backend payload, dropping individual malformed records."""
    if not isinstance(raw, list):
        raise MalformedDataError(
            f"Expected a list of {model.__name__} from {provider.value}, got {type(raw).__name__}"
        )

    records: list[T] = []
    dropped = 0
    for item in raw:
        if tag_provider and isinstance(item, dict):
            item = {**item, "provider": provider.value}
        try:
            records.append(parse_record(model, item))
        except MalformedDataError as exc:
            dropped += 1
            logger.warning(
                "Dropping malformed %s from %s: %s %s",
                model.__name__,
                provider.value,
                exc.message,
                exc.details.get("errors", ""),
            )

    if dropped:
        logger.warning(
            "Dropped %d of %d %s records from %s",
            dropped,
            len(raw),
            model.__name__,
            provider.value,
        )
    return records
