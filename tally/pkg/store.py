"""
Persistence store for synced provider data and connection credentials.

Every ``replace_*`` call is a full delete-then-insert for one
``(user_id, provider)`` pair and commits on its own, so a failure while
writing one provider never rolls back another provider's data.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Sequence

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from pkg.database import CloudBudgetRow, CloudConnectionRow, CloudCostRow, CloudResourceRow
from pkg.errors import ConnectionNotFoundError
from pkg.models import (
    BudgetRecord,
    CloudCredentials,
    CostRecord,
    ProviderId,
    ResourceRecord,
)

logger = logging.getLogger(__name__)


class PersistenceStore:
    """Read/write boundary over the SQLAlchemy session."""

    def __init__(self, session: Session) -> None:
        self._db = session

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def replace_costs(
        self,
        user_id: str,
        provider: ProviderId,
        costs: Sequence[CostRecord],
    ) -> int:
        """Replace the stored cost records of one provider."""
        provider = ProviderId(provider)
        rows = [
            CloudCostRow(
                user_id=user_id,
                provider=provider.value,
                date=cost.date,
                amount=cost.amount,
                currency=cost.currency,
                service=cost.service or "Unknown",
                region=cost.region,
            )
            for cost in costs
        ]
        return self._replace(CloudCostRow, user_id, provider, rows)

    def replace_resources(
        self,
        user_id: str,
        provider: ProviderId,
        resources: Sequence[ResourceRecord],
    ) -> int:
        """Replace the stored resources of one provider."""
        provider = ProviderId(provider)
        rows = [
            CloudResourceRow(
                user_id=user_id,
                provider=provider.value,
                resource_id=resource.id,
                name=resource.name,
                type=resource.type,
                region=resource.region,
                cost=resource.cost,
                utilization=resource.utilization,
                status=resource.status,
                tags=dict(resource.tags),
            )
            for resource in resources
        ]
        return self._replace(CloudResourceRow, user_id, provider, rows)

    def replace_budgets(
        self,
        user_id: str,
        provider: ProviderId,
        budgets: Sequence[BudgetRecord],
    ) -> int:
        """Replace the stored budgets of one provider."""
        provider = ProviderId(provider)
        rows = [
            CloudBudgetRow(
                user_id=user_id,
                provider=provider.value,
                budget_id=budget.id,
                name=budget.name,
                amount=budget.amount,
                spent=budget.spent,
                period=budget.period,
            )
            for budget in budgets
        ]
        return self._replace(CloudBudgetRow, user_id, provider, rows)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_costs(self, user_id: str) -> dict[ProviderId, list[CostRecord]]:
        """Stored cost records grouped by provider, newest first."""
        rows = self._db.scalars(
            select(CloudCostRow)
            .where(CloudCostRow.user_id == user_id)
            .order_by(CloudCostRow.date.desc())
        ).all()

        grouped: dict[ProviderId, list[CostRecord]] = defaultdict(list)
        for row in rows:
            grouped[ProviderId(row.provider)].append(CostRecord.model_validate(row.to_dict()))
        return dict(grouped)

    def list_resources(self, user_id: str) -> list[ResourceRecord]:
        rows = self._db.scalars(
            select(CloudResourceRow)
            .where(CloudResourceRow.user_id == user_id)
            .order_by(CloudResourceRow.created_at.desc(), CloudResourceRow.name)
        ).all()
        return [ResourceRecord.model_validate(row.to_dict()) for row in rows]

    def list_budgets(self, user_id: str) -> list[BudgetRecord]:
        rows = self._db.scalars(
            select(CloudBudgetRow)
            .where(CloudBudgetRow.user_id == user_id)
            .order_by(CloudBudgetRow.name)
        ).all()
        return [BudgetRecord.model_validate(row.to_dict()) for row in rows]

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    def save_connection(
        self,
        user_id: str,
        provider: ProviderId,
        credentials: CloudCredentials,
        is_active: bool = True,
    ) -> CloudConnectionRow:
        """Upsert the credentials of one (user, provider) pair."""
        provider = ProviderId(provider)
        row = self._connection_row(user_id, provider)
        if row is None:
            row = CloudConnectionRow(user_id=user_id, provider=provider.value)
            self._db.add(row)

        row.credentials = credentials.model_dump(exclude_none=True)
        row.is_active = is_active
        self._commit()
        logger.info("Saved %s connection for user %s", provider.value, user_id)
        return row

    def list_connections(self, user_id: str) -> dict[ProviderId, CloudCredentials]:
        """Active connections of a user, keyed by provider."""
        rows = self._db.scalars(
            select(CloudConnectionRow)
            .where(
                CloudConnectionRow.user_id == user_id,
                CloudConnectionRow.is_active.is_(True),
            )
            .order_by(CloudConnectionRow.provider)
        ).all()
        return {
            ProviderId(row.provider): CloudCredentials.model_validate(row.credentials or {})
            for row in rows
        }

    def connection_status(self, user_id: str) -> list[dict[str, Any]]:
        """Active connections without their credentials."""
        rows = self._db.scalars(
            select(CloudConnectionRow)
            .where(
                CloudConnectionRow.user_id == user_id,
                CloudConnectionRow.is_active.is_(True),
            )
            .order_by(CloudConnectionRow.provider)
        ).all()
        return [row.to_dict() for row in rows]

    def get_connection(self, user_id: str, provider: ProviderId) -> CloudCredentials:
        """Credentials of one active connection.

        Raises
        ------
        ConnectionNotFoundError
            If the user has no active connection for *provider*.
        """
        row = self._connection_row(user_id, ProviderId(provider))
        if row is None or not row.is_active:
            raise ConnectionNotFoundError(
                f"No active {ProviderId(provider).value} connection for user {user_id}"
            )
        return CloudCredentials.model_validate(row.credentials or {})

    def remove_connection(self, user_id: str, provider: ProviderId) -> None:
        """Deactivate a connection. Absent connections are ignored."""
        row = self._connection_row(user_id, ProviderId(provider))
        if row is None:
            return
        row.is_active = False
        self._commit()
        logger.info("Deactivated %s connection for user %s", row.provider, user_id)

    def mark_synced(self, user_id: str, provider: ProviderId) -> None:
        row = self._connection_row(user_id, ProviderId(provider))
        if row is None:
            return
        row.last_sync_at = datetime.now(timezone.utc).replace(tzinfo=None)
        self._commit()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _connection_row(self, user_id: str, provider: ProviderId) -> CloudConnectionRow | None:
        return self._db.scalars(
            select(CloudConnectionRow).where(
                CloudConnectionRow.user_id == user_id,
                CloudConnectionRow.provider == provider.value,
            )
        ).first()

    def _commit(self) -> None:
        try:
            self._db.commit()
        except Exception:
            self._db.rollback()
            raise

    def _replace(self, table: type, user_id: str, provider: ProviderId, rows: list) -> int:
        try:
            self._db.execute(
                delete(table).where(table.user_id == user_id, table.provider == provider.value)
            )
            if rows:
                self._db.add_all(rows)
            self._db.commit()
        except Exception:
            self._db.rollback()
            raise

        logger.info(
            "Stored %d %s rows for user %s / %s",
            len(rows),
            table.__tablename__,
            user_id,
            provider.value,
        )
        return len(rows)
