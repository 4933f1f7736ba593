"""
Database models and session management for Tally.

Defines the SQLAlchemy ORM tables for persisted cost data, resources,
budgets and provider connections, plus engine/session helpers used by
the API layer.
"""

from __future__ import annotations

import datetime as dt
import logging
import uuid
from typing import Any, Iterator, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Float,
    String,
    UniqueConstraint,
    create_engine,
    func,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def _new_id() -> str:
    return str(uuid.uuid4())


class CloudCostRow(Base):
    """One persisted cost bucket."""

    __tablename__ = "cloud_cost_data"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(128), index=True)
    provider: Mapped[str] = mapped_column(String(16), index=True)
    date: Mapped[dt.date] = mapped_column(Date)
    amount: Mapped[float] = mapped_column(Float)
    currency: Mapped[str] = mapped_column(String(8), default="USD")
    service: Mapped[str] = mapped_column(String(255), default="Unknown")
    region: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, server_default=func.now())

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat() if self.date else None,
            "amount": self.amount,
            "currency": self.currency,
            "service": self.service,
            "region": self.region,
        }


class CloudResourceRow(Base):
    """One persisted inventory item."""

    __tablename__ = "cloud_resources"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(128), index=True)
    provider: Mapped[str] = mapped_column(String(16), index=True)
    resource_id: Mapped[str] = mapped_column(String(512))
    name: Mapped[str] = mapped_column(String(255))
    type: Mapped[str] = mapped_column(String(255))
    region: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    cost: Mapped[float] = mapped_column(Float, default=0.0)
    utilization: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    status: Mapped[str] = mapped_column(String(16), default="running")
    tags: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, server_default=func.now())

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.resource_id,
            "name": self.name,
            "type": self.type,
            "provider": self.provider,
            "region": self.region or "",
            "cost": self.cost or 0.0,
            "utilization": self.utilization,
            "status": self.status,
            "tags": self.tags or {},
        }


class CloudBudgetRow(Base):
    """One persisted budget."""

    __tablename__ = "cloud_budgets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(128), index=True)
    provider: Mapped[str] = mapped_column(String(16), index=True)
    budget_id: Mapped[str] = mapped_column(String(255))
    name: Mapped[str] = mapped_column(String(255))
    amount: Mapped[float] = mapped_column(Float)
    spent: Mapped[float] = mapped_column(Float, default=0.0)
    period: Mapped[str] = mapped_column(String(16), default="monthly")
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, server_default=func.now())

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.budget_id,
            "name": self.name,
            "amount": self.amount,
            "spent": self.spent,
            "period": self.period,
            "provider": self.provider,
        }


class CloudConnectionRow(Base):
    """Stored credentials for one (user, provider) pair."""

    __tablename__ = "cloud_connections"
    __table_args__ = (UniqueConstraint("user_id", "provider", name="uq_connection_user_provider"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(128), index=True)
    provider: Mapped[str] = mapped_column(String(16))
    credentials: Mapped[dict] = mapped_column(JSON, default=dict)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    last_sync_at: Mapped[Optional[dt.datetime]] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "is_active": self.is_active,
            "last_sync_at": self.last_sync_at.isoformat() if self.last_sync_at else None,
        }


# ---------------------------------------------------------------------------
# Engine / session helpers
# ---------------------------------------------------------------------------
_engine: Engine | None = None
_SessionLocal: sessionmaker | None = None


def init_engine(url: str) -> Engine:
    """Create the process-wide engine and session factory."""
    global _engine, _SessionLocal
    kwargs: dict[str, Any] = {"pool_pre_ping": True}
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url.rstrip("/") == "sqlite:":
            kwargs["poolclass"] = StaticPool
    _engine = create_engine(url, **kwargs)
    _SessionLocal = sessionmaker(bind=_engine, expire_on_commit=False)
    logger.info("Database engine initialized (%s)", _engine.url.get_backend_name())
    return _engine


def create_tables() -> None:
    """Create all tables on the initialized engine."""
    if _engine is None:
        raise RuntimeError("Database engine not initialized; call init_engine() first")
    Base.metadata.create_all(_engine)


def get_session() -> Iterator[Session]:
    """FastAPI dependency yielding a session bound to the global engine."""
    if _SessionLocal is None:
        raise RuntimeError("Database engine not initialized; call init_engine() first")
    session = _SessionLocal()
    try:
        yield session
    finally:
        session.close()
