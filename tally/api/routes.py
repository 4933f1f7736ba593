"""
API route definitions for Tally.

All endpoints live under ``/api/v1/users/{user_id}/`` and are grouped into:

* **Connections** -- store, list, remove and test provider credentials.
* **Sync** -- pull fresh data from every connected provider.
* **Costs** -- raw cost records and breakdowns.
* **Inventory** -- correlated resources and budgets.
* **Recommendations** -- ranked optimizations and their summary.
* **Metrics** -- headline numbers for the dashboard.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel
from sqlalchemy.orm import Session

from internal.correlation.engine import CorrelationEngine
from internal.ingestion.aggregator import ProviderAggregator
from internal.ingestion.sync import CloudSyncService, build_registry
from internal.optimizer.engine import RecommendationEngine
from pkg.cloud.factory import BackendFactory, build_backends
from pkg.config import Settings, get_settings
from pkg.cost.calculator import (
    aggregate_costs,
    budget_utilization,
    calculate_cloud_metrics,
    filter_resources,
    flatten_costs,
    summarize_recommendations,
)
from pkg.database import get_session
from pkg.errors import TallyError
from pkg.models import (
    CloudCredentials,
    CostRecord,
    ProviderId,
    Recommendation,
    ResourceRecord,
)
from pkg.store import PersistenceStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Shared singletons -- wired at startup via ``configure_routes``
# ---------------------------------------------------------------------------
_backend_factory: BackendFactory = build_backends
_correlation: CorrelationEngine = CorrelationEngine()
_optimizer: RecommendationEngine = RecommendationEngine()
_settings: Settings | None = None


def configure_routes(
    backend_factory: BackendFactory | None = None,
    correlation: CorrelationEngine | None = None,
    optimizer: RecommendationEngine | None = None,
    settings: Settings | None = None,
) -> None:
    """Inject runtime dependencies into the route module."""
    global _backend_factory, _correlation, _optimizer, _settings
    _backend_factory = backend_factory or build_backends
    _correlation = correlation or CorrelationEngine()
    _optimizer = optimizer or RecommendationEngine()
    _settings = settings


# ---------------------------------------------------------------------------
# Pydantic request / response schemas
# ---------------------------------------------------------------------------


class ConnectionResponse(BaseModel):
    provider: ProviderId
    is_active: bool
    last_sync_at: Optional[str] = None


class ConnectionTestResponse(BaseModel):
    results: dict[str, bool]


class SyncRequest(BaseModel):
    start_date: Optional[str] = None
    end_date: Optional[str] = None


class SyncResponse(BaseModel):
    providers: list[str]
    failed_providers: list[str]
    date_range: dict[str, str]
    cost_records: int
    resources: int
    budgets: int


class CostsResponse(BaseModel):
    costs_by_provider: dict[str, list[CostRecord]]
    total_cost: float
    record_count: int


class CostBreakdownResponse(BaseModel):
    dimension: str
    breakdown: dict[str, float]
    total_cost: float


class BudgetResponse(BaseModel):
    id: str
    name: str
    provider: str
    period: str
    amount: float
    spent: float
    remaining: float
    utilization: float
    exceeded: bool


class RecommendationSummaryResponse(BaseModel):
    count: int
    total_potential_savings: float
    resources_affected: int
    quick_wins: int
    potential_reduction: float


class MetricsResponse(BaseModel):
    total_spend: float
    total_budget: float
    total_budget_spent: float
    budget_utilization: float
    total_resources: int
    total_resources_cost: float


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------
router = APIRouter(prefix="/api/v1/users/{user_id}", tags=["tally"])


# ===== CONNECTIONS =========================================================


@router.put("/connections/{provider}", response_model=ConnectionResponse)
async def save_connection(
    user_id: str,
    provider: ProviderId,
    credentials: CloudCredentials,
    db: Session = Depends(get_session),
) -> ConnectionResponse:
    """Store (or replace) the credentials for one provider."""
    row = _store(db).save_connection(user_id, provider, credentials)
    return ConnectionResponse(**row.to_dict())


@router.get("/connections", response_model=list[ConnectionResponse])
async def list_connections(
    user_id: str,
    db: Session = Depends(get_session),
) -> list[ConnectionResponse]:
    """List active connections. Credentials are never returned."""
    return [ConnectionResponse(**c) for c in _store(db).connection_status(user_id)]


@router.delete("/connections/{provider}", status_code=204)
async def remove_connection(
    user_id: str,
    provider: ProviderId,
    db: Session = Depends(get_session),
) -> Response:
    _store(db).remove_connection(user_id, provider)
    return Response(status_code=204)


@router.post("/connections/test", response_model=ConnectionTestResponse)
async def test_connections(
    user_id: str,
    db: Session = Depends(get_session),
) -> ConnectionTestResponse:
    """Check connectivity of every active connection."""
    results = await _aggregator(user_id, db).test_connections()
    return ConnectionTestResponse(results={p.value: ok for p, ok in results.items()})


# ===== SYNC ================================================================


@router.post("/sync", response_model=SyncResponse)
async def sync(
    user_id: str,
    body: SyncRequest | None = None,
    db: Session = Depends(get_session),
) -> SyncResponse:
    """Pull fresh costs, resources and budgets from every connected provider."""
    body = body or SyncRequest()
    settings = _current_settings()
    end = _parse_date_param(body.end_date, default=date.today())
    start = _parse_date_param(
        body.start_date, default=end - timedelta(days=settings.default_lookback_days)
    )

    aggregator = _aggregator(user_id, db)
    service = CloudSyncService(_store(db), aggregator, _correlation)
    try:
        result = await service.sync(user_id, start, end)
    except TallyError as exc:
        raise _http_error(exc) from exc

    snapshot = result.snapshot
    return SyncResponse(
        providers=aggregator.provider_names,
        failed_providers=[p.value for p in result.failed_providers],
        date_range={"start": start.isoformat(), "end": end.isoformat()},
        cost_records=sum(len(c) for c in snapshot.costs_by_provider.values()),
        resources=len(snapshot.resources),
        budgets=len(snapshot.budgets),
    )


# ===== COSTS ===============================================================


@router.get("/costs", response_model=CostsResponse)
async def get_costs(
    user_id: str,
    provider: Optional[ProviderId] = Query(None, description="Filter by provider"),
    db: Session = Depends(get_session),
) -> CostsResponse:
    """Return stored cost records grouped by provider, newest first."""
    costs = _store(db).list_costs(user_id)
    if provider is not None:
        costs = {provider: costs.get(provider, [])}

    records = [c for records in costs.values() for c in records]
    totals = aggregate_costs(flatten_costs(costs), group_by="provider")
    return CostsResponse(
        costs_by_provider={p.value: records for p, records in costs.items()},
        total_cost=round(sum(totals.values()), 2),
        record_count=len(records),
    )


@router.get("/costs/breakdown", response_model=CostBreakdownResponse)
async def get_cost_breakdown(
    user_id: str,
    dimension: str = Query(
        "service",
        description="Dimension to break down by (service, region, date, provider)",
    ),
    provider: Optional[ProviderId] = Query(None),
    db: Session = Depends(get_session),
) -> CostBreakdownResponse:
    """Return a cost breakdown by a single dimension."""
    costs = _store(db).list_costs(user_id)
    if provider is not None:
        costs = {provider: costs.get(provider, [])}

    try:
        breakdown = aggregate_costs(flatten_costs(costs), group_by=dimension)
    except TallyError as exc:
        raise _http_error(exc) from exc

    return CostBreakdownResponse(
        dimension=dimension,
        breakdown=breakdown,
        total_cost=round(sum(breakdown.values()), 2),
    )


# ===== INVENTORY ===========================================================


@router.get("/resources", response_model=list[ResourceRecord])
async def list_resources(
    user_id: str,
    search: Optional[str] = Query(None, description="Match name or type"),
    resource_type: Optional[str] = Query(None, alias="type", description="Exact resource type"),
    provider: Optional[str] = Query(None),
    region: Optional[str] = Query(None),
    db: Session = Depends(get_session),
) -> list[ResourceRecord]:
    """Return stored resources with correlated costs."""
    snapshot = _sync_service(db).load_snapshot(user_id)
    return filter_resources(snapshot.resources, search, resource_type, provider, region)


@router.get("/budgets", response_model=list[BudgetResponse])
async def list_budgets(
    user_id: str,
    db: Session = Depends(get_session),
) -> list[BudgetResponse]:
    return [BudgetResponse(**budget_utilization(b)) for b in _store(db).list_budgets(user_id)]


# ===== RECOMMENDATIONS =====================================================


@router.get("/recommendations", response_model=list[Recommendation])
async def list_recommendations(
    user_id: str,
    category: Optional[str] = Query(None),
    provider: Optional[ProviderId] = Query(None),
    db: Session = Depends(get_session),
) -> list[Recommendation]:
    """Generate ranked recommendations from the stored snapshot."""
    recs = _recommendations(user_id, db)
    if category:
        recs = [r for r in recs if r.category == category]
    if provider is not None:
        recs = [r for r in recs if r.provider == provider]
    return recs


@router.get("/recommendations/summary", response_model=RecommendationSummaryResponse)
async def get_recommendation_summary(
    user_id: str,
    db: Session = Depends(get_session),
) -> RecommendationSummaryResponse:
    store = _store(db)
    recs = _recommendations(user_id, db)
    return RecommendationSummaryResponse(**summarize_recommendations(recs, store.list_costs(user_id)))


# ===== METRICS =============================================================


@router.get("/metrics", response_model=MetricsResponse)
async def get_metrics(
    user_id: str,
    db: Session = Depends(get_session),
) -> MetricsResponse:
    """Headline spend, budget and inventory numbers."""
    snapshot = _sync_service(db).load_snapshot(user_id)
    return MetricsResponse(
        **calculate_cloud_metrics(snapshot.costs_by_provider, snapshot.resources, snapshot.budgets)
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _current_settings() -> Settings:
    return _settings or get_settings()


def _store(db: Session) -> PersistenceStore:
    return PersistenceStore(db)


def _aggregator(user_id: str, db: Session) -> ProviderAggregator:
    """Per-request aggregator over the user's active connections."""
    settings = _current_settings()
    registry = build_registry(_store(db).list_connections(user_id), settings, _backend_factory)
    return ProviderAggregator(registry, timeout_seconds=settings.provider_timeout_seconds)


def _sync_service(db: Session) -> CloudSyncService:
    return CloudSyncService(_store(db), ProviderAggregator(), _correlation)


def _recommendations(user_id: str, db: Session) -> list[Recommendation]:
    store = _store(db)
    snapshot = _sync_service(db).load_snapshot(user_id)
    providers = list(store.list_connections(user_id).keys())
    return _optimizer.generate_recommendations(
        snapshot.resources, snapshot.costs_by_provider, providers
    )


def _parse_date_param(value: str | None, default: date) -> date:
    """Parse an optional date string, falling back to *default*."""
    if value:
        try:
            return date.fromisoformat(value)
        except ValueError as exc:
            raise HTTPException(
                status_code=400,
                detail=f"Invalid date format: {value}. Use YYYY-MM-DD.",
            ) from exc
    return default


def _http_error(exc: TallyError) -> HTTPException:
    detail: dict[str, Any] = {"code": exc.code, "message": exc.message}
    if exc.details:
        detail["details"] = exc.details
    return HTTPException(status_code=exc.status_code, detail=detail)
