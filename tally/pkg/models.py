"""
Domain models shared by the aggregator, the correlation engine and the
recommendation engine.

Records coming from provider backends are validated here; anything that
fails validation is reported as :class:`MalformedDataError` so callers can
drop the single offending record instead of the whole batch.
"""

from __future__ import annotations

from datetime import date
from enum import Enum
from typing import Any, Literal, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from pkg.errors import MalformedDataError


class ProviderId(str, Enum):
    """Closed set of supported provider integrations."""

    AWS = "aws"
    AZURE = "azure"
    GCP = "gcp"


ResourceStatus = Literal["running", "stopped", "terminated"]
BudgetPeriod = Literal["monthly", "quarterly", "yearly"]
Rating = Literal["Low", "Medium", "High"]
RecommendationCategory = Literal["compute", "storage", "network", "commitment"]


class CostRecord(BaseModel):
    """One day x service x region spend bucket for one provider."""

    model_config = ConfigDict(frozen=True)

    date: date
    amount: float = Field(ge=0)
    currency: str = "USD"
    service: str = "Unknown"
    region: Optional[str] = None


class ResourceRecord(BaseModel):
    """One inventory item. ``cost`` is filled in by the correlation engine."""

    id: str
    name: str
    type: str
    provider: ProviderId
    region: str = ""
    cost: float = Field(default=0.0, ge=0)
    utilization: Optional[float] = Field(default=None, ge=0, le=100)
    status: ResourceStatus = "running"
    tags: dict[str, str] = Field(default_factory=dict)


class BudgetRecord(BaseModel):
    """Allocated-vs-spent ceiling for one provider and period."""

    id: str
    name: str
    amount: float = Field(ge=0)
    spent: float = Field(default=0.0, ge=0)
    period: BudgetPeriod = "monthly"
    provider: ProviderId


class Recommendation(BaseModel):
    """A single optimization opportunity produced by one generation run."""

    id: int
    title: str
    description: str
    potential_savings: float = Field(ge=0)
    effort: Rating
    impact: Rating
    category: RecommendationCategory
    resources: int = Field(ge=0)
    provider: ProviderId


class CloudCredentials(BaseModel):
    """Provider-specific connection credentials.

    The core never inspects these beyond handing them to a backend, so
    unknown keys are preserved.
    """

    model_config = ConfigDict(extra="allow")

    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    region: Optional[str] = None
    subscription_id: Optional[str] = None
    tenant_id: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    project_id: Optional[str] = None
    service_account_key: Optional[str] = None
    billing_account_id: Optional[str] = None


class AggregateSnapshot(BaseModel):
    """Merged view handed to the presentation layer."""

    costs_by_provider: dict[ProviderId, list[CostRecord]] = Field(default_factory=dict)
    resources: list[ResourceRecord] = Field(default_factory=list)
    budgets: list[BudgetRecord] = Field(default_factory=list)


_ModelT = TypeVar("_ModelT", bound=BaseModel)


def parse_record(model: type[_ModelT], raw: Any) -> _ModelT:
    """Validate *raw* into *model*, raising :class:`MalformedDataError`."""
    if isinstance(raw, model):
        return raw
    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        raise MalformedDataError(
            f"Invalid {model.__name__}: {exc.error_count()} validation error(s)",
            details={"errors": exc.errors(include_url=False)},
        ) from exc
