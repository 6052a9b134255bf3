"""Domain models for billing plans."""

from typing import Optional
from pydantic import BaseModel


class PlanLimits(BaseModel):
    """Quota limits for a plan. None means unlimited."""

    max_projects: Optional[int]
    max_uploads_per_period: Optional[int]
    max_seats: int


class PlanInfo(BaseModel):
    """Plan information shown on the pricing page."""

    tier: str
    name: str
    description: str
    price_cents: int
    price_formatted: str
    currency: str
    billing_period: str
    limits: PlanLimits
    features: list[str]


class PlansResponse(BaseModel):
    """Response model for plans endpoint."""

    catalog_version: str
    plans: list[PlanInfo]
