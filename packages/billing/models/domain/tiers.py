"""
Domain models for tier catalog entries.
"""

from typing import FrozenSet, Optional
from pydantic import BaseModel, ConfigDict

from packages.billing.models.domain.enums import (
    Capability,
    ResourceKind,
    SubscriptionTier,
)


class TierQuotas(BaseModel):
    """Per-resource ceilings. None means unbounded."""

    model_config = ConfigDict(frozen=True)

    max_projects: Optional[int]
    max_uploads_per_period: Optional[int]
    max_seats: int

    def limit_for(self, resource_kind: ResourceKind) -> Optional[int]:
        """Get the ceiling for a resource kind (None = unbounded)."""
        limits = {
            ResourceKind.PROJECTS: self.max_projects,
            ResourceKind.UPLOADS: self.max_uploads_per_period,
            ResourceKind.SEATS: self.max_seats,
        }
        return limits[resource_kind]


class Tier(BaseModel):
    """Immutable catalog entry."""

    model_config = ConfigDict(frozen=True)

    id: SubscriptionTier
    name: str
    description: str
    monthly_price_cents: int
    currency: str = "eur"
    quotas: TierQuotas
    capabilities: FrozenSet[Capability] = frozenset()

    # Privileged tiers bypass every quota check
    privileged: bool = False
    # Sold through the processor (has a price id)
    purchasable: bool = True
    # Soft-retired: still resolvable for stored subscriptions, no longer sold
    retired: bool = False

    @property
    def is_paid(self) -> bool:
        return self.monthly_price_cents > 0

    def has_capability(self, capability: Capability) -> bool:
        return self.privileged or capability in self.capabilities
