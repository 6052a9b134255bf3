"""
Domain models for usage counters and quota decisions.
"""

from typing import Dict, Optional
from pydantic import BaseModel

from packages.billing.models.domain.enums import ResourceKind, SubscriptionTier


class UsageCounters(BaseModel):
    """
    Current resource counts for a user.

    Owned by the projects, uploads and team services; read-only here.
    """

    current_projects: int = 0
    current_uploads_this_period: int = 0
    current_seats: int = 1

    def used(self, resource_kind: ResourceKind) -> int:
        usage_map = {
            ResourceKind.PROJECTS: self.current_projects,
            ResourceKind.UPLOADS: self.current_uploads_this_period,
            ResourceKind.SEATS: self.current_seats,
        }
        return usage_map[resource_kind]


class QuotaDecision(BaseModel):
    """
    Result of a quota check: Allowed, or Denied with the numbers needed to
    render an upgrade prompt.
    """

    allowed: bool
    resource_kind: ResourceKind
    tier: SubscriptionTier
    used: int
    limit: Optional[int] = None  # None = unbounded
    reason: Optional[str] = None

    @classmethod
    def allow(
        cls,
        resource_kind: ResourceKind,
        tier: SubscriptionTier,
        used: int,
        limit: Optional[int],
    ) -> "QuotaDecision":
        return cls(
            allowed=True, resource_kind=resource_kind, tier=tier, used=used, limit=limit
        )

    @classmethod
    def deny(
        cls,
        resource_kind: ResourceKind,
        tier: SubscriptionTier,
        used: int,
        limit: int,
    ) -> "QuotaDecision":
        return cls(
            allowed=False,
            resource_kind=resource_kind,
            tier=tier,
            used=used,
            limit=limit,
            reason=(
                f"{resource_kind.value.capitalize()} limit reached ({used}/{limit}) "
                f"on the {tier.value} plan. Upgrade to continue."
            ),
        )


class ResourceQuota(BaseModel):
    """Usage against a single ceiling."""

    used: int
    limit: Optional[int] = None
    unlimited: bool = False


class QuotaSnapshot(BaseModel):
    """Per-resource usage for every gated resource."""

    tier: SubscriptionTier
    resources: Dict[ResourceKind, ResourceQuota]
