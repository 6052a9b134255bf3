"""
Service for quota enforcement and checking.

Quota checks are advisory: two concurrent requests can both be allowed and
overshoot a limit by one. The service that owns a resource re-checks the
limit when it actually persists it.
"""

from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession

from common.core.exceptions import ValidationError
from common.core.telemetry import trace_span, get_logger
from packages.billing.models.domain.enums import ResourceKind, SubscriptionTier
from packages.billing.models.domain.usage import (
    QuotaDecision,
    QuotaSnapshot,
    ResourceQuota,
)
from packages.billing.providers.usage.factory import get_usage_provider
from packages.billing.providers.usage.interface import UsageProviderInterface
from packages.billing.repositories.subscription_repository import SubscriptionRepository
from packages.billing.services.tier_catalog import TierCatalog, get_tier_catalog

logger = get_logger(__name__)


class QuotaService:
    """Service for quota enforcement."""

    def __init__(
        self,
        db_session: AsyncSession,
        usage: Optional[UsageProviderInterface] = None,
        catalog: Optional[TierCatalog] = None,
    ):
        self.subscription_repo = SubscriptionRepository(db_session)
        self.usage = usage or get_usage_provider()
        self.catalog = catalog or get_tier_catalog()

    def parse_resource_kind(self, raw: str) -> ResourceKind:
        try:
            return ResourceKind(raw)
        except ValueError:
            raise ValidationError(
                f"Unknown resource kind '{raw}'. "
                f"Expected one of: {', '.join(k.value for k in ResourceKind)}"
            )

    @trace_span
    async def get_effective_tier(self, user_id: str) -> SubscriptionTier:
        """Tier whose quotas apply right now (FREE when never subscribed)."""
        subscription = await self.subscription_repo.get_by_user_id(user_id)
        if not subscription:
            return SubscriptionTier.FREE
        return subscription.effective_tier()

    @trace_span
    async def can_create(
        self,
        user_id: str,
        resource_kind: ResourceKind,
        bearer_token: Optional[str] = None,
    ) -> QuotaDecision:
        """
        Decide whether the user may create one more unit of a resource.

        Raises:
            UsageUnavailableError: usage counters could not be fetched
        """
        tier_id = await self.get_effective_tier(user_id)
        tier = self.catalog.get(tier_id)
        counters = await self.usage.get_counters(user_id, bearer_token=bearer_token)

        used = counters.used(resource_kind)
        limit = tier.quotas.limit_for(resource_kind)

        if tier.privileged or limit is None or used < limit:
            return QuotaDecision.allow(resource_kind, tier_id, used, limit)

        logger.info(
            f"User {user_id} reached {resource_kind.value} quota ({used}/{limit})",
            extra={
                "user_id": user_id,
                "resource_kind": resource_kind.value,
                "tier": tier_id.value,
                "used": used,
                "limit": limit,
            },
        )
        return QuotaDecision.deny(resource_kind, tier_id, used, limit)

    @trace_span
    async def get_snapshot(
        self, user_id: str, bearer_token: Optional[str] = None
    ) -> QuotaSnapshot:
        """Usage against every gated resource for the effective tier."""
        tier_id = await self.get_effective_tier(user_id)
        tier = self.catalog.get(tier_id)
        counters = await self.usage.get_counters(user_id, bearer_token=bearer_token)

        resources = {}
        for kind in ResourceKind:
            limit = tier.quotas.limit_for(kind)
            unlimited = tier.privileged or limit is None
            resources[kind] = ResourceQuota(
                used=counters.used(kind),
                limit=None if unlimited else limit,
                unlimited=unlimited,
            )

        return QuotaSnapshot(tier=tier_id, resources=resources)
