"""
Repository for subscription management.
"""

from datetime import datetime
from typing import List, Optional
from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from common.repositories.base import BaseRepository
from common.core.telemetry import trace_span
from packages.billing.models.database.subscription import SubscriptionEntity
from packages.billing.models.domain.subscription import Subscription
from packages.billing.models.domain.enums import SubscriptionStatus


class SubscriptionRepository(BaseRepository[SubscriptionEntity, Subscription]):
    """Repository for user subscriptions. Bound to the caller's session."""

    def __init__(self, db_session: AsyncSession):
        super().__init__(SubscriptionEntity, Subscription, db_session)

    @trace_span
    async def get_by_user_id(self, user_id: str) -> Optional[Subscription]:
        """Get the subscription row for a user, if they ever subscribed."""
        result = await self.db_session.execute(
            select(SubscriptionEntity).where(SubscriptionEntity.user_id == user_id)
        )
        db_subscription = result.scalar_one_or_none()
        return self._entity_to_domain(db_subscription) if db_subscription else None

    @trace_span
    async def get_by_stripe_subscription_id(
        self, stripe_subscription_id: str
    ) -> Optional[Subscription]:
        """Get a subscription by its Stripe id."""
        result = await self.db_session.execute(
            select(SubscriptionEntity).where(
                SubscriptionEntity.stripe_subscription_id == stripe_subscription_id
            )
        )
        db_subscription = result.scalar_one_or_none()
        return self._entity_to_domain(db_subscription) if db_subscription else None

    @trace_span
    async def get_due_for_sync(
        self, synced_before: datetime, now: datetime, limit: int = 100
    ) -> List[Subscription]:
        """
        Subscriptions the processor may have moved without telling us.

        Live subscriptions (active/past_due/unpaid) linked to Stripe whose
        last sync is older than ``synced_before`` or whose period already
        ended.
        """
        result = await self.db_session.execute(
            select(SubscriptionEntity)
            .where(
                SubscriptionEntity.stripe_subscription_id.is_not(None),
                SubscriptionEntity.status.in_(
                    [
                        SubscriptionStatus.ACTIVE.value,
                        SubscriptionStatus.PAST_DUE.value,
                        SubscriptionStatus.UNPAID.value,
                    ]
                ),
                or_(
                    SubscriptionEntity.last_synced_at.is_(None),
                    SubscriptionEntity.last_synced_at < synced_before,
                    SubscriptionEntity.current_period_end < now,
                ),
            )
            .order_by(SubscriptionEntity.last_synced_at.asc())
            .limit(limit)
        )
        return self._entities_to_domain(result.scalars().all())

    @trace_span
    async def get_by_default_payment_method(
        self, payment_method_id: str
    ) -> Optional[Subscription]:
        result = await self.db_session.execute(
            select(SubscriptionEntity).where(
                SubscriptionEntity.default_payment_method_id == payment_method_id
            )
        )
        db_subscription = result.scalar_one_or_none()
        return self._entity_to_domain(db_subscription) if db_subscription else None
