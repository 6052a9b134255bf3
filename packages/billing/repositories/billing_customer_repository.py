"""
Repository for the user -> Stripe customer mapping.
"""

from typing import Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from common.repositories.base import BaseRepository
from common.core.telemetry import trace_span
from packages.billing.models.database.billing_customer import BillingCustomerEntity
from packages.billing.models.domain.billing_customer import BillingCustomer


class BillingCustomerRepository(BaseRepository[BillingCustomerEntity, BillingCustomer]):
    """Repository for billing customers."""

    def __init__(self, db_session: AsyncSession):
        super().__init__(BillingCustomerEntity, BillingCustomer, db_session)

    @trace_span
    async def get_by_user_id(self, user_id: str) -> Optional[BillingCustomer]:
        result = await self.db_session.execute(
            select(BillingCustomerEntity).where(BillingCustomerEntity.user_id == user_id)
        )
        entity = result.scalar_one_or_none()
        return self._entity_to_domain(entity) if entity else None

    @trace_span
    async def get_by_stripe_customer_id(
        self, stripe_customer_id: str
    ) -> Optional[BillingCustomer]:
        result = await self.db_session.execute(
            select(BillingCustomerEntity).where(
                BillingCustomerEntity.stripe_customer_id == stripe_customer_id
            )
        )
        entity = result.scalar_one_or_none()
        return self._entity_to_domain(entity) if entity else None
