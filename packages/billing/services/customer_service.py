"""
Service for the user -> processor customer mapping.
"""

import hashlib
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession

from common.core.telemetry import trace_span, get_logger
from packages.billing.models.domain.billing_customer import (
    BillingCustomer,
    BillingCustomerCreateModel,
    BillingCustomerUpdateModel,
)
from packages.billing.providers.payment.factory import get_payment_provider
from packages.billing.providers.payment.interface import PaymentProviderInterface
from packages.billing.repositories.billing_customer_repository import (
    BillingCustomerRepository,
)

logger = get_logger(__name__)


class CustomerService:
    """Creates processor customers on demand and remembers them."""

    def __init__(
        self,
        db_session: AsyncSession,
        payment: Optional[PaymentProviderInterface] = None,
    ):
        self.customer_repo = BillingCustomerRepository(db_session)
        self.payment = payment or get_payment_provider()

    @trace_span
    async def get_customer(self, user_id: str) -> Optional[BillingCustomer]:
        return await self.customer_repo.get_by_user_id(user_id)

    @trace_span
    async def get_or_create_customer(
        self, user_id: str, email: Optional[str] = None
    ) -> BillingCustomer:
        """
        Get the user's processor customer, creating it on first use.

        The create carries an idempotency key derived from the user id so a
        retried request cannot leave two processor customers behind.
        """
        existing = await self.customer_repo.get_by_user_id(user_id)
        if existing:
            return existing

        key = hashlib.sha256(f"customer:{user_id}".encode("utf-8")).hexdigest()
        stripe_customer_id = await self.payment.create_customer(
            user_id=user_id, email=email, idempotency_key=key
        )

        customer = await self.customer_repo.create(
            BillingCustomerCreateModel(
                user_id=user_id, stripe_customer_id=stripe_customer_id, email=email
            )
        )

        logger.info(
            f"Created billing customer for user {user_id}",
            extra={"user_id": user_id, "stripe_customer_id": stripe_customer_id},
        )
        return customer

    @trace_span
    async def advance_attempt(self, customer: BillingCustomer) -> BillingCustomer:
        """
        Close the user's current subscription-change attempt.

        Called once the processor gave a final answer (declined, or waiting on
        the customer). Keys derived from the new attempt number differ, so the
        next request is a new attempt rather than a replay of that answer.
        """
        return await self.customer_repo.update(
            customer.id,
            BillingCustomerUpdateModel(
                transition_attempt=customer.transition_attempt + 1
            ),
        )
