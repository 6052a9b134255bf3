"""
Service for hosted checkout sessions.

Used when a user wants a paid tier but has no stored card yet: the processor
collects the card and starts the subscription in one hosted flow. The
redirect back to the app proves nothing; the subscription is picked up from
the webhook or an explicit refresh.
"""

from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession

from common.core.config import settings
from common.core.exceptions import ConflictError, ValidationError
from common.core.telemetry import trace_span, get_logger
from packages.billing.models.domain.enums import SubscriptionTier
from packages.billing.models.domain.payment import CheckoutRedirect
from packages.billing.providers.payment.factory import get_payment_provider
from packages.billing.providers.payment.interface import PaymentProviderInterface
from packages.billing.repositories.subscription_repository import SubscriptionRepository
from packages.billing.services.customer_service import CustomerService
from packages.billing.services.processor_calls import call_with_retry
from packages.billing.services.tier_catalog import TierCatalog, get_tier_catalog

logger = get_logger(__name__)


class CheckoutService:
    """Issues hosted checkout sessions for first-time subscriptions."""

    def __init__(
        self,
        db_session: AsyncSession,
        payment: Optional[PaymentProviderInterface] = None,
        catalog: Optional[TierCatalog] = None,
    ):
        self.payment = payment or get_payment_provider()
        self.catalog = catalog or get_tier_catalog()
        self.customers = CustomerService(db_session, payment=self.payment)
        self.subscription_repo = SubscriptionRepository(db_session)

    @trace_span
    async def issue(
        self,
        user_id: str,
        tier: SubscriptionTier,
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
        email: Optional[str] = None,
    ) -> CheckoutRedirect:
        """
        Create a hosted checkout session for a paid tier.

        Raises:
            ValidationError: tier cannot be bought
            ConflictError: user already has a live paid subscription
            ProcessorUnavailableError, ProcessorRejectedError
        """
        if not self.catalog.is_purchasable(tier):
            raise ValidationError(f"Tier '{tier.value}' cannot be purchased")

        existing = await self.subscription_repo.get_by_user_id(user_id)
        if existing and existing.has_access() and existing.stripe_subscription_id:
            raise ConflictError(
                "You already have an active subscription. Change tier instead."
            )

        customer = await self.customers.get_or_create_customer(user_id, email)
        redirect = await call_with_retry(
            lambda: self.payment.create_checkout_session(
                customer_id=customer.stripe_customer_id,
                user_id=user_id,
                tier=tier,
                success_url=success_url or settings.checkout_success_url,
                cancel_url=cancel_url or settings.checkout_cancel_url,
            ),
            operation="create_checkout_session",
        )

        logger.info(
            f"Created checkout session for user {user_id}",
            extra={
                "user_id": user_id,
                "tier": tier.value,
                "session_id": redirect.session_id,
            },
        )
        return redirect
