"""
Service that keeps stored subscriptions in line with the processor.

The processor changes subscriptions on its own (renewal failures, the end
of a period after a scheduled cancel). Two transports bring those changes
in: Stripe webhooks, and a periodic sweep for rows nobody told us about.
Both re-read the subscription from the processor instead of trusting event
payloads, so out-of-order delivery can't roll state back.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession

from common.core.config import settings
from common.core.exceptions import (
    ProcessorRejectedError,
    ProcessorUnavailableError,
    TransitionInProgressError,
)
from common.core.telemetry import trace_span, get_logger
from common.providers.locking.interface import DistributedLockInterface
from packages.billing.models.domain.subscription import (
    Subscription,
    SubscriptionUpdateModel,
)
from packages.billing.providers.payment.interface import PaymentProviderInterface
from packages.billing.services.processor_calls import call_with_retry
from packages.billing.services.subscription_service import SubscriptionService

logger = get_logger(__name__)


class ReconciliationService:
    """Pulls processor truth into the subscriptions table."""

    def __init__(
        self,
        db_session: AsyncSession,
        payment: Optional[PaymentProviderInterface] = None,
        lock_provider: Optional[DistributedLockInterface] = None,
    ):
        self.subscriptions = SubscriptionService(
            db_session, payment=payment, lock_provider=lock_provider
        )
        self.subscription_repo = self.subscriptions.subscription_repo
        self.payment = self.subscriptions.payment

    async def _resolve_user_id(
        self, stripe_subscription_id: str, user_hint: Optional[str]
    ) -> Optional[str]:
        local = await self.subscription_repo.get_by_stripe_subscription_id(
            stripe_subscription_id
        )
        if local:
            return local.user_id
        if user_hint:
            return user_hint

        # Not stored yet (e.g. paid after an authentication challenge)
        processor_sub = await call_with_retry(
            lambda: self.payment.retrieve_subscription(stripe_subscription_id),
            operation="retrieve_subscription",
        )
        if processor_sub is None:
            return None
        if processor_sub.user_id:
            return processor_sub.user_id
        if processor_sub.customer_id:
            customer = await self.subscriptions.customers.customer_repo.get_by_stripe_customer_id(
                processor_sub.customer_id
            )
            return customer.user_id if customer else None
        return None

    @trace_span
    async def sync_subscription(
        self, stripe_subscription_id: str, user_hint: Optional[str] = None
    ) -> Optional[Subscription]:
        """
        Re-read one processor subscription and store it under the user's lock.

        The read happens inside the lock, so a transition that finished
        while we waited can't be overwritten with what the processor said
        before it.

        Raises:
            TransitionInProgressError: a user transition is running; try later
            ProcessorUnavailableError: processor unreachable after retries
        """
        user_id = await self._resolve_user_id(stripe_subscription_id, user_hint)
        if not user_id:
            logger.warning(
                f"Ignoring Stripe subscription {stripe_subscription_id} with no known user",
                extra={"stripe_subscription_id": stripe_subscription_id},
            )
            return None

        async with self.subscriptions.transition_lock(user_id):
            processor_sub = await call_with_retry(
                lambda: self.payment.retrieve_subscription(stripe_subscription_id),
                operation="retrieve_subscription",
            )
            if processor_sub is None:
                local = await self.subscription_repo.get_by_stripe_subscription_id(
                    stripe_subscription_id
                )
                if not local:
                    return None
                return await self.subscriptions.mark_missing(local)

            return await self.subscriptions.apply_processor_subscription(
                processor_sub, user_id=user_id
            )

    @trace_span
    async def clear_detached_payment_method(self, payment_method_id: str) -> None:
        """A card was detached at the processor; stop pointing renewals at it."""
        subscription = await self.subscription_repo.get_by_default_payment_method(
            payment_method_id
        )
        if not subscription:
            return

        async with self.subscriptions.transition_lock(subscription.user_id):
            await self.subscription_repo.update(
                subscription.id, SubscriptionUpdateModel(default_payment_method_id=None)
            )
        logger.info(
            f"Cleared detached payment method from subscription of user {subscription.user_id}",
            extra={
                "user_id": subscription.user_id,
                "payment_method_id": payment_method_id,
            },
        )

    @trace_span
    async def sync_due(self, now: Optional[datetime] = None) -> int:
        """
        Refresh live subscriptions that are stale or past their period end.

        Rows that are locked by a running transition or that the processor
        can't serve right now are left for the next sweep.

        Returns:
            Number of subscriptions synced
        """
        now = now or datetime.now(timezone.utc)
        synced_before = now - timedelta(
            seconds=settings.reconciliation_stale_after_seconds
        )
        due = await self.subscription_repo.get_due_for_sync(
            synced_before=synced_before,
            now=now,
            limit=settings.reconciliation_batch_size,
        )

        synced = 0
        for subscription in due:
            try:
                await self.sync_subscription(
                    subscription.stripe_subscription_id, user_hint=subscription.user_id
                )
                synced += 1
            except TransitionInProgressError:
                logger.info(
                    f"Skipping sync for user {subscription.user_id}: transition running",
                    extra={"user_id": subscription.user_id},
                )
            except (ProcessorUnavailableError, ProcessorRejectedError) as e:
                logger.warning(
                    f"Skipping sync for user {subscription.user_id}: {e}",
                    extra={
                        "user_id": subscription.user_id,
                        "stripe_subscription_id": subscription.stripe_subscription_id,
                        "error": str(e),
                    },
                )

        logger.info(
            f"Reconciled {synced}/{len(due)} due subscriptions",
            extra={"synced": synced, "due": len(due)},
        )
        return synced
