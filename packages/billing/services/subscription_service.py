"""
Service for managing subscriptions.

Every tier transition follows the same rule: ask the processor first, write
locally only after it confirmed. A failed or rejected processor call leaves
the stored subscription exactly as it was, so entitlement is never granted
for something that was not paid for.

Transitions for one user are serialized with a distributed lock; a second
transition while one is running is rejected rather than queued.
"""

from datetime import datetime, timezone
from typing import Optional, Union
from sqlalchemy.ext.asyncio import AsyncSession

from common.core.exceptions import (
    ConflictError,
    ProcessorRejectedError,
    ProcessorUnavailableError,
    TransitionInProgressError,
    ValidationError,
)
from common.core.telemetry import trace_span, get_logger
from common.providers.locking.factory import get_lock_provider
from common.providers.locking.interface import DistributedLockInterface
from packages.billing.models.domain.billing_customer import BillingCustomer
from packages.billing.models.domain.enums import (
    SubscriptionOperation,
    SubscriptionStatus,
    SubscriptionTier,
    TransitionOutcome,
)
from packages.billing.models.domain.payment import ProcessorSubscription
from packages.billing.models.domain.subscription import (
    Subscription,
    SubscriptionCreateModel,
    SubscriptionUpdateModel,
)
from packages.billing.models.domain.transitions import TransitionResult
from packages.billing.providers.payment.factory import get_payment_provider
from packages.billing.providers.payment.interface import PaymentProviderInterface
from packages.billing.repositories.subscription_repository import SubscriptionRepository
from packages.billing.services.checkout_service import CheckoutService
from packages.billing.services.customer_service import CustomerService
from packages.billing.services.payment_method_service import PaymentMethodService
from packages.billing.services.processor_calls import (
    call_with_retry,
    idempotency_key,
    processor_failure,
)
from packages.billing.services.tier_catalog import TierCatalog, get_tier_catalog
from packages.billing.services.transition_lock import transition_lock

logger = get_logger(__name__)

TierInput = Union[SubscriptionTier, str]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubscriptionService:
    """Subscription state machine driven against the payment processor."""

    def __init__(
        self,
        db_session: AsyncSession,
        payment: Optional[PaymentProviderInterface] = None,
        catalog: Optional[TierCatalog] = None,
        lock_provider: Optional[DistributedLockInterface] = None,
    ):
        self.db_session = db_session
        self.payment = payment or get_payment_provider()
        self.catalog = catalog or get_tier_catalog()
        self.locks = lock_provider or get_lock_provider()

        self.subscription_repo = SubscriptionRepository(db_session)
        self.customers = CustomerService(db_session, payment=self.payment)
        self.payment_methods = PaymentMethodService(
            db_session, payment=self.payment, lock_provider=self.locks
        )
        self.checkout = CheckoutService(
            db_session, payment=self.payment, catalog=self.catalog
        )

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    def transition_lock(self, user_id: str):
        """
        Hold the user's transition lock for the duration of the block.

        Raises:
            TransitionInProgressError: another transition holds the lock
        """
        return transition_lock(self.locks, self.db_session, user_id)

    def _in_progress(self) -> TransitionResult:
        return TransitionResult.failure(
            TransitionOutcome.CONFLICT,
            "TransitionInProgress: another change to this subscription is "
            "still being processed. Try again shortly.",
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _parse_tier(self, tier: TierInput) -> SubscriptionTier:
        if isinstance(tier, SubscriptionTier):
            return tier
        return self.catalog.parse(tier)

    def _processor_update(
        self,
        processor_sub: ProcessorSubscription,
        tier: SubscriptionTier,
        current: Subscription,
    ) -> SubscriptionUpdateModel:
        """Overwrite local fields with what the processor confirmed."""
        # Without its own card the subscription bills the customer default
        payment_method_id = (
            processor_sub.default_payment_method_id or current.default_payment_method_id
        )
        return SubscriptionUpdateModel(
            tier=tier,
            status=processor_sub.status,
            stripe_subscription_id=processor_sub.id,
            default_payment_method_id=payment_method_id,
            current_period_start=processor_sub.current_period_start,
            current_period_end=processor_sub.current_period_end,
            cancel_at_period_end=processor_sub.cancel_at_period_end,
            canceled_at=processor_sub.canceled_at,
            version=current.version + 1,
            last_synced_at=utcnow(),
        )

    async def _end_attempt(
        self,
        customer: Optional[BillingCustomer],
        error: Optional[Exception] = None,
    ) -> None:
        """Advance the attempt number unless the processor was unreachable."""
        if customer is None or isinstance(error, ProcessorUnavailableError):
            return
        await self.customers.advance_attempt(customer)

    def _differs(
        self,
        subscription: Subscription,
        processor_sub: ProcessorSubscription,
        tier: SubscriptionTier,
    ) -> bool:
        return (
            subscription.tier != tier
            or subscription.status != processor_sub.status
            or subscription.stripe_subscription_id != processor_sub.id
            or subscription.cancel_at_period_end != processor_sub.cancel_at_period_end
            or _as_utc(subscription.current_period_end)
            != _as_utc(processor_sub.current_period_end)
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @trace_span
    async def get_status(self, user_id: str) -> Optional[Subscription]:
        """Stored subscription for a user, None if they never subscribed."""
        return await self.subscription_repo.get_by_user_id(user_id)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    @trace_span
    async def subscribe(
        self,
        user_id: str,
        tier: TierInput,
        payment_method_id: Optional[str] = None,
        email: Optional[str] = None,
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
    ) -> TransitionResult:
        """
        Start a paid subscription.

        Without any stored card the user is sent to hosted checkout instead.
        When ``payment_method_id`` is omitted the default card is charged.
        """
        try:
            target = self._parse_tier(tier)
        except ValidationError as e:
            return TransitionResult.failure(TransitionOutcome.VALIDATION_ERROR, str(e))
        if not self.catalog.is_purchasable(target):
            return TransitionResult.failure(
                TransitionOutcome.VALIDATION_ERROR,
                f"Tier '{target.value}' cannot be purchased",
            )

        try:
            async with self.transition_lock(user_id):
                return await self._subscribe(
                    user_id, target, payment_method_id, email, success_url, cancel_url
                )
        except TransitionInProgressError:
            return self._in_progress()

    async def _subscribe(
        self,
        user_id: str,
        target: SubscriptionTier,
        payment_method_id: Optional[str],
        email: Optional[str],
        success_url: Optional[str],
        cancel_url: Optional[str],
    ) -> TransitionResult:
        existing = await self.subscription_repo.get_by_user_id(user_id)
        if existing and existing.has_access() and existing.tier != SubscriptionTier.FREE:
            return TransitionResult.failure(
                TransitionOutcome.CONFLICT,
                "AlreadySubscribed: you already have an active subscription. "
                "Change tier instead.",
                subscription=existing,
            )

        customer: Optional[BillingCustomer] = None
        try:
            methods = await self.payment_methods.list_payment_methods(
                user_id, lock_held=True
            )

            if not methods:
                redirect = await self.checkout.issue(
                    user_id, target, success_url, cancel_url, email=email
                )
                return TransitionResult(
                    outcome=TransitionOutcome.CHECKOUT_REQUIRED,
                    redirect_url=redirect.redirect_url,
                    subscription=existing,
                    message="Add a payment method to continue.",
                )

            if payment_method_id:
                if not any(m.id == payment_method_id for m in methods):
                    return TransitionResult.failure(
                        TransitionOutcome.NOT_FOUND,
                        "Payment method not found",
                        subscription=existing,
                    )
                chosen = payment_method_id
            else:
                # list_payment_methods guarantees a default when non-empty
                chosen = methods[0].id

            customer = await self.customers.get_or_create_customer(user_id, email)
            version = existing.version if existing else 0
            key = idempotency_key(
                user_id,
                version,
                SubscriptionOperation.SUBSCRIBE,
                f"{target.value}:{chosen}",
                attempt=customer.transition_attempt,
            )
            processor_sub = await call_with_retry(
                lambda: self.payment.create_subscription(
                    customer_id=customer.stripe_customer_id,
                    user_id=user_id,
                    tier=target,
                    payment_method_id=chosen,
                    idempotency_key=key,
                ),
                operation="create_subscription",
            )
        except (ProcessorRejectedError, ProcessorUnavailableError) as e:
            logger.warning(
                f"Subscribe failed for user {user_id}: {e}",
                extra={"user_id": user_id, "tier": target.value, "error": str(e)},
            )
            await self._end_attempt(customer, e)
            return processor_failure(e, subscription=existing)
        except ConflictError as e:
            return TransitionResult.failure(
                TransitionOutcome.CONFLICT, str(e), subscription=existing
            )

        if processor_sub.requires_action:
            # Nothing is written until the payment is authenticated;
            # reconciliation picks the subscription up afterwards
            logger.info(
                f"Subscription for user {user_id} awaits payment authentication",
                extra={"user_id": user_id, "stripe_subscription_id": processor_sub.id},
            )
            await self._end_attempt(customer)
            return TransitionResult(
                outcome=TransitionOutcome.ACTION_REQUIRED,
                client_secret=processor_sub.pending_payment_client_secret,
                subscription=existing,
                message="Your bank requires you to authenticate this payment.",
            )

        tier = processor_sub.tier or target
        if existing:
            subscription = await self.subscription_repo.update(
                existing.id,
                self._processor_update(processor_sub, tier, existing),
            )
        else:
            subscription = await self.subscription_repo.create(
                SubscriptionCreateModel(
                    user_id=user_id,
                    tier=tier,
                    status=processor_sub.status,
                    stripe_subscription_id=processor_sub.id,
                    default_payment_method_id=processor_sub.default_payment_method_id
                    or chosen,
                    current_period_start=processor_sub.current_period_start,
                    current_period_end=processor_sub.current_period_end,
                    cancel_at_period_end=processor_sub.cancel_at_period_end,
                    version=1,
                    last_synced_at=utcnow(),
                )
            )

        logger.info(
            f"Created subscription for user {user_id} on {tier.value}",
            extra={
                "user_id": user_id,
                "tier": tier.value,
                "stripe_subscription_id": processor_sub.id,
                "status": processor_sub.status.value,
            },
        )
        return TransitionResult.success(subscription=subscription)

    @trace_span
    async def change_tier(self, user_id: str, new_tier: TierInput) -> TransitionResult:
        """
        Move an active subscription to another tier in place.

        Proration is left to the processor and the billing period is kept.
        Downgrades are allowed even when usage exceeds the new quotas.
        Moving to FREE schedules cancellation at the period end.
        """
        try:
            target = self._parse_tier(new_tier)
        except ValidationError as e:
            return TransitionResult.failure(TransitionOutcome.VALIDATION_ERROR, str(e))

        try:
            async with self.transition_lock(user_id):
                return await self._change_tier(user_id, target)
        except TransitionInProgressError:
            return self._in_progress()

    async def _change_tier(
        self, user_id: str, target: SubscriptionTier
    ) -> TransitionResult:
        subscription = await self.subscription_repo.get_by_user_id(user_id)
        current = subscription.effective_tier() if subscription else SubscriptionTier.FREE

        if target == current:
            return TransitionResult.success(
                subscription=subscription, message=f"Already on {target.value}"
            )

        if target == SubscriptionTier.FREE:
            return await self._set_cancel_flag(
                user_id, subscription, True, SubscriptionOperation.CHANGE_TIER
            )

        if not self.catalog.is_purchasable(target):
            return TransitionResult.failure(
                TransitionOutcome.VALIDATION_ERROR,
                f"Tier '{target.value}' cannot be purchased",
                subscription=subscription,
            )

        if (
            not subscription
            or not subscription.has_access()
            or not subscription.stripe_subscription_id
        ):
            return TransitionResult.failure(
                TransitionOutcome.CONFLICT,
                "No active subscription to change. Subscribe first.",
                subscription=subscription,
            )

        customer = await self.customers.get_customer(user_id)
        key = idempotency_key(
            user_id,
            subscription.version,
            SubscriptionOperation.CHANGE_TIER,
            target.value,
            attempt=customer.transition_attempt if customer else 0,
        )
        try:
            processor_sub = await call_with_retry(
                lambda: self.payment.update_subscription_tier(
                    subscription.stripe_subscription_id, target, key
                ),
                operation="update_subscription_tier",
            )
        except (ProcessorRejectedError, ProcessorUnavailableError) as e:
            logger.warning(
                f"Tier change failed for user {user_id}: {e}",
                extra={"user_id": user_id, "new_tier": target.value, "error": str(e)},
            )
            await self._end_attempt(customer, e)
            return processor_failure(e, subscription=subscription)

        updated = await self.subscription_repo.update(
            subscription.id,
            self._processor_update(
                processor_sub, processor_sub.tier or target, subscription
            ),
        )

        logger.info(
            f"Changed subscription for user {user_id} from "
            f"{subscription.tier.value} to {target.value}",
            extra={
                "user_id": user_id,
                "old_tier": subscription.tier.value,
                "new_tier": target.value,
            },
        )
        return TransitionResult.success(subscription=updated)

    @trace_span
    async def cancel(
        self, user_id: str, subscription_id: Optional[str] = None
    ) -> TransitionResult:
        """
        Schedule cancellation at the end of the current period.

        Access continues until the processor reports the period ended.
        """
        try:
            async with self.transition_lock(user_id):
                subscription = await self.subscription_repo.get_by_user_id(user_id)
                if subscription_id and (
                    not subscription
                    or subscription_id
                    not in (subscription.stripe_subscription_id, str(subscription.id))
                ):
                    return TransitionResult.failure(
                        TransitionOutcome.NOT_FOUND, "Subscription not found"
                    )
                return await self._set_cancel_flag(
                    user_id, subscription, True, SubscriptionOperation.CANCEL
                )
        except TransitionInProgressError:
            return self._in_progress()

    @trace_span
    async def reactivate(self, user_id: str) -> TransitionResult:
        """Undo a scheduled cancellation before the period ends."""
        try:
            async with self.transition_lock(user_id):
                subscription = await self.subscription_repo.get_by_user_id(user_id)
                return await self._set_cancel_flag(
                    user_id, subscription, False, SubscriptionOperation.REACTIVATE
                )
        except TransitionInProgressError:
            return self._in_progress()

    async def _set_cancel_flag(
        self,
        user_id: str,
        subscription: Optional[Subscription],
        cancel_at_period_end: bool,
        operation: SubscriptionOperation,
    ) -> TransitionResult:
        if (
            not subscription
            or not subscription.has_access()
            or not subscription.stripe_subscription_id
        ):
            return TransitionResult.failure(
                TransitionOutcome.CONFLICT,
                "No active subscription.",
                subscription=subscription,
            )

        if subscription.cancel_at_period_end == cancel_at_period_end:
            if cancel_at_period_end:
                return TransitionResult.success(
                    subscription=subscription,
                    message="Cancellation is already scheduled",
                )
            return TransitionResult.failure(
                TransitionOutcome.CONFLICT,
                "Subscription is not scheduled to cancel.",
                subscription=subscription,
            )

        customer = await self.customers.get_customer(user_id)
        key = idempotency_key(
            user_id,
            subscription.version,
            operation,
            f"cancel_at_period_end={cancel_at_period_end}",
            attempt=customer.transition_attempt if customer else 0,
        )
        try:
            processor_sub = await call_with_retry(
                lambda: self.payment.set_cancel_at_period_end(
                    subscription.stripe_subscription_id, cancel_at_period_end, key
                ),
                operation=operation.value,
            )
        except (ProcessorRejectedError, ProcessorUnavailableError) as e:
            logger.warning(
                f"{operation.value} failed for user {user_id}: {e}",
                extra={"user_id": user_id, "error": str(e)},
            )
            await self._end_attempt(customer, e)
            return processor_failure(e, subscription=subscription)

        updated = await self.subscription_repo.update(
            subscription.id,
            self._processor_update(
                processor_sub, processor_sub.tier or subscription.tier, subscription
            ),
        )

        logger.info(
            f"Set cancel_at_period_end={cancel_at_period_end} for user {user_id}",
            extra={
                "user_id": user_id,
                "operation": operation.value,
                "stripe_subscription_id": subscription.stripe_subscription_id,
            },
        )
        return TransitionResult.success(subscription=updated)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    @trace_span
    async def refresh(self, user_id: str) -> TransitionResult:
        """
        Re-read the user's subscription from the processor and store it.

        Called after the hosted checkout redirect, since the redirect itself
        proves nothing.
        """
        try:
            async with self.transition_lock(user_id):
                return await self._refresh(user_id)
        except TransitionInProgressError:
            return self._in_progress()

    async def _refresh(self, user_id: str) -> TransitionResult:
        subscription = await self.subscription_repo.get_by_user_id(user_id)

        try:
            processor_sub = None
            if subscription and subscription.stripe_subscription_id:
                processor_sub = await call_with_retry(
                    lambda: self.payment.retrieve_subscription(
                        subscription.stripe_subscription_id
                    ),
                    operation="retrieve_subscription",
                )
                if processor_sub is None:
                    return TransitionResult.success(
                        subscription=await self.mark_missing(subscription)
                    )

            # Keep looking when the stored subscription ended: hosted
            # checkout may have started a new one
            if processor_sub is None or not processor_sub.status.has_access():
                customer = await self.customers.get_customer(user_id)
                if customer:
                    latest = await call_with_retry(
                        lambda: self.payment.find_customer_subscription(
                            customer.stripe_customer_id
                        ),
                        operation="find_customer_subscription",
                    )
                    if latest is not None and (
                        processor_sub is None or latest.status.has_access()
                    ):
                        processor_sub = latest
        except (ProcessorRejectedError, ProcessorUnavailableError) as e:
            return processor_failure(e, subscription=subscription)

        if processor_sub is None:
            return TransitionResult.success(subscription=subscription)

        refreshed = await self.apply_processor_subscription(
            processor_sub, user_id=user_id
        )
        return TransitionResult.success(subscription=refreshed or subscription)

    @trace_span
    async def mark_missing(self, subscription: Subscription) -> Subscription:
        """The processor no longer knows the linked subscription: treat it as ended."""
        logger.warning(
            f"Stripe subscription {subscription.stripe_subscription_id} not found, "
            f"marking canceled",
            extra={
                "user_id": subscription.user_id,
                "stripe_subscription_id": subscription.stripe_subscription_id,
            },
        )
        return await self.subscription_repo.update(
            subscription.id,
            SubscriptionUpdateModel(
                status=SubscriptionStatus.CANCELED,
                cancel_at_period_end=False,
                canceled_at=utcnow(),
                version=subscription.version + 1,
                last_synced_at=utcnow(),
            ),
        )

    @trace_span
    async def apply_processor_subscription(
        self,
        processor_sub: ProcessorSubscription,
        user_id: Optional[str] = None,
    ) -> Optional[Subscription]:
        """
        Store processor-confirmed subscription state. Caller holds the lock.

        The row is found by Stripe id, then by user (from the argument, the
        subscription metadata or the customer mapping). Returns None when the
        subscription can't be tied to a user or hasn't started yet.
        """
        subscription = await self.subscription_repo.get_by_stripe_subscription_id(
            processor_sub.id
        )

        if subscription is None:
            user_id = user_id or processor_sub.user_id
            if not user_id and processor_sub.customer_id:
                customer = await self.customers.customer_repo.get_by_stripe_customer_id(
                    processor_sub.customer_id
                )
                user_id = customer.user_id if customer else None
            if not user_id:
                logger.warning(
                    f"Stripe subscription {processor_sub.id} has no known user",
                    extra={"stripe_subscription_id": processor_sub.id},
                )
                return None
            subscription = await self.subscription_repo.get_by_user_id(user_id)

            if (
                subscription
                and subscription.stripe_subscription_id
                and subscription.has_access()
                and not processor_sub.status.has_access()
            ):
                # Event about an older subscription; the live one wins
                return subscription

        if processor_sub.status == SubscriptionStatus.NONE:
            # Incomplete: first payment not done, no entitlement to record
            return subscription

        tier = processor_sub.tier or (subscription.tier if subscription else None)
        if tier is None:
            logger.error(
                f"Cannot resolve tier of Stripe subscription {processor_sub.id}",
                extra={"stripe_subscription_id": processor_sub.id},
            )
            return subscription

        if subscription is None:
            created = await self.subscription_repo.create(
                SubscriptionCreateModel(
                    user_id=user_id,
                    tier=tier,
                    status=processor_sub.status,
                    stripe_subscription_id=processor_sub.id,
                    default_payment_method_id=processor_sub.default_payment_method_id,
                    current_period_start=processor_sub.current_period_start,
                    current_period_end=processor_sub.current_period_end,
                    cancel_at_period_end=processor_sub.cancel_at_period_end,
                    version=1,
                    last_synced_at=utcnow(),
                )
            )
            logger.info(
                f"Recorded subscription for user {user_id} from Stripe",
                extra={"user_id": user_id, "stripe_subscription_id": processor_sub.id},
            )
            return created

        if not self._differs(subscription, processor_sub, tier):
            return await self.subscription_repo.update(
                subscription.id, SubscriptionUpdateModel(last_synced_at=utcnow())
            )

        updated = await self.subscription_repo.update(
            subscription.id,
            self._processor_update(processor_sub, tier, subscription),
        )
        logger.info(
            f"Reconciled subscription for user {subscription.user_id}: "
            f"{subscription.tier.value}/{subscription.status.value} -> "
            f"{tier.value}/{processor_sub.status.value}",
            extra={
                "user_id": subscription.user_id,
                "stripe_subscription_id": processor_sub.id,
                "old_status": subscription.status.value,
                "new_status": processor_sub.status.value,
            },
        )
        return updated


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; compare everything as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)
