"""
Service for managing a user's stored payment methods.

Card data never reaches this service. Attaching is two-phase: the client
gets a setup intent secret, collects the card directly with the processor,
and we only ever see the resulting token.

Invariant: whenever a user has payment methods, exactly one is the default.
"""

from contextlib import nullcontext
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession

from common.core.exceptions import (
    ProcessorRejectedError,
    ProcessorUnavailableError,
    TransitionInProgressError,
)
from common.core.telemetry import trace_span, get_logger
from common.providers.locking.factory import get_lock_provider
from common.providers.locking.interface import DistributedLockInterface
from packages.billing.models.domain.enums import TransitionOutcome
from packages.billing.models.domain.payment import (
    PaymentMethod,
    SetupIntentHandle,
    SetupIntentResult,
)
from packages.billing.models.domain.subscription import SubscriptionUpdateModel
from packages.billing.models.domain.transitions import TransitionResult
from packages.billing.providers.payment.factory import get_payment_provider
from packages.billing.providers.payment.interface import PaymentProviderInterface
from packages.billing.repositories.subscription_repository import SubscriptionRepository
from packages.billing.services.customer_service import CustomerService
from packages.billing.services.processor_calls import (
    call_with_retry,
    processor_failure,
)
from packages.billing.services.transition_lock import transition_lock

logger = get_logger(__name__)

_SECRET_SEPARATOR = "_secret_"


def setup_intent_id_from_secret(client_secret: str) -> Optional[str]:
    """``seti_123_secret_abc`` -> ``seti_123``; None for anything else."""
    if _SECRET_SEPARATOR not in client_secret:
        return None
    intent_id = client_secret.split(_SECRET_SEPARATOR, 1)[0]
    return intent_id if intent_id.startswith("seti_") else None


def order_default_first(methods: List[PaymentMethod]) -> List[PaymentMethod]:
    return sorted(methods, key=lambda m: not m.is_default)


class PaymentMethodService:
    """Attach, list, set-default and remove stored cards."""

    def __init__(
        self,
        db_session: AsyncSession,
        payment: Optional[PaymentProviderInterface] = None,
        lock_provider: Optional[DistributedLockInterface] = None,
    ):
        self.db_session = db_session
        self.payment = payment or get_payment_provider()
        self.locks = lock_provider or get_lock_provider()
        self.customers = CustomerService(db_session, payment=self.payment)
        self.subscription_repo = SubscriptionRepository(db_session)

    async def _customer_id(self, user_id: str) -> Optional[str]:
        customer = await self.customers.get_customer(user_id)
        return customer.stripe_customer_id if customer else None

    def _lock(self, user_id: str, lock_held: bool = False):
        if lock_held:
            return nullcontext()
        return transition_lock(self.locks, self.db_session, user_id)

    def _in_progress(self) -> TransitionResult:
        return TransitionResult.failure(
            TransitionOutcome.CONFLICT,
            "TransitionInProgress: a change to your subscription is still "
            "being processed. Try again shortly.",
        )

    async def _sync_subscription_default(
        self, user_id: str, payment_method_id: Optional[str]
    ) -> None:
        """
        Point the user's subscription renewals at the new default card.

        Rewrites the subscription, so the caller holds the user's transition
        lock.
        """
        subscription = await self.subscription_repo.get_by_user_id(user_id)
        if not subscription:
            return

        if subscription.stripe_subscription_id and subscription.has_access():
            await call_with_retry(
                lambda: self.payment.set_subscription_payment_method(
                    subscription.stripe_subscription_id, payment_method_id
                ),
                operation="set_subscription_payment_method",
            )

        await self.subscription_repo.update(
            subscription.id,
            SubscriptionUpdateModel(
                default_payment_method_id=payment_method_id,
                version=subscription.version + 1,
            ),
        )

    # ------------------------------------------------------------------
    # Attach
    # ------------------------------------------------------------------

    @trace_span
    async def begin_attach(
        self, user_id: str, email: Optional[str] = None
    ) -> SetupIntentHandle:
        """
        Start collecting a card. No funds move.

        Raises:
            ProcessorUnavailableError, ProcessorRejectedError
        """
        customer = await self.customers.get_or_create_customer(user_id, email)
        handle = await call_with_retry(
            lambda: self.payment.create_setup_intent(customer.stripe_customer_id),
            operation="create_setup_intent",
        )

        logger.info(
            f"Started payment method attach for user {user_id}",
            extra={"user_id": user_id, "setup_intent_id": handle.setup_intent_id},
        )
        return handle

    async def _confirm_once(
        self,
        setup_intent_id: str,
        payment_method_token: str,
        billing_name: Optional[str],
    ) -> SetupIntentResult:
        # A retried confirm of an intent that already went through returns it
        current = await self.payment.retrieve_setup_intent(setup_intent_id)
        if current.succeeded:
            return current
        return await self.payment.confirm_setup_intent(
            setup_intent_id, payment_method_token, billing_name
        )

    @trace_span
    async def confirm_attach(
        self,
        user_id: str,
        client_secret: str,
        payment_method_token: str,
        billing_name: Optional[str] = None,
    ) -> TransitionResult:
        """
        Complete an attach with a processor-tokenized card.

        May come back ``action_required`` when the bank wants strong
        customer authentication; the client completes the challenge with the
        returned secret and calls again. The new card becomes default only if
        it is the user's first.
        """
        setup_intent_id = setup_intent_id_from_secret(client_secret)
        if not setup_intent_id:
            return TransitionResult.failure(
                TransitionOutcome.VALIDATION_ERROR, "Malformed setup intent secret"
            )

        customer_id = await self._customer_id(user_id)
        if not customer_id:
            return TransitionResult.failure(
                TransitionOutcome.NOT_FOUND,
                "No payment setup in progress. Start again.",
            )

        try:
            result = await call_with_retry(
                lambda: self._confirm_once(
                    setup_intent_id, payment_method_token, billing_name
                ),
                operation="confirm_setup_intent",
            )
        except (ProcessorRejectedError, ProcessorUnavailableError) as e:
            return processor_failure(e)

        if result.requires_action:
            logger.info(
                f"Payment method attach for user {user_id} requires authentication",
                extra={"user_id": user_id, "setup_intent_id": setup_intent_id},
            )
            return TransitionResult(
                outcome=TransitionOutcome.ACTION_REQUIRED,
                client_secret=result.client_secret or client_secret,
                message="Your bank requires you to authenticate this card.",
            )

        if not result.succeeded or not result.payment_method_id:
            return TransitionResult.failure(
                TransitionOutcome.PROCESSOR_REJECTED,
                f"The card could not be saved (status: {result.status}).",
            )

        try:
            async with self._lock(user_id):
                methods = await call_with_retry(
                    lambda: self.payment.list_payment_methods(customer_id),
                    operation="list_payment_methods",
                )
                has_other_default = any(
                    m.is_default for m in methods if m.id != result.payment_method_id
                )
                if not has_other_default:
                    await call_with_retry(
                        lambda: self.payment.set_default_payment_method(
                            customer_id, result.payment_method_id
                        ),
                        operation="set_default_payment_method",
                    )
                    await self._sync_subscription_default(
                        user_id, result.payment_method_id
                    )
                    methods = [
                        m.model_copy(
                            update={"is_default": m.id == result.payment_method_id}
                        )
                        for m in methods
                    ]
        except TransitionInProgressError:
            return self._in_progress()
        except (ProcessorRejectedError, ProcessorUnavailableError) as e:
            return processor_failure(e)

        attached = next(
            (m for m in methods if m.id == result.payment_method_id),
            PaymentMethod(
                id=result.payment_method_id, is_default=not has_other_default
            ),
        )

        logger.info(
            f"Attached payment method for user {user_id}",
            extra={
                "user_id": user_id,
                "payment_method_id": attached.id,
                "is_default": attached.is_default,
            },
        )
        return TransitionResult.success(payment_method=attached)

    # ------------------------------------------------------------------
    # List / default / remove
    # ------------------------------------------------------------------

    @trace_span
    async def list_payment_methods(
        self, user_id: str, lock_held: bool = False
    ) -> List[PaymentMethod]:
        """
        Stored cards, default first.

        If the processor reports cards but no default (changed outside this
        service), the first card is promoted. The promotion rewrites the
        subscription, so it takes the user's transition lock unless
        ``lock_held`` says the caller already has it.

        Raises:
            ProcessorUnavailableError, ProcessorRejectedError
            TransitionInProgressError: a repair was needed while the lock was busy
        """
        customer_id = await self._customer_id(user_id)
        if not customer_id:
            return []

        methods = await call_with_retry(
            lambda: self.payment.list_payment_methods(customer_id),
            operation="list_payment_methods",
        )
        if methods and not any(m.is_default for m in methods):
            promoted = methods[0]
            async with self._lock(user_id, lock_held):
                await call_with_retry(
                    lambda: self.payment.set_default_payment_method(
                        customer_id, promoted.id
                    ),
                    operation="set_default_payment_method",
                )
                await self._sync_subscription_default(user_id, promoted.id)
            logger.warning(
                f"Repaired missing default payment method for user {user_id}",
                extra={"user_id": user_id, "payment_method_id": promoted.id},
            )
            methods = [
                m.model_copy(update={"is_default": m.id == promoted.id})
                for m in methods
            ]

        return order_default_first(methods)

    @trace_span
    async def set_default(
        self, user_id: str, payment_method_id: str
    ) -> TransitionResult:
        """Make one of the user's cards the default for renewals."""
        try:
            async with self._lock(user_id):
                methods = await self.list_payment_methods(user_id, lock_held=True)
                target = next((m for m in methods if m.id == payment_method_id), None)
                if not target:
                    return TransitionResult.failure(
                        TransitionOutcome.NOT_FOUND, "Payment method not found"
                    )
                if target.is_default:
                    return TransitionResult.success(payment_method=target)

                customer_id = await self._customer_id(user_id)
                await call_with_retry(
                    lambda: self.payment.set_default_payment_method(
                        customer_id, payment_method_id
                    ),
                    operation="set_default_payment_method",
                )
                await self._sync_subscription_default(user_id, payment_method_id)
        except TransitionInProgressError:
            return self._in_progress()
        except (ProcessorRejectedError, ProcessorUnavailableError) as e:
            return processor_failure(e)

        logger.info(
            f"Set default payment method for user {user_id}",
            extra={"user_id": user_id, "payment_method_id": payment_method_id},
        )
        return TransitionResult.success(
            payment_method=target.model_copy(update={"is_default": True})
        )

    @trace_span
    async def remove(self, user_id: str, payment_method_id: str) -> TransitionResult:
        """
        Remove a card.

        The default card can only be removed when it is the last one; with
        other cards present the caller must pick a new default first.
        """
        try:
            async with self._lock(user_id):
                methods = await self.list_payment_methods(user_id, lock_held=True)
                target = next((m for m in methods if m.id == payment_method_id), None)
                if not target:
                    return TransitionResult.failure(
                        TransitionOutcome.NOT_FOUND, "Payment method not found"
                    )

                if target.is_default and len(methods) > 1:
                    return TransitionResult.failure(
                        TransitionOutcome.CONFLICT,
                        "This is your default payment method. "
                        "Choose another default before removing it.",
                    )

                await call_with_retry(
                    lambda: self.payment.detach_payment_method(payment_method_id),
                    operation="detach_payment_method",
                )
                if len(methods) == 1:
                    await self._sync_subscription_default(user_id, None)
        except TransitionInProgressError:
            return self._in_progress()
        except (ProcessorRejectedError, ProcessorUnavailableError) as e:
            return processor_failure(e)

        logger.info(
            f"Removed payment method for user {user_id}",
            extra={"user_id": user_id, "payment_method_id": payment_method_id},
        )
        return TransitionResult.success(payment_method=target)
