"""
Stripe implementation of payment provider.
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, List, Optional

import stripe

from common.core.config import settings
from common.core.exceptions import (
    ConfigurationError,
    ProcessorRejectedError,
    ProcessorUnavailableError,
)
from common.core.telemetry import trace_span, get_logger
from packages.billing.models.domain.enums import SubscriptionStatus, SubscriptionTier
from packages.billing.models.domain.payment import (
    CheckoutRedirect,
    PaymentMethod,
    ProcessorSubscription,
    SetupIntentHandle,
    SetupIntentResult,
)
from packages.billing.providers.payment.interface import PaymentProviderInterface
from packages.billing.services.tier_catalog import TierCatalog, get_tier_catalog

logger = get_logger(__name__)

# Stripe subscription status -> our lifecycle status
STRIPE_STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.UNPAID,
    "paused": SubscriptionStatus.UNPAID,
    "canceled": SubscriptionStatus.CANCELED,
    "incomplete_expired": SubscriptionStatus.CANCELED,
    # First payment not completed yet: no entitlement
    "incomplete": SubscriptionStatus.NONE,
}


def map_stripe_status(stripe_status: str) -> SubscriptionStatus:
    """Map a Stripe subscription status onto our lifecycle."""
    return STRIPE_STATUS_MAP.get(stripe_status, SubscriptionStatus.UNPAID)


def translate_stripe_error(error: stripe.StripeError) -> Exception:
    """
    Translate a Stripe SDK error into our processor error taxonomy.

    Transient failures become ProcessorUnavailableError (retryable), bad
    credentials become ConfigurationError, everything else the processor
    refused becomes ProcessorRejectedError with its own message.
    """
    if isinstance(error, (stripe.APIConnectionError, stripe.RateLimitError)):
        return ProcessorUnavailableError(str(error.user_message or error))
    if isinstance(error, (stripe.AuthenticationError, stripe.PermissionError)):
        return ConfigurationError(f"Stripe credentials rejected: {error}")
    if isinstance(error, stripe.APIError) or (error.http_status or 0) >= 500:
        return ProcessorUnavailableError(str(error.user_message or error))

    decline_code = None
    error_object = getattr(error, "error", None)
    if error_object is not None:
        decline_code = getattr(error_object, "decline_code", None)

    return ProcessorRejectedError(
        message=error.user_message or str(error),
        code=error.code,
        decline_code=decline_code,
    )


@contextmanager
def _stripe_errors(operation: str, **context: Any):
    try:
        yield
    except stripe.StripeError as e:
        logger.error(
            f"Stripe {operation} failed: {str(e)}",
            extra={**context, "error": str(e), "http_status": e.http_status},
        )
        raise translate_stripe_error(e) from e


def _ts(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _plain(value: Any) -> Any:
    """
    Plain dict/list view of a Stripe response.

    StripeObject stopped being a dict subclass in recent SDKs, so mapping
    code works on this copy instead of the SDK objects.
    """
    if hasattr(value, "to_dict"):
        value = value.to_dict()
    if isinstance(value, dict):
        return {key: _plain(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_plain(item) for item in value]
    return value


def _id_of(value: Any) -> Optional[str]:
    """Stripe fields may be an id string or an expanded object."""
    if value is None or isinstance(value, str):
        return value
    return value.get("id")


def _invoice_payment_intent_id(invoice: dict) -> Optional[str]:
    """PaymentIntent behind an invoice, read from its payment records."""
    payments = (invoice.get("payments") or {}).get("data") or []
    for record in payments:
        payment = record.get("payment") or {}
        intent_id = _id_of(payment.get("payment_intent"))
        if intent_id:
            return intent_id
    return None


class StripePaymentProvider(PaymentProviderInterface):
    """Stripe-based payment implementation."""

    def __init__(self, catalog: Optional[TierCatalog] = None):
        """Initialize Stripe with API credentials."""
        stripe.api_key = settings.stripe_secret_key
        stripe.api_version = settings.stripe_api_version
        self.catalog = catalog or get_tier_catalog()

    # ------------------------------------------------------------------
    # Mapping helpers
    # ------------------------------------------------------------------

    def _to_payment_method(
        self, pm: dict, default_payment_method_id: Optional[str]
    ) -> PaymentMethod:
        card = pm.get("card") or {}
        return PaymentMethod(
            id=pm["id"],
            brand=card.get("brand"),
            last4=card.get("last4"),
            exp_month=card.get("exp_month"),
            exp_year=card.get("exp_year"),
            is_default=pm["id"] == default_payment_method_id,
        )

    def _to_processor_subscription(
        self, subscription: dict, pending_secret: Optional[str] = None
    ) -> ProcessorSubscription:
        items = (subscription.get("items") or {}).get("data") or []
        first_item = items[0] if items else {}
        price_id = _id_of(first_item.get("price"))
        metadata = subscription.get("metadata") or {}

        tier = self.catalog.tier_for_price_id(price_id)
        if tier is None and metadata.get("tier"):
            tier = SubscriptionTier(metadata["tier"])

        # The billing period lives on the subscription item since basil
        period_start = first_item.get("current_period_start") or subscription.get(
            "current_period_start"
        )
        period_end = first_item.get("current_period_end") or subscription.get(
            "current_period_end"
        )

        return ProcessorSubscription(
            id=subscription["id"],
            customer_id=_id_of(subscription.get("customer")),
            status=map_stripe_status(subscription["status"]),
            raw_status=subscription["status"],
            tier=tier,
            current_period_start=_ts(period_start),
            current_period_end=_ts(period_end),
            cancel_at_period_end=bool(subscription.get("cancel_at_period_end")),
            canceled_at=_ts(subscription.get("canceled_at")),
            default_payment_method_id=_id_of(subscription.get("default_payment_method")),
            user_id=metadata.get("user_id"),
            pending_payment_client_secret=pending_secret,
        )

    def _to_setup_intent_result(self, intent: dict) -> SetupIntentResult:
        return SetupIntentResult(
            setup_intent_id=intent["id"],
            status=intent["status"],
            payment_method_id=_id_of(intent.get("payment_method")),
            client_secret=intent.get("client_secret"),
        )

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    @trace_span
    async def create_customer(
        self,
        user_id: str,
        email: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> str:
        """Create a Stripe customer."""
        with _stripe_errors("create_customer", user_id=user_id):
            customer = await stripe.Customer.create_async(
                email=email,
                metadata={"user_id": user_id},
                idempotency_key=idempotency_key,
            )

        logger.info(
            "Created Stripe customer",
            extra={"user_id": user_id, "customer_id": customer.id},
        )
        return customer.id

    # ------------------------------------------------------------------
    # Payment methods
    # ------------------------------------------------------------------

    @trace_span
    async def create_setup_intent(self, customer_id: str) -> SetupIntentHandle:
        with _stripe_errors("create_setup_intent", customer_id=customer_id):
            intent = await stripe.SetupIntent.create_async(
                customer=customer_id,
                payment_method_types=["card"],
                usage="off_session",
            )

        logger.info(
            "Created Stripe setup intent",
            extra={"customer_id": customer_id, "setup_intent_id": intent.id},
        )
        return SetupIntentHandle(
            setup_intent_id=intent.id,
            client_secret=intent.client_secret,
            customer_id=customer_id,
        )

    @trace_span
    async def confirm_setup_intent(
        self,
        setup_intent_id: str,
        payment_method_token: str,
        billing_name: Optional[str] = None,
    ) -> SetupIntentResult:
        """
        Confirm a setup intent.

        Accepts either a legacy card token (``tok_...``), which is turned into
        a PaymentMethod carrying the billing name, or a PaymentMethod id
        created by Stripe.js (``pm_...``).
        """
        billing_details = {"name": billing_name} if billing_name else None

        with _stripe_errors("confirm_setup_intent", setup_intent_id=setup_intent_id):
            payment_method_id = payment_method_token
            if payment_method_token.startswith("tok_"):
                pm = await stripe.PaymentMethod.create_async(
                    type="card",
                    card={"token": payment_method_token},
                    billing_details=billing_details,
                )
                payment_method_id = pm.id

            intent = _plain(
                await stripe.SetupIntent.confirm_async(
                    setup_intent_id, payment_method=payment_method_id
                )
            )

            # Only attached methods can be modified
            if (
                intent["status"] == "succeeded"
                and billing_details
                and not payment_method_token.startswith("tok_")
            ):
                await stripe.PaymentMethod.modify_async(
                    payment_method_id, billing_details=billing_details
                )

        logger.info(
            f"Confirmed Stripe setup intent: {intent['status']}",
            extra={"setup_intent_id": setup_intent_id, "status": intent["status"]},
        )
        return self._to_setup_intent_result(intent)

    @trace_span
    async def retrieve_setup_intent(self, setup_intent_id: str) -> SetupIntentResult:
        with _stripe_errors("retrieve_setup_intent", setup_intent_id=setup_intent_id):
            intent = await stripe.SetupIntent.retrieve_async(setup_intent_id)
        return self._to_setup_intent_result(_plain(intent))

    @trace_span
    async def list_payment_methods(self, customer_id: str) -> List[PaymentMethod]:
        with _stripe_errors("list_payment_methods", customer_id=customer_id):
            customer = _plain(await stripe.Customer.retrieve_async(customer_id))
            methods = _plain(
                await stripe.PaymentMethod.list_async(
                    customer=customer_id, type="card", limit=100
                )
            )

        invoice_settings = customer.get("invoice_settings") or {}
        default_id = _id_of(invoice_settings.get("default_payment_method"))
        return [
            self._to_payment_method(pm, default_id) for pm in methods.get("data") or []
        ]

    @trace_span
    async def set_default_payment_method(
        self, customer_id: str, payment_method_id: str
    ) -> None:
        with _stripe_errors(
            "set_default_payment_method",
            customer_id=customer_id,
            payment_method_id=payment_method_id,
        ):
            await stripe.Customer.modify_async(
                customer_id,
                invoice_settings={"default_payment_method": payment_method_id},
            )

        logger.info(
            "Set default Stripe payment method",
            extra={"customer_id": customer_id, "payment_method_id": payment_method_id},
        )

    @trace_span
    async def detach_payment_method(self, payment_method_id: str) -> None:
        with _stripe_errors(
            "detach_payment_method", payment_method_id=payment_method_id
        ):
            await stripe.PaymentMethod.detach_async(payment_method_id)

        logger.info(
            "Detached Stripe payment method",
            extra={"payment_method_id": payment_method_id},
        )

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    @trace_span
    async def create_subscription(
        self,
        customer_id: str,
        user_id: str,
        tier: SubscriptionTier,
        payment_method_id: str,
        idempotency_key: str,
    ) -> ProcessorSubscription:
        """
        Create a Stripe subscription and attempt the first payment immediately.

        allow_incomplete keeps SCA-challenged payments alive (status
        incomplete, payment intent requires_action) instead of failing them;
        the invoice's confirmation secret is handed to the client. A hard
        decline leaves an incomplete subscription we cancel before reporting
        the rejection.
        """
        price_id = self.catalog.price_id(tier)

        with _stripe_errors(
            "create_subscription", user_id=user_id, tier=tier.value
        ):
            subscription = _plain(
                await stripe.Subscription.create_async(
                    customer=customer_id,
                    items=[{"price": price_id, "quantity": 1}],
                    default_payment_method=payment_method_id,
                    payment_behavior="allow_incomplete",
                    metadata={"user_id": user_id, "tier": tier.value},
                    expand=[
                        "latest_invoice.confirmation_secret",
                        "latest_invoice.payments",
                    ],
                    idempotency_key=idempotency_key,
                )
            )

        if subscription["status"] == "incomplete":
            return await self._incomplete_subscription(subscription, user_id)

        logger.info(
            f"Created Stripe subscription for tier {tier.value}: {subscription['status']}",
            extra={
                "user_id": user_id,
                "subscription_id": subscription["id"],
                "tier": tier.value,
                "status": subscription["status"],
            },
        )
        return self._to_processor_subscription(subscription)

    async def _incomplete_subscription(
        self, subscription: dict, user_id: str
    ) -> ProcessorSubscription:
        """First payment did not go through: pending authentication or declined."""
        invoice = subscription.get("latest_invoice") or {}
        if isinstance(invoice, str):
            invoice = {"id": invoice}

        payment_intent: dict = {}
        intent_id = _invoice_payment_intent_id(invoice)
        if intent_id:
            with _stripe_errors("retrieve_payment_intent", user_id=user_id):
                payment_intent = _plain(
                    await stripe.PaymentIntent.retrieve_async(intent_id)
                )

        confirmation_secret = (invoice.get("confirmation_secret") or {}).get(
            "client_secret"
        )
        awaiting_customer = payment_intent.get("status") in (
            "requires_action",
            "requires_confirmation",
        ) or (not payment_intent and confirmation_secret)

        if awaiting_customer:
            logger.info(
                "Stripe subscription awaits payment authentication",
                extra={"user_id": user_id, "subscription_id": subscription["id"]},
            )
            return self._to_processor_subscription(
                subscription,
                pending_secret=confirmation_secret
                or payment_intent.get("client_secret"),
            )

        last_error = payment_intent.get("last_payment_error") or {}
        with _stripe_errors("cancel_incomplete_subscription", user_id=user_id):
            await stripe.Subscription.cancel_async(subscription["id"])
        logger.warning(
            "Stripe declined first subscription payment",
            extra={"user_id": user_id, "subscription_id": subscription["id"]},
        )
        raise ProcessorRejectedError(
            message=last_error.get("message") or "Your card was declined.",
            code=last_error.get("code"),
            decline_code=last_error.get("decline_code"),
        )

    @trace_span
    async def update_subscription_tier(
        self,
        subscription_id: str,
        new_tier: SubscriptionTier,
        idempotency_key: str,
    ) -> ProcessorSubscription:
        """
        Update existing Stripe subscription to a new tier/price in place.
        """
        price_id = self.catalog.price_id(new_tier)

        with _stripe_errors(
            "update_subscription_tier",
            subscription_id=subscription_id,
            new_tier=new_tier.value,
        ):
            current = _plain(await stripe.Subscription.retrieve_async(subscription_id))
            item_id = current["items"]["data"][0]["id"]
            metadata = dict(current.get("metadata") or {})
            metadata["tier"] = new_tier.value

            # always_invoice charges the difference now; error_if_incomplete
            # turns a failed charge into a CardError instead of a silent upgrade
            subscription = await stripe.Subscription.modify_async(
                subscription_id,
                items=[{"id": item_id, "price": price_id}],
                metadata=metadata,
                proration_behavior="always_invoice",
                payment_behavior="error_if_incomplete",
                idempotency_key=idempotency_key,
            )

        logger.info(
            f"Updated Stripe subscription to {new_tier.value}",
            extra={"subscription_id": subscription_id, "new_tier": new_tier.value},
        )
        return self._to_processor_subscription(_plain(subscription))

    @trace_span
    async def set_cancel_at_period_end(
        self,
        subscription_id: str,
        cancel_at_period_end: bool,
        idempotency_key: str,
    ) -> ProcessorSubscription:
        with _stripe_errors(
            "set_cancel_at_period_end",
            subscription_id=subscription_id,
            cancel_at_period_end=cancel_at_period_end,
        ):
            subscription = await stripe.Subscription.modify_async(
                subscription_id,
                cancel_at_period_end=cancel_at_period_end,
                idempotency_key=idempotency_key,
            )

        logger.info(
            f"Set Stripe cancel_at_period_end={cancel_at_period_end}",
            extra={"subscription_id": subscription_id},
        )
        return self._to_processor_subscription(_plain(subscription))

    @trace_span
    async def set_subscription_payment_method(
        self, subscription_id: str, payment_method_id: Optional[str]
    ) -> None:
        with _stripe_errors(
            "set_subscription_payment_method", subscription_id=subscription_id
        ):
            # Empty string unsets the field so the customer default applies
            await stripe.Subscription.modify_async(
                subscription_id, default_payment_method=payment_method_id or ""
            )

    @trace_span
    async def retrieve_subscription(
        self, subscription_id: str
    ) -> Optional[ProcessorSubscription]:
        try:
            with _stripe_errors("retrieve_subscription", subscription_id=subscription_id):
                subscription = await stripe.Subscription.retrieve_async(subscription_id)
        except ProcessorRejectedError as e:
            if e.code == "resource_missing":
                return None
            raise
        return self._to_processor_subscription(_plain(subscription))

    @trace_span
    async def find_customer_subscription(
        self, customer_id: str
    ) -> Optional[ProcessorSubscription]:
        with _stripe_errors("find_customer_subscription", customer_id=customer_id):
            subscriptions = _plain(
                await stripe.Subscription.list_async(
                    customer=customer_id, status="all", limit=10
                )
            )

        # Prefer a live subscription, otherwise the most recent one
        candidates = sorted(
            subscriptions.get("data") or [],
            key=lambda s: s.get("created") or 0,
            reverse=True,
        )
        live = [
            s for s in candidates if map_stripe_status(s["status"]).has_access()
        ]
        chosen = live[0] if live else (candidates[0] if candidates else None)
        return self._to_processor_subscription(chosen) if chosen else None

    # ------------------------------------------------------------------
    # Hosted checkout
    # ------------------------------------------------------------------

    @trace_span
    async def create_checkout_session(
        self,
        customer_id: str,
        user_id: str,
        tier: SubscriptionTier,
        success_url: str,
        cancel_url: str,
    ) -> CheckoutRedirect:
        """Create Stripe checkout session in subscription mode."""
        price_id = self.catalog.price_id(tier)

        with _stripe_errors("create_checkout_session", user_id=user_id, tier=tier.value):
            session = await stripe.checkout.Session.create_async(
                customer=customer_id,
                client_reference_id=user_id,
                payment_method_types=["card"],
                line_items=[{"price": price_id, "quantity": 1}],
                mode="subscription",
                success_url=success_url,
                cancel_url=cancel_url,
                metadata={"user_id": user_id, "tier": tier.value},
                subscription_data={
                    "metadata": {"user_id": user_id, "tier": tier.value}
                },
            )

        logger.info(
            "Created Stripe checkout session",
            extra={"user_id": user_id, "tier": tier.value, "session_id": session.id},
        )
        return CheckoutRedirect(
            session_id=session.id, redirect_url=session.url, customer_id=customer_id
        )

    @trace_span
    async def health_check(self) -> bool:
        """Check Stripe health."""
        try:
            await stripe.Account.retrieve_async()
            return True
        except stripe.StripeError as e:
            logger.error(f"Payment health check failed: {e}")
            return False
