"""
In-memory payment provider for tests.

Behaves like the processor where services depend on it: idempotency keys
replay the first result, cards can be made to decline or to demand
authentication, and failures can be scheduled before a call is applied or
after it was applied but before the response arrived.
"""

import itertools
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from common.core.exceptions import ProcessorRejectedError, ProcessorUnavailableError
from packages.billing.models.domain.enums import SubscriptionStatus, SubscriptionTier
from packages.billing.models.domain.payment import (
    CheckoutRedirect,
    PaymentMethod,
    ProcessorSubscription,
    SetupIntentHandle,
    SetupIntentResult,
)
from packages.billing.providers.payment.interface import PaymentProviderInterface

DECLINED_TOKEN = "pm_card_chargeDeclined"
SCA_TOKEN = "pm_card_authenticationRequired"


class FakePaymentProvider(PaymentProviderInterface):
    def __init__(self, now: Optional[datetime] = None):
        self.now = now or datetime(2026, 1, 1, tzinfo=timezone.utc)
        self._ids = itertools.count(1)

        self.customers: Dict[str, Dict[str, Any]] = {}
        self.subscriptions: Dict[str, ProcessorSubscription] = {}
        self.setup_intents: Dict[str, SetupIntentResult] = {}
        self.setup_intent_customers: Dict[str, str] = {}
        self.checkout_sessions: Dict[str, Dict[str, Any]] = {}

        # Cards that force a first-payment challenge on subscribe
        self.sca_payment_methods: set = set()

        self.idempotent_results: Dict[str, Any] = {}
        self.applied: Dict[str, int] = defaultdict(int)
        self.calls: List[str] = []

        self._fail_before: Dict[str, List[Exception]] = defaultdict(list)
        self._fail_after: Dict[str, List[Exception]] = defaultdict(list)

    # ------------------------------------------------------------------
    # Test controls
    # ------------------------------------------------------------------

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}_{next(self._ids)}"

    def fail(self, operation: str, *errors: Exception) -> None:
        """Raise these errors (in order) before the next calls are applied."""
        self._fail_before[operation].extend(errors)

    def lose_response(self, operation: str, times: int = 1) -> None:
        """Apply the next call(s), then report the processor as unreachable."""
        self._fail_after[operation].extend(
            ProcessorUnavailableError("connection reset") for _ in range(times)
        )

    def unavailable(self, operation: str, times: int = 1) -> None:
        self.fail(
            operation,
            *[ProcessorUnavailableError("processor timeout") for _ in range(times)],
        )

    def decline(self, operation: str, decline_code: str = "insufficient_funds") -> None:
        self.fail(
            operation,
            ProcessorRejectedError(
                "Your card has insufficient funds.",
                code="card_declined",
                decline_code=decline_code,
            ),
        )

    def add_card(
        self,
        customer_id: str,
        last4: str = "4242",
        brand: str = "visa",
        default: bool = False,
    ) -> PaymentMethod:
        method = PaymentMethod(
            id=self._next_id("pm"),
            brand=brand,
            last4=last4,
            exp_month=12,
            exp_year=2030,
        )
        customer = self.customers[customer_id]
        customer["methods"].append(method)
        if default:
            customer["default"] = method.id
        return method

    def set_processor_state(self, subscription_id: str, **fields: Any) -> ProcessorSubscription:
        """Change a subscription the way the processor would on its own."""
        updated = self.subscriptions[subscription_id].model_copy(update=fields)
        self.subscriptions[subscription_id] = updated
        return updated

    def complete_authentication(self, setup_intent_id: str) -> None:
        """The customer passed the bank challenge in the browser."""
        intent = self.setup_intents[setup_intent_id]
        self._attach(self.setup_intent_customers[setup_intent_id], intent.payment_method_id)
        self.setup_intents[setup_intent_id] = intent.model_copy(
            update={"status": "succeeded"}
        )

    def _before(self, operation: str) -> None:
        self.calls.append(operation)
        if self._fail_before[operation]:
            raise self._fail_before[operation].pop(0)

    def _after(self, operation: str) -> None:
        if self._fail_after[operation]:
            raise self._fail_after[operation].pop(0)

    def _idempotent(
        self,
        operation: str,
        key: Optional[str],
        apply: Callable[[], Any],
        params: Optional[tuple] = None,
    ) -> Any:
        """
        Run ``apply`` once per key. Like the processor, a replay returns the
        stored result (a stored decline is raised again) and a key reused
        with different parameters is refused.
        """
        if key is not None and key in self.idempotent_results:
            self.calls.append(operation)
            stored_params, stored = self.idempotent_results[key]
            if stored_params != params:
                raise ProcessorRejectedError(
                    "Keys for idempotent requests can only be used with the "
                    "same parameters they were first used with.",
                    code="idempotency_key_in_use",
                )
            if isinstance(stored, ProcessorRejectedError):
                raise stored
            return stored

        try:
            self._before(operation)
        except ProcessorRejectedError as e:
            if key is not None:
                self.idempotent_results[key] = (params, e)
            raise
        result = apply()
        self.applied[operation] += 1
        if key is not None:
            self.idempotent_results[key] = (params, result)
        self._after(operation)
        return result

    def _attach(self, customer_id: str, payment_method_id: str) -> None:
        methods = self.customers[customer_id]["methods"]
        if not any(m.id == payment_method_id for m in methods):
            methods.append(
                PaymentMethod(
                    id=payment_method_id,
                    brand="visa",
                    last4="4242",
                    exp_month=12,
                    exp_year=2030,
                )
            )

    def customer_of(self, payment_method_id: str) -> Optional[str]:
        for customer_id, customer in self.customers.items():
            if any(m.id == payment_method_id for m in customer["methods"]):
                return customer_id
        return None

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    async def create_customer(
        self,
        user_id: str,
        email: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> str:
        def apply():
            customer_id = self._next_id("cus")
            self.customers[customer_id] = {
                "user_id": user_id,
                "email": email,
                "methods": [],
                "default": None,
            }
            return customer_id

        return self._idempotent(
            "create_customer", idempotency_key, apply, params=(user_id,)
        )

    # ------------------------------------------------------------------
    # Payment methods
    # ------------------------------------------------------------------

    async def create_setup_intent(self, customer_id: str) -> SetupIntentHandle:
        self._before("create_setup_intent")
        intent_id = self._next_id("seti")
        secret = f"{intent_id}_secret_{next(self._ids)}"
        self.setup_intents[intent_id] = SetupIntentResult(
            setup_intent_id=intent_id,
            status="requires_payment_method",
            client_secret=secret,
        )
        self.setup_intent_customers[intent_id] = customer_id
        return SetupIntentHandle(
            setup_intent_id=intent_id, client_secret=secret, customer_id=customer_id
        )

    async def confirm_setup_intent(
        self,
        setup_intent_id: str,
        payment_method_token: str,
        billing_name: Optional[str] = None,
    ) -> SetupIntentResult:
        self._before("confirm_setup_intent")
        intent = self.setup_intents[setup_intent_id]

        if payment_method_token == DECLINED_TOKEN:
            raise ProcessorRejectedError(
                "Your card was declined.",
                code="card_declined",
                decline_code="generic_decline",
            )

        payment_method_id = (
            payment_method_token
            if payment_method_token.startswith("pm_")
            else self._next_id("pm")
        )
        if payment_method_token == SCA_TOKEN:
            payment_method_id = self._next_id("pm")
            result = intent.model_copy(
                update={"status": "requires_action", "payment_method_id": payment_method_id}
            )
        else:
            self._attach(self.setup_intent_customers[setup_intent_id], payment_method_id)
            result = intent.model_copy(
                update={"status": "succeeded", "payment_method_id": payment_method_id}
            )

        self.setup_intents[setup_intent_id] = result
        self.applied["confirm_setup_intent"] += 1
        self._after("confirm_setup_intent")
        return result

    async def retrieve_setup_intent(self, setup_intent_id: str) -> SetupIntentResult:
        self._before("retrieve_setup_intent")
        return self.setup_intents[setup_intent_id]

    async def list_payment_methods(self, customer_id: str) -> List[PaymentMethod]:
        self._before("list_payment_methods")
        customer = self.customers[customer_id]
        return [
            m.model_copy(update={"is_default": m.id == customer["default"]})
            for m in customer["methods"]
        ]

    async def set_default_payment_method(
        self, customer_id: str, payment_method_id: str
    ) -> None:
        self._before("set_default_payment_method")
        self.customers[customer_id]["default"] = payment_method_id
        self.applied["set_default_payment_method"] += 1

    async def detach_payment_method(self, payment_method_id: str) -> None:
        self._before("detach_payment_method")
        customer_id = self.customer_of(payment_method_id)
        if customer_id is None:
            raise ProcessorRejectedError(
                "No such PaymentMethod", code="resource_missing"
            )
        customer = self.customers[customer_id]
        customer["methods"] = [m for m in customer["methods"] if m.id != payment_method_id]
        if customer["default"] == payment_method_id:
            customer["default"] = None
        self.applied["detach_payment_method"] += 1

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def create_subscription(
        self,
        customer_id: str,
        user_id: str,
        tier: SubscriptionTier,
        payment_method_id: str,
        idempotency_key: str,
    ) -> ProcessorSubscription:
        def apply():
            requires_action = payment_method_id in self.sca_payment_methods
            subscription = ProcessorSubscription(
                id=self._next_id("sub"),
                customer_id=customer_id,
                status=(
                    SubscriptionStatus.NONE
                    if requires_action
                    else SubscriptionStatus.ACTIVE
                ),
                raw_status="incomplete" if requires_action else "active",
                tier=tier,
                current_period_start=self.now,
                current_period_end=self.now + timedelta(days=30),
                default_payment_method_id=payment_method_id,
                user_id=user_id,
                pending_payment_client_secret=(
                    f"pi_{next(self._ids)}_secret" if requires_action else None
                ),
            )
            self.subscriptions[subscription.id] = subscription
            return subscription

        return self._idempotent(
            "create_subscription",
            idempotency_key,
            apply,
            params=(customer_id, tier, payment_method_id),
        )

    async def update_subscription_tier(
        self,
        subscription_id: str,
        new_tier: SubscriptionTier,
        idempotency_key: str,
    ) -> ProcessorSubscription:
        def apply():
            return self.set_processor_state(subscription_id, tier=new_tier)

        return self._idempotent(
            "update_subscription_tier",
            idempotency_key,
            apply,
            params=(subscription_id, new_tier),
        )

    async def set_cancel_at_period_end(
        self,
        subscription_id: str,
        cancel_at_period_end: bool,
        idempotency_key: str,
    ) -> ProcessorSubscription:
        def apply():
            return self.set_processor_state(
                subscription_id, cancel_at_period_end=cancel_at_period_end
            )

        return self._idempotent(
            "set_cancel_at_period_end",
            idempotency_key,
            apply,
            params=(subscription_id, cancel_at_period_end),
        )

    async def set_subscription_payment_method(
        self, subscription_id: str, payment_method_id: Optional[str]
    ) -> None:
        self._before("set_subscription_payment_method")
        self.set_processor_state(
            subscription_id, default_payment_method_id=payment_method_id
        )

    async def retrieve_subscription(
        self, subscription_id: str
    ) -> Optional[ProcessorSubscription]:
        self._before("retrieve_subscription")
        return self.subscriptions.get(subscription_id)

    async def find_customer_subscription(
        self, customer_id: str
    ) -> Optional[ProcessorSubscription]:
        self._before("find_customer_subscription")
        owned = [s for s in self.subscriptions.values() if s.customer_id == customer_id]
        live = [s for s in owned if s.status.has_access()]
        candidates = live or owned
        return candidates[-1] if candidates else None

    # ------------------------------------------------------------------
    # Hosted checkout
    # ------------------------------------------------------------------

    async def create_checkout_session(
        self,
        customer_id: str,
        user_id: str,
        tier: SubscriptionTier,
        success_url: str,
        cancel_url: str,
    ) -> CheckoutRedirect:
        self._before("create_checkout_session")
        session_id = self._next_id("cs")
        self.checkout_sessions[session_id] = {
            "customer_id": customer_id,
            "user_id": user_id,
            "tier": tier,
            "success_url": success_url,
            "cancel_url": cancel_url,
        }
        return CheckoutRedirect(
            session_id=session_id,
            redirect_url=f"https://checkout.stripe.com/c/pay/{session_id}",
            customer_id=customer_id,
        )

    def complete_checkout(self, session_id: str) -> ProcessorSubscription:
        """The customer paid on the hosted page."""
        session = self.checkout_sessions[session_id]
        method = self.add_card(session["customer_id"], default=True)
        subscription = ProcessorSubscription(
            id=self._next_id("sub"),
            customer_id=session["customer_id"],
            status=SubscriptionStatus.ACTIVE,
            raw_status="active",
            tier=session["tier"],
            current_period_start=self.now,
            current_period_end=self.now + timedelta(days=30),
            default_payment_method_id=method.id,
            user_id=session["user_id"],
        )
        self.subscriptions[subscription.id] = subscription
        return subscription

    async def health_check(self) -> bool:
        return True
