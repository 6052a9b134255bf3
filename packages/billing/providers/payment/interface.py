"""
Interface for payment providers.

Abstracts payment processing away from specific platforms (Stripe, etc.).

Every method either returns a processor-confirmed result or raises:
- ProcessorUnavailableError: transient (network, rate limit, 5xx); safe to
  retry with the same idempotency key
- ProcessorRejectedError: terminal for this attempt (card declined,
  invalid request); must be surfaced to the user verbatim
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from packages.billing.models.domain.enums import SubscriptionTier
from packages.billing.models.domain.payment import (
    CheckoutRedirect,
    PaymentMethod,
    ProcessorSubscription,
    SetupIntentHandle,
    SetupIntentResult,
)


class PaymentProviderInterface(ABC):
    """Abstract interface for payment providers."""

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    @abstractmethod
    async def create_customer(
        self,
        user_id: str,
        email: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> str:
        """
        Create a customer in the payment provider.

        Args:
            user_id: Application user id (stored in customer metadata)
            email: Customer email for receipts
            idempotency_key: Deduplicates retried creates

        Returns:
            Provider customer ID
        """
        pass

    # ------------------------------------------------------------------
    # Payment methods
    # ------------------------------------------------------------------

    @abstractmethod
    async def create_setup_intent(self, customer_id: str) -> SetupIntentHandle:
        """
        Start collecting a card for later off-session use. No funds move.

        Args:
            customer_id: Provider customer ID

        Returns:
            Handle whose client_secret the browser uses to talk to the provider
        """
        pass

    @abstractmethod
    async def confirm_setup_intent(
        self,
        setup_intent_id: str,
        payment_method_token: str,
        billing_name: Optional[str] = None,
    ) -> SetupIntentResult:
        """
        Confirm a setup intent with a provider-tokenized card.

        Args:
            setup_intent_id: ID of the intent being confirmed
            payment_method_token: Tokenized card reference from the browser
            billing_name: Cardholder name used for strong customer authentication

        Returns:
            Result; status "requires_action" means the customer must complete
            a challenge client-side using the returned client_secret
        """
        pass

    @abstractmethod
    async def retrieve_setup_intent(self, setup_intent_id: str) -> SetupIntentResult:
        """Get the current state of a setup intent."""
        pass

    @abstractmethod
    async def list_payment_methods(self, customer_id: str) -> List[PaymentMethod]:
        """
        List the customer's cards, flagging the invoice default.

        Returns:
            Payment methods in provider order (not sorted)
        """
        pass

    @abstractmethod
    async def set_default_payment_method(
        self, customer_id: str, payment_method_id: str
    ) -> None:
        """Make a card the customer's default for invoices."""
        pass

    @abstractmethod
    async def detach_payment_method(self, payment_method_id: str) -> None:
        """Remove a card from its customer."""
        pass

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    @abstractmethod
    async def create_subscription(
        self,
        customer_id: str,
        user_id: str,
        tier: SubscriptionTier,
        payment_method_id: str,
        idempotency_key: str,
    ) -> ProcessorSubscription:
        """
        Create a subscription charged to an existing payment method.

        Returns:
            Confirmed subscription; ``requires_action`` is set when the first
            payment needs strong customer authentication
        """
        pass

    @abstractmethod
    async def update_subscription_tier(
        self,
        subscription_id: str,
        new_tier: SubscriptionTier,
        idempotency_key: str,
    ) -> ProcessorSubscription:
        """
        Move a subscription to a different tier in place.

        Proration is the provider's business; the billing period is not reset.
        """
        pass

    @abstractmethod
    async def set_cancel_at_period_end(
        self,
        subscription_id: str,
        cancel_at_period_end: bool,
        idempotency_key: str,
    ) -> ProcessorSubscription:
        """Schedule (True) or unschedule (False) cancellation at period end."""
        pass

    @abstractmethod
    async def set_subscription_payment_method(
        self, subscription_id: str, payment_method_id: Optional[str]
    ) -> None:
        """Point a subscription's renewals at a card (None = customer default)."""
        pass

    @abstractmethod
    async def retrieve_subscription(
        self, subscription_id: str
    ) -> Optional[ProcessorSubscription]:
        """Get a subscription, or None if the provider doesn't know it."""
        pass

    @abstractmethod
    async def find_customer_subscription(
        self, customer_id: str
    ) -> Optional[ProcessorSubscription]:
        """Most recent subscription for a customer (used after hosted checkout)."""
        pass

    # ------------------------------------------------------------------
    # Hosted checkout
    # ------------------------------------------------------------------

    @abstractmethod
    async def create_checkout_session(
        self,
        customer_id: str,
        user_id: str,
        tier: SubscriptionTier,
        success_url: str,
        cancel_url: str,
    ) -> CheckoutRedirect:
        """
        Create a hosted checkout session that collects a card and starts
        the subscription in one flow.
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the payment provider is reachable."""
        pass
