"""
Factory for getting payment provider instance.
"""

from packages.billing.providers.payment.interface import PaymentProviderInterface
from packages.billing.providers.payment.stripe_payment import StripePaymentProvider


def get_payment_provider() -> PaymentProviderInterface:
    """
    Get payment provider instance based on configuration.

    Only Stripe is supported; the interface keeps services and tests
    independent of the Stripe SDK.

    Returns:
        PaymentProviderInterface: Configured payment provider
    """
    return StripePaymentProvider()
