"""
Billing package - subscription tiers, quota checks and payments.

This package integrates with:
- Stripe: Payment methods, subscriptions and hosted checkout
- The resource-owning services: Usage counters for quota checks
"""
