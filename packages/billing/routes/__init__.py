"""Billing API routes."""

from packages.billing.routes import (
    checkout,
    payment_methods,
    plans,
    subscriptions,
    webhooks,
)

__all__ = ["checkout", "payment_methods", "plans", "subscriptions", "webhooks"]
