"""Distributed lock keys for billing package."""


def subscription_transition_key(user_id: str) -> str:
    """Lock serializing subscription transitions for one user."""
    return f"subscription_transition:{user_id}"
