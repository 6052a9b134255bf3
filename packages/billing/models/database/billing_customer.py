"""
Database entity for billing customers.
"""

from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.sql import func

from common.db.base import Base, BigIntegerType


class BillingCustomerEntity(Base):
    """
    Maps an application user to a Stripe customer.

    Created lazily the first time a user needs a processor customer
    (card setup, checkout or subscribe).
    """

    __tablename__ = "billing_customers"

    id = Column(BigIntegerType, primary_key=True, index=True, autoincrement=True)
    # Opaque id from the auth provider (JWT sub)
    user_id = Column(String(255), nullable=False, unique=True, index=True)
    stripe_customer_id = Column(String(255), nullable=False, unique=True, index=True)
    email = Column(String(320), nullable=True)
    # Advances whenever the processor gave a final answer to a subscription
    # change, so the next attempt gets fresh idempotency keys
    transition_attempt = Column(Integer, nullable=False, default=0, server_default="0")

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
