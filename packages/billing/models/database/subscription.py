"""
Database entity for subscriptions.
"""

from sqlalchemy import Boolean, Column, String, DateTime, Index, Integer, false
from sqlalchemy.sql import func

from common.db.base import Base, BigIntegerType


class SubscriptionEntity(Base):
    """
    User subscription database entity.

    One row per user, written only after the processor confirms a change.
    Rows are never deleted: a lapsed subscription stays as status=canceled
    so billing history keeps its linkage.
    """

    __tablename__ = "subscriptions"

    id = Column(BigIntegerType, primary_key=True, index=True, autoincrement=True)
    user_id = Column(String(255), nullable=False, unique=True, index=True)

    # Subscription details
    tier = Column(String(50), nullable=False, index=True)  # free, basic, pro, studio, beta
    status = Column(
        String(50), nullable=False, index=True
    )  # active, past_due, canceled, unpaid

    # External platform IDs
    stripe_subscription_id = Column(String(255), nullable=True, unique=True, index=True)
    default_payment_method_id = Column(String(255), nullable=True)

    # Billing cycle
    current_period_start = Column(DateTime(timezone=True), nullable=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    cancel_at_period_end = Column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    canceled_at = Column(DateTime(timezone=True), nullable=True)

    # Confirmed-transition counter, feeds processor idempotency keys
    version = Column(Integer, nullable=False, default=0, server_default="0")
    last_synced_at = Column(DateTime(timezone=True), nullable=True)

    # Standard timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_subscription_status_tier", "status", "tier"),
        Index("idx_subscription_last_synced", "last_synced_at"),
    )
