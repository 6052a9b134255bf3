"""
Domain models for the user -> processor customer mapping.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict


class BillingCustomer(BaseModel):
    """Links an application user to their processor customer."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    stripe_customer_id: str
    email: Optional[str] = None
    transition_attempt: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class BillingCustomerCreateModel(BaseModel):
    """Model for recording a newly created processor customer."""

    user_id: str
    stripe_customer_id: str
    email: Optional[str] = None


class BillingCustomerUpdateModel(BaseModel):
    """Model for updating a customer mapping."""

    email: Optional[str] = None
    transition_attempt: Optional[int] = None

