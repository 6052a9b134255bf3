"""
Billing enums - strongly typed enumerations for subscription and billing states.
"""

from enum import Enum


class SubscriptionStatus(str, Enum):
    """
    Subscription status lifecycle.

    Flow: none -> active -> (past_due | unpaid) -> canceled
    """

    NONE = "none"  # Never subscribed to a paid tier
    ACTIVE = "active"  # Paid and current (may be scheduled to cancel)
    PAST_DUE = "past_due"  # Renewal payment failed, processor is retrying
    CANCELED = "canceled"  # Period ended after cancel, or processor gave up
    UNPAID = "unpaid"  # Retries exhausted, invoice left open

    def has_access(self) -> bool:
        """Check if this status keeps the paid tier's entitlements."""
        return self in (SubscriptionStatus.ACTIVE, SubscriptionStatus.PAST_DUE)


class SubscriptionTier(str, Enum):
    """
    Subscription tiers.

    BETA is a privileged override assigned out-of-band; it is never sold.
    """

    FREE = "free"
    BASIC = "basic"
    PRO = "pro"
    STUDIO = "studio"
    BETA = "beta"


class Capability(str, Enum):
    """Feature flags granted by a tier."""

    EMAIL_SUPPORT = "email_support"
    CUSTOM_PDF_UPLOADS = "custom_pdf_uploads"
    DOCUMENT_COMPARISON = "document_comparison"
    PRIORITY_SUPPORT = "priority_support"
    API_ACCESS = "api_access"
    TEAM_DASHBOARD = "team_dashboard"
    DEDICATED_SUPPORT = "dedicated_support"


class ResourceKind(str, Enum):
    """Quota-gated resources owned by other services."""

    PROJECTS = "projects"
    UPLOADS = "uploads"  # Custom uploads in the current billing period
    SEATS = "seats"


class SubscriptionOperation(str, Enum):
    """Mutating operations sent to the payment processor."""

    SUBSCRIBE = "subscribe"
    CHANGE_TIER = "change_tier"
    CANCEL = "cancel"
    REACTIVATE = "reactivate"


class TransitionOutcome(str, Enum):
    """Tag on every mutating billing result."""

    OK = "ok"
    CHECKOUT_REQUIRED = "checkout_required"  # No payment method, redirect to hosted checkout
    ACTION_REQUIRED = "action_required"  # Strong customer authentication pending
    VALIDATION_ERROR = "validation_error"
    SESSION_INVALID = "session_invalid"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    PROCESSOR_REJECTED = "processor_rejected"
    PROCESSOR_UNAVAILABLE = "processor_unavailable"

    def is_success(self) -> bool:
        return self in (
            TransitionOutcome.OK,
            TransitionOutcome.CHECKOUT_REQUIRED,
            TransitionOutcome.ACTION_REQUIRED,
        )
