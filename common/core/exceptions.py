from typing import Optional


class AppException(Exception):
    """Base application exception."""

    pass


class NotFoundError(AppException):
    """Resource not found exception."""

    pass


class ValidationError(AppException):
    """Validation error exception."""

    pass


class ConflictError(AppException):
    """Request conflicts with current state (e.g. transition already in flight)."""

    pass


class SessionInvalidError(AppException):
    """Caller credential missing, expired or not verifiable."""

    pass


class ConfigurationError(AppException):
    """Deployment/configuration is broken. Programming error, not user facing."""

    pass


class TierNotFoundError(ConfigurationError):
    """A tier id is not present in the tier catalog."""

    def __init__(self, tier_id: str):
        super().__init__(f"Tier '{tier_id}' is not in the tier catalog")
        self.tier_id = tier_id


class UsageUnavailableError(AppException):
    """Usage counters could not be fetched from the owning service."""

    pass


class ProcessorUnavailableError(AppException):
    """Billing processor could not be reached. Transient, safe to retry."""

    pass


class ProcessorRejectedError(AppException):
    """Billing processor refused the request. Terminal for this attempt."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        decline_code: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.decline_code = decline_code


class TransitionInProgressError(ConflictError):
    """Another subscription transition for the same user is still running."""

    def __init__(self, user_id: str):
        super().__init__("TransitionInProgress")
        self.user_id = user_id
