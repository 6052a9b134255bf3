"""
Translate billing results and errors into HTTP responses.

Error bodies always carry the outcome tag so clients can branch on it:
``{"detail": {"outcome": ..., "message": ..., "decline_code": ...}}``.
"""

from typing import NoReturn, Optional
from fastapi import HTTPException, status

from common.core.exceptions import (
    AppException,
    ConflictError,
    NotFoundError,
    ProcessorRejectedError,
    ProcessorUnavailableError,
    SessionInvalidError,
    UsageUnavailableError,
    ValidationError,
)
from common.core.telemetry import get_logger
from packages.billing.models.domain.enums import TransitionOutcome
from packages.billing.models.domain.transitions import TransitionResult

logger = get_logger(__name__)

OUTCOME_STATUS_CODES = {
    TransitionOutcome.VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    TransitionOutcome.SESSION_INVALID: status.HTTP_401_UNAUTHORIZED,
    TransitionOutcome.PROCESSOR_REJECTED: status.HTTP_402_PAYMENT_REQUIRED,
    TransitionOutcome.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    TransitionOutcome.CONFLICT: status.HTTP_409_CONFLICT,
    TransitionOutcome.PROCESSOR_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _http_error(
    outcome: TransitionOutcome, message: str, decline_code: Optional[str] = None
) -> HTTPException:
    detail = {"outcome": outcome.value, "message": message}
    if decline_code:
        detail["decline_code"] = decline_code
    headers = None
    if outcome == TransitionOutcome.SESSION_INVALID:
        headers = {"WWW-Authenticate": "Bearer"}
    return HTTPException(
        status_code=OUTCOME_STATUS_CODES[outcome], detail=detail, headers=headers
    )


def raise_for_outcome(result: TransitionResult) -> None:
    """Raise an HTTPException for failed results; successful ones pass through."""
    if result.outcome.is_success():
        return
    raise _http_error(
        result.outcome, result.message or result.outcome.value, result.decline_code
    )


def raise_for_error(error: AppException) -> NoReturn:
    """Map an expected service exception onto its HTTP status."""
    if isinstance(error, ValidationError):
        raise _http_error(TransitionOutcome.VALIDATION_ERROR, str(error))
    if isinstance(error, SessionInvalidError):
        raise _http_error(TransitionOutcome.SESSION_INVALID, str(error))
    if isinstance(error, NotFoundError):
        raise _http_error(TransitionOutcome.NOT_FOUND, str(error))
    if isinstance(error, ConflictError):
        raise _http_error(TransitionOutcome.CONFLICT, str(error))
    if isinstance(error, ProcessorRejectedError):
        raise _http_error(
            TransitionOutcome.PROCESSOR_REJECTED, error.message, error.decline_code
        )
    if isinstance(error, ProcessorUnavailableError):
        raise _http_error(
            TransitionOutcome.PROCESSOR_UNAVAILABLE,
            "The payment processor is temporarily unavailable. Please try again.",
        )
    if isinstance(error, UsageUnavailableError):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"outcome": "usage_unavailable", "message": str(error)},
        )
    # ConfigurationError and anything unexpected is a bug, not a user error
    logger.error(f"Unhandled billing error: {error}", extra={"error": str(error)})
    raise error
