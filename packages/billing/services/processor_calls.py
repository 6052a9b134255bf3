"""
Helpers for calling the payment processor from services.

Transient processor failures are retried with bounded exponential backoff.
Retrying is only safe because every mutating call carries an idempotency
key derived from the intended new state.
"""

import asyncio
import hashlib
from typing import Awaitable, Callable, Optional, TypeVar

from common.core.config import settings
from common.core.exceptions import ProcessorRejectedError, ProcessorUnavailableError
from common.core.telemetry import get_logger, log_span_event
from packages.billing.models.domain.enums import (
    SubscriptionOperation,
    TransitionOutcome,
)
from packages.billing.models.domain.subscription import Subscription
from packages.billing.models.domain.transitions import TransitionResult

logger = get_logger(__name__)

T = TypeVar("T")


def idempotency_key(
    user_id: str,
    version: int,
    operation: SubscriptionOperation,
    target: str,
    attempt: int = 0,
) -> str:
    """
    Deterministic key for one attempt at one intended transition.

    The subscription version only moves after a confirmed transition and the
    attempt number only after a final processor answer (declined, or waiting
    on the customer). A request retried after the processor was unreachable
    therefore maps to the same key and is applied at most once, while a new
    attempt after a decline is not answered with the stored decline.
    """
    raw = f"{user_id}:{version}:{attempt}:{operation.value}:{target}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before retry number ``attempt`` (1-based)."""
    return min(max_delay, base_delay * (2 ** (attempt - 1)))


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    operation: str,
    attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
    max_delay: Optional[float] = None,
) -> T:
    """
    Await ``fn()``, retrying on ProcessorUnavailableError.

    ProcessorRejectedError and anything else propagate on the first attempt.

    Raises:
        ProcessorUnavailableError: every attempt failed transiently
    """
    attempts = attempts or settings.processor_retry_attempts
    if base_delay is None:
        base_delay = settings.processor_retry_base_delay_seconds
    if max_delay is None:
        max_delay = settings.processor_retry_max_delay_seconds

    for attempt in range(1, attempts + 1):
        try:
            return await fn()
        except ProcessorUnavailableError as e:
            if attempt >= attempts:
                logger.error(
                    f"Processor {operation} failed after {attempts} attempts",
                    extra={"operation": operation, "attempts": attempts},
                )
                raise
            delay = backoff_delay(attempt, base_delay, max_delay)
            logger.warning(
                f"Processor {operation} unavailable, retrying in {delay:.2f}s",
                extra={"operation": operation, "attempt": attempt, "error": str(e)},
            )
            log_span_event(
                "processor.retry", {"operation": operation, "attempt": attempt}
            )
            await asyncio.sleep(delay)

    # attempts < 1
    raise ProcessorUnavailableError(f"Processor {operation} was not attempted")


def processor_failure(
    error: Exception, subscription: Optional[Subscription] = None
) -> TransitionResult:
    """Tagged result for a processor error. Local state is untouched."""
    if isinstance(error, ProcessorRejectedError):
        return TransitionResult.failure(
            TransitionOutcome.PROCESSOR_REJECTED,
            error.message,
            subscription=subscription,
            decline_code=error.decline_code,
        )
    return TransitionResult.failure(
        TransitionOutcome.PROCESSOR_UNAVAILABLE,
        "The payment processor is temporarily unavailable. Please try again.",
        subscription=subscription,
    )
