"""
Unit tests for processor call helpers (retry and idempotency keys).
"""

import pytest
from unittest.mock import AsyncMock, patch

from common.core.exceptions import ProcessorRejectedError, ProcessorUnavailableError
from packages.billing.models.domain.enums import (
    SubscriptionOperation,
    TransitionOutcome,
)
from packages.billing.services.processor_calls import (
    backoff_delay,
    call_with_retry,
    idempotency_key,
    processor_failure,
)


class TestIdempotencyKey:
    def test_same_intent_same_key(self):
        first = idempotency_key("u1", 3, SubscriptionOperation.CHANGE_TIER, "pro")
        second = idempotency_key("u1", 3, SubscriptionOperation.CHANGE_TIER, "pro")

        assert first == second
        assert len(first) == 64

    @pytest.mark.parametrize(
        "args",
        [
            ("u2", 3, SubscriptionOperation.CHANGE_TIER, "pro"),
            ("u1", 4, SubscriptionOperation.CHANGE_TIER, "pro"),
            ("u1", 3, SubscriptionOperation.SUBSCRIBE, "pro"),
            ("u1", 3, SubscriptionOperation.CHANGE_TIER, "studio"),
            ("u1", 3, SubscriptionOperation.CHANGE_TIER, "pro", 1),
        ],
    )
    def test_any_component_changes_key(self, args):
        base = idempotency_key("u1", 3, SubscriptionOperation.CHANGE_TIER, "pro")
        assert idempotency_key(*args) != base


class TestBackoff:
    def test_exponential_and_capped(self):
        delays = [backoff_delay(attempt, 0.5, 4.0) for attempt in range(1, 6)]
        assert delays == [0.5, 1.0, 2.0, 4.0, 4.0]


@pytest.mark.asyncio
class TestCallWithRetry:
    async def test_returns_first_success(self):
        fn = AsyncMock(return_value="ok")

        assert await call_with_retry(fn, operation="op", attempts=3) == "ok"
        fn.assert_awaited_once()

    async def test_retries_transient_failures(self):
        fn = AsyncMock(
            side_effect=[
                ProcessorUnavailableError("timeout"),
                ProcessorUnavailableError("timeout"),
                "ok",
            ]
        )

        with patch(
            "packages.billing.services.processor_calls.asyncio.sleep",
            new_callable=AsyncMock,
        ) as mock_sleep:
            result = await call_with_retry(
                fn, operation="op", attempts=3, base_delay=0.5, max_delay=4.0
            )

        assert result == "ok"
        assert fn.await_count == 3
        assert [c.args[0] for c in mock_sleep.await_args_list] == [0.5, 1.0]

    async def test_gives_up_after_attempts(self):
        fn = AsyncMock(side_effect=ProcessorUnavailableError("down"))

        with pytest.raises(ProcessorUnavailableError):
            await call_with_retry(fn, operation="op", attempts=2)
        assert fn.await_count == 2

    async def test_rejection_is_not_retried(self):
        fn = AsyncMock(side_effect=ProcessorRejectedError("declined"))

        with pytest.raises(ProcessorRejectedError):
            await call_with_retry(fn, operation="op", attempts=5)
        fn.assert_awaited_once()


class TestProcessorFailure:
    def test_rejection_carries_decline_code(self):
        result = processor_failure(
            ProcessorRejectedError(
                "Your card has insufficient funds.", decline_code="insufficient_funds"
            )
        )

        assert result.outcome == TransitionOutcome.PROCESSOR_REJECTED
        assert result.message == "Your card has insufficient funds."
        assert result.decline_code == "insufficient_funds"

    def test_unavailable(self):
        result = processor_failure(ProcessorUnavailableError("timeout"))

        assert result.outcome == TransitionOutcome.PROCESSOR_UNAVAILABLE
