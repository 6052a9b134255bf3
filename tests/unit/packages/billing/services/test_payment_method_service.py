"""
Unit tests for PaymentMethodService.

The processor is the in-memory fake; database interactions are NOT mocked.
"""

import random

import pytest

from packages.billing.lock_keys import subscription_transition_key
from packages.billing.models.domain.enums import TransitionOutcome
from packages.billing.repositories.subscription_repository import SubscriptionRepository
from packages.billing.services.payment_method_service import (
    PaymentMethodService,
    setup_intent_id_from_secret,
)
from tests.conftest import TEST_USER_ID, create_test_subscription
from tests.fixtures import DECLINED_TOKEN, SCA_TOKEN


@pytest.fixture
def payment_method_service(test_db, fake_payment, lock_provider):
    return PaymentMethodService(
        test_db, payment=fake_payment, lock_provider=lock_provider
    )


async def attach_card(service, token: str = "pm_card_visa", user_id: str = TEST_USER_ID):
    handle = await service.begin_attach(user_id, email="ana@example.com")
    return await service.confirm_attach(user_id, handle.client_secret, token)


def assert_single_default(methods):
    if methods:
        assert sum(1 for m in methods if m.is_default) == 1
        assert methods[0].is_default


class TestSetupIntentSecret:
    def test_extracts_intent_id(self):
        assert setup_intent_id_from_secret("seti_1Abc_secret_xyz") == "seti_1Abc"

    @pytest.mark.parametrize(
        "secret", ["", "seti_1Abc", "pi_123_secret_abc", "garbage_secret_"]
    )
    def test_rejects_other_secrets(self, secret):
        assert setup_intent_id_from_secret(secret) is None


@pytest.mark.asyncio
class TestPaymentMethodService:
    """Tests for PaymentMethodService."""

    async def test_begin_attach_creates_customer_once(
        self, payment_method_service, fake_payment
    ):
        first = await payment_method_service.begin_attach(TEST_USER_ID)
        second = await payment_method_service.begin_attach(TEST_USER_ID)

        assert first.customer_id == second.customer_id
        assert first.setup_intent_id != second.setup_intent_id
        assert fake_payment.applied["create_customer"] == 1

    async def test_first_card_becomes_default(self, payment_method_service):
        result = await attach_card(payment_method_service)

        assert result.outcome == TransitionOutcome.OK
        assert result.payment_method.is_default is True

        methods = await payment_method_service.list_payment_methods(TEST_USER_ID)
        assert [m.id for m in methods] == [result.payment_method.id]
        assert_single_default(methods)

    async def test_second_card_is_not_default(self, payment_method_service):
        first = await attach_card(payment_method_service, "pm_card_visa")
        second = await attach_card(payment_method_service, "pm_card_mastercard")

        assert second.payment_method.is_default is False
        methods = await payment_method_service.list_payment_methods(TEST_USER_ID)
        assert methods[0].id == first.payment_method.id
        assert_single_default(methods)

    async def test_malformed_secret_is_validation_error(self, payment_method_service):
        result = await payment_method_service.confirm_attach(
            TEST_USER_ID, "not-a-secret", "pm_card_visa"
        )

        assert result.outcome == TransitionOutcome.VALIDATION_ERROR

    async def test_confirm_without_customer_is_not_found(self, payment_method_service):
        result = await payment_method_service.confirm_attach(
            TEST_USER_ID, "seti_1_secret_2", "pm_card_visa"
        )

        assert result.outcome == TransitionOutcome.NOT_FOUND

    async def test_declined_card_is_rejected(self, payment_method_service):
        result = await attach_card(payment_method_service, DECLINED_TOKEN)

        assert result.outcome == TransitionOutcome.PROCESSOR_REJECTED
        assert result.decline_code == "generic_decline"
        assert await payment_method_service.list_payment_methods(TEST_USER_ID) == []

    async def test_authentication_required_then_completed(
        self, payment_method_service, fake_payment
    ):
        handle = await payment_method_service.begin_attach(TEST_USER_ID)

        pending = await payment_method_service.confirm_attach(
            TEST_USER_ID, handle.client_secret, SCA_TOKEN
        )
        assert pending.outcome == TransitionOutcome.ACTION_REQUIRED
        assert pending.client_secret == handle.client_secret
        assert await payment_method_service.list_payment_methods(TEST_USER_ID) == []

        fake_payment.complete_authentication(handle.setup_intent_id)
        done = await payment_method_service.confirm_attach(
            TEST_USER_ID, handle.client_secret, SCA_TOKEN
        )

        assert done.outcome == TransitionOutcome.OK
        assert done.payment_method.is_default is True

    async def test_lost_confirm_response_is_retried_safely(
        self, payment_method_service, fake_payment
    ):
        fake_payment.lose_response("confirm_setup_intent")

        result = await attach_card(payment_method_service)

        assert result.outcome == TransitionOutcome.OK
        assert fake_payment.applied["confirm_setup_intent"] == 1
        methods = await payment_method_service.list_payment_methods(TEST_USER_ID)
        assert len(methods) == 1

    async def test_processor_unavailable(self, payment_method_service, fake_payment):
        handle = await payment_method_service.begin_attach(TEST_USER_ID)
        fake_payment.unavailable("retrieve_setup_intent", times=5)

        result = await payment_method_service.confirm_attach(
            TEST_USER_ID, handle.client_secret, "pm_card_visa"
        )

        assert result.outcome == TransitionOutcome.PROCESSOR_UNAVAILABLE

    async def test_list_repairs_missing_default(
        self, payment_method_service, fake_payment, sample_customer
    ):
        first = fake_payment.add_card(sample_customer)
        fake_payment.add_card(sample_customer, last4="4444")

        methods = await payment_method_service.list_payment_methods(TEST_USER_ID)

        assert methods[0].id == first.id
        assert_single_default(methods)
        assert fake_payment.customers[sample_customer]["default"] == first.id

    async def test_list_without_customer_is_empty(self, payment_method_service):
        assert await payment_method_service.list_payment_methods(TEST_USER_ID) == []

    async def test_remove_default_with_others_conflicts_until_default_moves(
        self, payment_method_service
    ):
        card_a = (await attach_card(payment_method_service, "pm_card_a")).payment_method
        card_b = (await attach_card(payment_method_service, "pm_card_b")).payment_method

        blocked = await payment_method_service.remove(TEST_USER_ID, card_a.id)
        assert blocked.outcome == TransitionOutcome.CONFLICT

        switched = await payment_method_service.set_default(TEST_USER_ID, card_b.id)
        assert switched.ok

        removed = await payment_method_service.remove(TEST_USER_ID, card_a.id)
        assert removed.ok

        methods = await payment_method_service.list_payment_methods(TEST_USER_ID)
        assert [m.id for m in methods] == [card_b.id]
        assert methods[0].is_default is True

    async def test_remove_last_card_is_allowed(self, payment_method_service):
        card = (await attach_card(payment_method_service)).payment_method

        result = await payment_method_service.remove(TEST_USER_ID, card.id)

        assert result.ok
        assert await payment_method_service.list_payment_methods(TEST_USER_ID) == []

    async def test_remove_unknown_card_is_not_found(self, payment_method_service):
        await attach_card(payment_method_service)

        result = await payment_method_service.remove(TEST_USER_ID, "pm_someone_else")

        assert result.outcome == TransitionOutcome.NOT_FOUND

    async def test_set_default_unknown_card_is_not_found(self, payment_method_service):
        await attach_card(payment_method_service)

        result = await payment_method_service.set_default(TEST_USER_ID, "pm_nope")

        assert result.outcome == TransitionOutcome.NOT_FOUND

    async def test_set_default_is_idempotent(self, payment_method_service, fake_payment):
        card = (await attach_card(payment_method_service)).payment_method
        calls_before = fake_payment.applied["set_default_payment_method"]

        result = await payment_method_service.set_default(TEST_USER_ID, card.id)

        assert result.ok
        assert result.payment_method.is_default
        assert fake_payment.applied["set_default_payment_method"] == calls_before

    async def test_set_default_moves_subscription_renewals(
        self, payment_method_service, fake_payment, test_db
    ):
        subscription = await create_test_subscription(test_db, fake_payment)
        customer_id = fake_payment.subscriptions[
            subscription.stripe_subscription_id
        ].customer_id
        new_card = fake_payment.add_card(customer_id, last4="1881")

        result = await payment_method_service.set_default(TEST_USER_ID, new_card.id)

        assert result.ok
        processor_sub = fake_payment.subscriptions[subscription.stripe_subscription_id]
        assert processor_sub.default_payment_method_id == new_card.id
        stored = await SubscriptionRepository(test_db).get_by_user_id(TEST_USER_ID)
        assert stored.default_payment_method_id == new_card.id
        assert stored.version == subscription.version + 1

    async def test_set_default_waits_for_running_transition(
        self, payment_method_service, fake_payment, test_db, lock_provider
    ):
        subscription = await create_test_subscription(test_db, fake_payment)
        customer_id = fake_payment.subscriptions[
            subscription.stripe_subscription_id
        ].customer_id
        new_card = fake_payment.add_card(customer_id, last4="1881")
        await lock_provider.acquire_lock(subscription_transition_key(TEST_USER_ID))

        result = await payment_method_service.set_default(TEST_USER_ID, new_card.id)

        assert result.outcome == TransitionOutcome.CONFLICT
        assert fake_payment.customers[customer_id]["default"] != new_card.id
        processor_sub = fake_payment.subscriptions[subscription.stripe_subscription_id]
        assert processor_sub.default_payment_method_id != new_card.id
        stored = await SubscriptionRepository(test_db).get_by_user_id(TEST_USER_ID)
        assert stored.default_payment_method_id == subscription.default_payment_method_id
        assert stored.version == subscription.version

    async def test_remove_waits_for_running_transition(
        self, payment_method_service, lock_provider
    ):
        card = (await attach_card(payment_method_service)).payment_method
        await lock_provider.acquire_lock(subscription_transition_key(TEST_USER_ID))

        result = await payment_method_service.remove(TEST_USER_ID, card.id)

        assert result.outcome == TransitionOutcome.CONFLICT
        methods = await payment_method_service.list_payment_methods(TEST_USER_ID)
        assert [m.id for m in methods] == [card.id]

    async def test_first_card_attach_retried_after_running_transition(
        self, payment_method_service, fake_payment, lock_provider
    ):
        handle = await payment_method_service.begin_attach(TEST_USER_ID)
        key = subscription_transition_key(TEST_USER_ID)
        token = await lock_provider.acquire_lock(key)

        blocked = await payment_method_service.confirm_attach(
            TEST_USER_ID, handle.client_secret, "pm_card_visa"
        )
        assert blocked.outcome == TransitionOutcome.CONFLICT

        await lock_provider.release_lock(key, token)
        done = await payment_method_service.confirm_attach(
            TEST_USER_ID, handle.client_secret, "pm_card_visa"
        )

        assert done.ok
        assert done.payment_method.is_default is True
        assert fake_payment.applied["confirm_setup_intent"] == 1

    @pytest.mark.parametrize("seed", [7, 42, 1234, 90210])
    async def test_random_operation_sequences_keep_one_default(
        self, seed, payment_method_service
    ):
        rng = random.Random(seed)
        tokens = iter(f"pm_card_{n}" for n in range(1000))

        for _ in range(30):
            methods = await payment_method_service.list_payment_methods(TEST_USER_ID)
            assert_single_default(methods)

            operation = rng.choice(["attach", "attach", "remove", "set_default"])
            if operation == "attach" or not methods:
                await attach_card(payment_method_service, next(tokens))
            elif operation == "remove":
                await payment_method_service.remove(
                    TEST_USER_ID, rng.choice(methods).id
                )
            else:
                await payment_method_service.set_default(
                    TEST_USER_ID, rng.choice(methods).id
                )

        assert_single_default(
            await payment_method_service.list_payment_methods(TEST_USER_ID)
        )
