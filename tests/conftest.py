# Shared pytest configuration and fixtures for all test types
import os

# Settings are read at import time; point every backend at in-process fakes
os.environ.setdefault("LOCK_PROVIDER", "memory")
os.environ.setdefault("USAGE_PROVIDER", "static")
os.environ.setdefault("RATE_LIMIT_STORAGE_URI", "memory://")
os.environ.setdefault("AUTH_JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("STRIPE_PRICE_ID_BASIC", "price_basic")
os.environ.setdefault("STRIPE_PRICE_ID_PRO", "price_pro")
os.environ.setdefault("STRIPE_PRICE_ID_STUDIO", "price_studio")

from datetime import datetime, timedelta, timezone  # noqa: E402
from typing import Optional  # noqa: E402
from unittest.mock import patch  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import AsyncClient, ASGITransport  # noqa: E402
from slowapi import Limiter  # noqa: E402
from slowapi.util import get_remote_address  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

# Create test limiter with no limits and in-memory storage; route-level
# limits are registered on it but never enforced
test_limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],
    storage_uri="memory://",
    enabled=False,
)

# Patch the limiter before importing the app so decorators use test limiter
with patch("common.providers.rate_limiter.limiter.limiter", test_limiter):
    from api.main import app  # noqa: E402

from common.core.config import settings  # noqa: E402
from common.db.base import Base  # noqa: E402
from common.db.session import get_db  # noqa: E402
from common.providers.locking.memory_lock import MemoryLock  # noqa: E402
from packages.auth.dependencies import get_current_active_user  # noqa: E402
from packages.auth.models.domain.authenticated_user import (  # noqa: E402
    AuthenticatedUser,
)
from packages.billing.models.database import (  # noqa: E402
    BillingCustomerEntity,
    SubscriptionEntity,
)
from packages.billing.models.domain.enums import (  # noqa: E402
    SubscriptionStatus,
    SubscriptionTier,
)
from packages.billing.models.domain.subscription import Subscription  # noqa: E402
from packages.billing.providers.usage.static_usage import (  # noqa: E402
    StaticUsageProvider,
)
from tests.fixtures import FakePaymentProvider  # noqa: E402

# Test database URL
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TEST_USER_ID = "user_2b7f1c"


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create test database engine and initialize schema."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def test_connection(test_engine):
    """Create test connection with outer transaction for rollback isolation."""
    async with test_engine.connect() as connection:
        trans = await connection.begin()
        yield connection
        await trans.rollback()


@pytest_asyncio.fixture(scope="function")
async def test_session_factory(test_connection):
    """Create session factory bound to test connection.

    Using join_transaction_mode="create_savepoint" so the commits made by
    services and transaction() become savepoint releases.
    """
    return async_sessionmaker(
        bind=test_connection,
        class_=AsyncSession,
        expire_on_commit=False,
        join_transaction_mode="create_savepoint",
    )


@pytest_asyncio.fixture(scope="function")
async def test_db(test_session_factory):
    """Create a test database session."""
    async with test_session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function", autouse=True)
async def patch_lazy_sessions(test_session_factory, monkeypatch):
    """Route transaction() (webhooks, workers) to the test database."""
    monkeypatch.setattr("common.db.scoped.AsyncSessionLocal", test_session_factory)


@pytest.fixture(autouse=True)
def fast_retries(monkeypatch):
    """Keep the retry policy but drop the waiting."""
    monkeypatch.setattr(settings, "processor_retry_base_delay_seconds", 0.0)
    monkeypatch.setattr(settings, "processor_retry_max_delay_seconds", 0.0)


@pytest.fixture(autouse=True)
def fake_payment(monkeypatch):
    """Every service that asks the factory for a processor gets the fake."""
    provider = FakePaymentProvider()
    monkeypatch.setattr(
        "packages.billing.providers.payment.factory.StripePaymentProvider",
        lambda: provider,
    )
    return provider


@pytest.fixture(autouse=True)
def usage_provider(monkeypatch):
    provider = StaticUsageProvider()
    monkeypatch.setattr(
        "packages.billing.providers.usage.factory._usage_provider", provider
    )
    return provider


@pytest.fixture(autouse=True)
def lock_provider(monkeypatch):
    provider = MemoryLock()
    monkeypatch.setattr("common.providers.locking.factory._lock_provider", provider)
    return provider


@pytest.fixture
def test_user():
    """Create a test authenticated user."""
    return AuthenticatedUser(
        user_id=TEST_USER_ID, email="ana@example.com", access_token="test-token"
    )


@pytest_asyncio.fixture(scope="function")
async def client(test_db: AsyncSession, test_user):
    """Create a test client authenticated as test_user."""

    def override_get_db():
        try:
            yield test_db
        finally:
            pass

    def override_get_current_active_user():
        return test_user

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_active_user] = override_get_current_active_user

    try:
        async with AsyncClient(
            transport=ASGITransport(app=app), base_url="http://test"
        ) as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def anon_client(test_db: AsyncSession):
    """Test client with real bearer token authentication."""

    def override_get_db():
        try:
            yield test_db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    try:
        async with AsyncClient(
            transport=ASGITransport(app=app), base_url="http://test"
        ) as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()


async def create_test_customer(
    db: AsyncSession, fake: FakePaymentProvider, user_id: str = TEST_USER_ID
) -> str:
    """Create a processor customer and its local mapping. Returns the customer id."""
    customer_id = await fake.create_customer(user_id=user_id, email=None)
    db.add(BillingCustomerEntity(user_id=user_id, stripe_customer_id=customer_id))
    await db.commit()
    return customer_id


async def create_test_subscription(
    db: AsyncSession,
    fake: FakePaymentProvider,
    user_id: str = TEST_USER_ID,
    tier: SubscriptionTier = SubscriptionTier.PRO,
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
    customer_id: Optional[str] = None,
    cancel_at_period_end: bool = False,
    last_synced_at: Optional[datetime] = None,
) -> Subscription:
    """
    Seed a subscription that exists both at the fake processor and locally.
    """
    if customer_id is None:
        customer_id = await create_test_customer(db, fake, user_id)
    card = fake.add_card(customer_id, default=True)

    processor_sub = await fake.create_subscription(
        customer_id=customer_id,
        user_id=user_id,
        tier=tier,
        payment_method_id=card.id,
        idempotency_key=f"seed:{user_id}",
    )
    processor_sub = fake.set_processor_state(
        processor_sub.id, status=status, cancel_at_period_end=cancel_at_period_end
    )

    entity = SubscriptionEntity(
        user_id=user_id,
        tier=tier.value,
        status=status.value,
        stripe_subscription_id=processor_sub.id,
        default_payment_method_id=card.id,
        current_period_start=processor_sub.current_period_start,
        current_period_end=processor_sub.current_period_end,
        cancel_at_period_end=cancel_at_period_end,
        version=1,
        last_synced_at=last_synced_at or datetime.now(timezone.utc),
    )
    db.add(entity)
    await db.commit()
    await db.refresh(entity)
    return Subscription.model_validate(entity)


async def create_beta_subscription(
    db: AsyncSession, user_id: str = TEST_USER_ID
) -> Subscription:
    """Beta is granted out-of-band: no processor subscription behind it."""
    entity = SubscriptionEntity(
        user_id=user_id,
        tier=SubscriptionTier.BETA.value,
        status=SubscriptionStatus.ACTIVE.value,
        version=1,
        current_period_end=datetime.now(timezone.utc) + timedelta(days=365),
    )
    db.add(entity)
    await db.commit()
    await db.refresh(entity)
    return Subscription.model_validate(entity)


@pytest_asyncio.fixture(scope="function")
async def sample_customer(test_db: AsyncSession, fake_payment):
    """Processor customer for the test user, no cards yet."""
    return await create_test_customer(test_db, fake_payment)


@pytest_asyncio.fixture(scope="function")
async def sample_subscription(test_db: AsyncSession, fake_payment):
    """Active Pro subscription for the test user."""
    return await create_test_subscription(test_db, fake_payment)
