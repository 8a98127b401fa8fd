import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable, Iterator
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from messagemind.core.auth import create_session_token
from messagemind.core.config import settings
from messagemind.models import Account
from messagemind.models.base import Base
from messagemind.providers import factory
from messagemind.providers.llm.mock_adapter import MockLLMProvider
from messagemind.repositories.account_repository import AccountRepository
from messagemind.services.analysis_processor import (
    AnalysisDispatcher,
    AnalysisProcessor,
)
from messagemind.services.pricing import DEFAULT_PRICING, PricingConfig, Tier

# Test user ID (consistent across tests for predictable auth)
TEST_USER_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")

# Cross-tenant counterpart to TEST_USER_ID
USER_B_ID = uuid.UUID("00000000-0000-0000-0000-000000000099")

# Security: This is a test-only secret. Production uses a real secret from env.
TEST_AUTH_SECRET = "test-secret-key-that-is-at-least-32-characters-long"  # nosec B105  # gitleaks:allow

AccountFactory = Callable[..., Awaitable[Account]]


def create_test_jwt(
    user_id: uuid.UUID = TEST_USER_ID,
    *,
    secret: str = TEST_AUTH_SECRET,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a signed JWT for test authentication.

    Args:
        user_id: User UUID to encode in the sub claim.
        secret: Signing secret (must match settings.auth_secret in tests).
        expires_delta: Time until expiration. Defaults to 1 hour.

    Returns:
        Encoded JWT string.
    """
    return create_session_token(user_id, secret=secret, expires_delta=expires_delta)


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest_asyncio.fixture(scope="function")
async def db_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Create a file-backed SQLite engine with the full schema.

    A file (not :memory:) gives every session its own connection, so
    concurrent ledger tests exercise real database locking.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'messagemind_test.db'}",
        echo=False,
        connect_args={"timeout": 30},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory for code that opens its own sessions."""
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def pricing() -> PricingConfig:
    """Default pricing table."""
    return DEFAULT_PRICING


@pytest.fixture
def make_account(
    session_factory: async_sessionmaker[AsyncSession],
) -> AccountFactory:
    """Factory that inserts an account with an exact balance and commits.

    The reset marker defaults to now, so no daily reset fires during the
    test. Ledger entries are not written; tests that check the ledger sum
    provision through AccountService instead.
    """

    async def _make(
        tier: str = "pro",
        *,
        balance: int = 100,
        daily_allowance: int | None = None,
        account_id: uuid.UUID | None = None,
        timezone: str = "UTC",
        last_daily_reset_at: datetime | None = None,
        free_monthly_uses: int = 0,
    ) -> Account:
        allowance = daily_allowance
        if allowance is None:
            allowance = DEFAULT_PRICING.policy_for(Tier(tier)).daily_allowance
        async with session_factory() as session:
            account = await AccountRepository.create(
                session,
                account_id=account_id or uuid.uuid4(),
                tier=tier,
                balance=balance,
                daily_allowance=allowance,
                last_daily_reset_at=last_daily_reset_at or datetime.now(UTC),
                timezone=timezone,
            )
            account.free_monthly_uses = free_monthly_uses
            await session.commit()
            return account

    return _make


# =============================================================================
# Provider Fixtures
# =============================================================================


@pytest.fixture
def mock_llm() -> Iterator[MockLLMProvider]:
    """Fixture that provides mock LLM and resets after test.

    Injects the mock into the factory singleton so code that calls
    get_llm_provider() receives it.

    Yields:
        MockLLMProvider with the canned schema-valid analyses.
    """
    mock = MockLLMProvider()

    factory._llm_provider = mock

    yield mock

    factory.reset_providers()


@pytest.fixture
def processor(
    session_factory: async_sessionmaker[AsyncSession],
    mock_llm: MockLLMProvider,
) -> AnalysisProcessor:
    """Processor wired to the test database and the mock provider."""
    return AnalysisProcessor(session_factory, mock_llm, timeout_seconds=5)


@pytest.fixture
def dispatcher(processor: AnalysisProcessor) -> AnalysisDispatcher:
    """Background dispatcher; tests await ``drain()`` to finish work."""
    return AnalysisDispatcher(processor)


# =============================================================================
# API Clients
# =============================================================================


def _api_client(account_id: uuid.UUID | None) -> AsyncClient:
    """Client for the real app, carrying a session cookie for ``account_id``."""
    from messagemind.main import app

    cookies = {}
    if account_id is not None:
        cookies[settings.auth_cookie_name] = create_test_jwt(account_id)
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test", cookies=cookies)


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    dispatcher: AnalysisDispatcher,
    monkeypatch: pytest.MonkeyPatch,
) -> AsyncGenerator[AsyncClient, None]:
    """Client signed in as TEST_USER_ID, with hosted-mode auth switched on.

    Requests use the test database, and submissions are processed by the
    test dispatcher (mock provider). Queued work is drained before the
    overrides are removed.
    """
    from messagemind.api.deps import get_dispatcher, reset_dependencies
    from messagemind.core.database import get_db
    from messagemind.main import app

    async def test_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = test_db
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    monkeypatch.setattr(settings, "auth_enabled", True)
    monkeypatch.setattr(settings, "auth_secret", SecretStr(TEST_AUTH_SECRET))

    async with _api_client(TEST_USER_ID) as ac:
        yield ac

    await dispatcher.drain()
    app.dependency_overrides.clear()
    reset_dependencies()


@pytest_asyncio.fixture
async def client_user_b(
    client: AsyncClient,  # noqa: ARG001 - shares the overrides
) -> AsyncGenerator[AsyncClient, None]:
    """Second account for cross-tenant checks."""
    async with _api_client(USER_B_ID) as ac:
        yield ac


@pytest_asyncio.fixture
async def unauthenticated_client(
    client: AsyncClient,  # noqa: ARG001 - shares the overrides
) -> AsyncGenerator[AsyncClient, None]:
    async with _api_client(None) as ac:
        yield ac


# =============================================================================
# Autouse
# =============================================================================


@pytest.fixture(autouse=True)
def disable_rate_limiting(monkeypatch: pytest.MonkeyPatch) -> None:
    """Limits are exercised in test_rate_limiting.py only."""
    from messagemind.core.rate_limiting import limiter

    monkeypatch.setattr(limiter, "enabled", False)
