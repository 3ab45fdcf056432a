"""
Pytest Configuration and Centralized Fixtures.

Provides reusable mocks and fixtures for testing:
- Mocked database sessions
- A real SQLite database (aiosqlite) for ledger integration tests
- Accounts, identities and settings
- Stub payment gateway
- API test client with auth overrides
"""

import os
from collections.abc import AsyncGenerator
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# Set required environment variables BEFORE importing app modules
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("FIREBASE_PROJECT_ID", "autonest-test")
os.environ.setdefault("PAYPAL_CLIENT_ID", "test-paypal-client")
os.environ.setdefault("PAYPAL_CLIENT_SECRET", "test-paypal-secret")
os.environ.setdefault("TRACING_ENABLED", "false")

from autonest.api.dependencies import get_current_identity
from autonest.config import Settings
from autonest.context import AppContext
from autonest.db.models import Account, Base
from autonest.models.domain import AccountData, UserIdentity
from autonest.services.payment_provider import CaptureResult, OrderResult
from autonest.services.run_logger import RunLogger
from autonest.services.tool_runner import build_catalog

TEST_UID = "firebase-uid-123"
ADMIN_UID = "firebase-admin-1"


# ============================================================================
# Settings
# ============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Settings with test credentials and fast timeouts."""
    return Settings(
        database_url="sqlite+aiosqlite://",
        firebase_project_id="autonest-test",
        paypal_client_id="test-paypal-client",
        paypal_client_secret="test-paypal-secret",
        keyword_tool_url="https://hooks.test/keyword-suggestions",
        blog_tool_url="https://hooks.test/blog-factory",
        audio_tool_url="https://hooks.test/transcribe",
        linkedin_tool_url="https://hooks.test/linkedin",
        http_timeout_seconds=2.0,
        tool_timeout_seconds=2.0,
        tracing_enabled=False,
    )


# ============================================================================
# Database Session Fixtures
# ============================================================================


@pytest.fixture
def db_session() -> AsyncMock:
    """Create a mock database session with sensible defaults."""
    session = AsyncMock(spec=AsyncSession)

    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    session.add = MagicMock()
    session.get = AsyncMock(return_value=None)

    # Default execute returns empty result
    mock_result = MagicMock()
    mock_result.scalar_one_or_none = MagicMock(return_value=None)
    mock_result.scalar = MagicMock(return_value=0)
    mock_result.scalars = MagicMock(return_value=MagicMock(all=MagicMock(return_value=[])))
    mock_result.all = MagicMock(return_value=[])
    session.execute = AsyncMock(return_value=mock_result)

    return session


@pytest.fixture
async def sqlite_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite database with the full schema, one connection per session."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'autonest.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(sqlite_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the SQLite test database."""
    return async_sessionmaker(sqlite_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def run_logger(session_factory: async_sessionmaker[AsyncSession]) -> RunLogger:
    """Run logger writing to the SQLite test database."""
    return RunLogger(session_factory)


async def seed_account(
    session_factory: async_sessionmaker[AsyncSession],
    uid: str = TEST_UID,
    credits: int = 500,
    email: str | None = "user@example.com",
    is_admin: bool = False,
) -> None:
    """Insert an account row directly."""
    async with session_factory() as session:
        session.add(
            Account(
                id=uid,
                email=email,
                display_name="Test User",
                credits=credits,
                is_admin=is_admin,
            )
        )
        await session.commit()


async def read_balance(session_factory: async_sessionmaker[AsyncSession], uid: str) -> int:
    """Balance as stored, read through a fresh session."""
    async with session_factory() as session:
        account = await session.get(Account, uid)
        assert account is not None
        return account.credits


@pytest.fixture
def seed(session_factory: async_sessionmaker[AsyncSession]):
    """Insert an account into the SQLite test database."""

    async def _seed(**kwargs: object) -> None:
        await seed_account(session_factory, **kwargs)  # type: ignore[arg-type]

    return _seed


@pytest.fixture
def balance_of(session_factory: async_sessionmaker[AsyncSession]):
    """Read a stored balance through a fresh session."""

    async def _balance_of(uid: str = TEST_UID) -> int:
        return await read_balance(session_factory, uid)

    return _balance_of


# ============================================================================
# Identity & Account Fixtures
# ============================================================================


@pytest.fixture
def test_identity() -> UserIdentity:
    """Verified Firebase identity of a regular user."""
    return UserIdentity(
        uid=TEST_UID,
        email="user@example.com",
        name="Test User",
        picture="https://example.com/avatar.png",
        email_verified=True,
    )


@pytest.fixture
def test_account() -> AccountData:
    """Account of a regular user with the default balance."""
    return AccountData(
        uid=TEST_UID,
        email="user@example.com",
        display_name="Test User",
        photo_url=None,
        credits=500,
        is_admin=False,
        created_at=datetime.now(UTC),
    )


@pytest.fixture
def admin_account() -> AccountData:
    """Account with admin rights."""
    return AccountData(
        uid=ADMIN_UID,
        email="admin@example.com",
        display_name="Admin",
        photo_url=None,
        credits=0,
        is_admin=True,
        created_at=datetime.now(UTC),
    )


# ============================================================================
# Payment Gateway Fixtures
# ============================================================================


class StubGateway:
    """Payment gateway returning canned results."""

    def __init__(
        self,
        capture_status: str = "COMPLETED",
        capture_error: Exception | None = None,
        amount_value: str | None = "10.00",
        currency: str | None = "USD",
    ):
        self.capture_status = capture_status
        self.capture_error = capture_error
        self.amount_value = amount_value
        self.currency = currency
        self.created: list[tuple[Decimal, int]] = []
        self.captured: list[str] = []

    async def create_order(self, amount: Decimal, credits: int) -> OrderResult:
        self.created.append((amount, credits))
        return OrderResult(order_id=f"ORDER-{len(self.created)}", status="CREATED")

    async def capture_order(self, order_id: str) -> CaptureResult:
        self.captured.append(order_id)
        if self.capture_error is not None:
            raise self.capture_error
        return CaptureResult(
            order_id=order_id,
            capture_id=f"CAPTURE-{order_id}",
            status=self.capture_status,
            amount_value=self.amount_value,
            currency=self.currency,
        )


@pytest.fixture
def stub_gateway() -> StubGateway:
    """Gateway whose captures complete."""
    return StubGateway()


@pytest.fixture
def make_gateway():
    """Build a stub gateway with a given capture status or error."""
    return StubGateway


# ============================================================================
# API Test Client Fixtures
# ============================================================================


@pytest.fixture
def app_context(
    test_settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    stub_gateway: StubGateway,
) -> AppContext:
    """AppContext over the SQLite database and the stub gateway."""
    return AppContext(
        settings=test_settings,
        engine=None,
        session_factory=session_factory,
        gateway=stub_gateway,
        tool_http_client=httpx.AsyncClient(),
        catalog=build_catalog(test_settings),
    )


@pytest.fixture
async def client(
    app_context: AppContext, test_identity: UserIdentity
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client for the app, signed in as the test user."""
    from autonest.main import app

    app.state.context = app_context
    app.dependency_overrides[get_current_identity] = lambda: test_identity
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
    app.state.context = None
    await app_context.tool_http_client.aclose()
