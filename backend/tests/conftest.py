"""Shared test configuration and fixtures.

Each test gets its own SQLite database file (via aiosqlite) so tests that
commit, or that run several sessions concurrently, stay isolated.
"""

import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_dummy")
os.environ.setdefault("STRIPE_MONTHLY_PRICE_ID", "price_monthly_test")
os.environ.setdefault("STRIPE_ANNUAL_PRICE_ID", "price_annual_test")
os.environ.setdefault("EMAIL_API_URL", "")

import uuid  # noqa: E402
from collections.abc import AsyncGenerator, Awaitable, Callable  # noqa: E402
from datetime import timedelta  # noqa: E402

import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool  # noqa: E402

from resumakr.auth.jwt import sign_access_token  # noqa: E402
from resumakr.billing.timeutils import utcnow  # noqa: E402
from resumakr.database import Base, get_db, get_session_factory  # noqa: E402
from resumakr.main import app  # noqa: E402
from resumakr.models.user import User  # noqa: E402

# ---------------------------------------------------------------------------
# Per-test database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """A fresh SQLite file per test, with every table created."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'resumakr_test.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Provide an httpx AsyncClient wired to the per-test database."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

UserFactory = Callable[..., Awaitable[User]]


@pytest_asyncio.fixture
async def make_user(db_session: AsyncSession) -> UserFactory:
    """Factory creating committed users. Keyword arguments override columns."""

    async def _make(**overrides) -> User:
        unique = uuid.uuid4().hex[:8]
        fields = {
            "email": f"user-{unique}@test.com",
            "full_name": "Test User",
            "role": "user",
            "is_active": True,
        }
        fields.update(overrides)
        user = User(**fields)
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user

    return _make


@pytest_asyncio.fixture
async def free_user(make_user: UserFactory) -> User:
    return await make_user(full_name="Free User")


@pytest_asyncio.fixture
async def paid_user(make_user: UserFactory) -> User:
    now = utcnow()
    return await make_user(
        full_name="Paid User",
        is_subscribed=True,
        subscription_plan="monthly",
        subscription_started_at=now - timedelta(days=3),
        subscription_end_date=now + timedelta(days=27),
        external_customer_id=f"cus_{uuid.uuid4().hex[:12]}",
        external_subscription_id=f"sub_{uuid.uuid4().hex[:12]}",
    )


@pytest_asyncio.fixture
async def admin_user(make_user: UserFactory) -> User:
    return await make_user(full_name="Admin User", role="admin")


def auth_headers_for(user: User) -> dict[str, str]:
    """Authorization headers with a fresh access token for ``user``."""
    token = sign_access_token(user.id)
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def headers_for() -> Callable[[User], dict[str, str]]:
    return auth_headers_for


@pytest_asyncio.fixture
async def free_headers(free_user: User) -> dict[str, str]:
    return auth_headers_for(free_user)


@pytest_asyncio.fixture
async def paid_headers(paid_user: User) -> dict[str, str]:
    return auth_headers_for(paid_user)


@pytest_asyncio.fixture
async def admin_headers(admin_user: User) -> dict[str, str]:
    return auth_headers_for(admin_user)
