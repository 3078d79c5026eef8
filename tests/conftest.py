"""Shared pytest fixtures for the TikTok stats backend tests.

Fixture summary
---------------
settings        Cached Settings built from the test environment below.
db_session      Async session on a fresh in-memory SQLite database per test.
store           SnapshotStore over db_session.
vault           TokenVault keyed by the test secret.
tiktok_client   TikTokClient with test credentials (mock HTTP with respx).
client          httpx.AsyncClient against the FastAPI app with DB override.
make_account    Factory inserting a connected account with sealed tokens.

Everything runs without PostgreSQL, Redis or network access.
"""

import os
from collections.abc import AsyncGenerator
from typing import Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# ---------------------------------------------------------------------------
# Test environment bootstrap
# ---------------------------------------------------------------------------
# Set before any application module is imported; database.py builds its
# engine from DATABASE_URL at import time.

_TEST_ENV: dict[str, str] = {
    "DATABASE_URL": "sqlite+aiosqlite://",
    "REDIS_URL": "redis://localhost:6379/15",
    "JWT_SECRET": "test-secret-key-for-tests-only",
    "TIKTOK_CLIENT_KEY": "test-client-key",
    "TIKTOK_CLIENT_SECRET": "test-client-secret",
    "APP_URL": "http://dashboard.test",
    "CRON_SECRET": "test-cron-secret",
    "DEBUG": "true",
    "SCHEDULER_ENABLED": "false",
    "INGEST_ACCOUNT_DELAY_SECONDS": "0",
    "INGEST_PAGE_DELAY_SECONDS": "0",
    "INGEST_RATE_LIMIT_COOLDOWN_SECONDS": "0",
}

for _key, _value in _TEST_ENV.items():
    os.environ[_key] = _value

# ---------------------------------------------------------------------------
# Application imports (after env bootstrap)
# ---------------------------------------------------------------------------

from config import Settings, get_settings  # noqa: E402
from database import Base, get_db  # noqa: E402
from main import app  # noqa: E402
from middleware.rate_limit import limiter  # noqa: E402
from models.tiktok_account import TikTokAccount  # noqa: E402
from services.snapshot_store import SnapshotStore  # noqa: E402
from services.tiktok_service import TikTokClient  # noqa: E402
from services.token_vault import TokenVault  # noqa: E402

# Clear the lru_cache so Settings() re-reads from the patched environment.
get_settings.cache_clear()


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest.fixture(autouse=True)
def _reset_rate_limits():
    """Each test starts with fresh SlowAPI counters."""
    limiter.reset()
    yield


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Session on a private in-memory database with all tables created."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session

    await engine.dispose()


@pytest.fixture
def store(db_session: AsyncSession) -> SnapshotStore:
    return SnapshotStore(db_session)


@pytest.fixture
def vault(settings: Settings) -> TokenVault:
    return TokenVault.from_settings(settings)


@pytest.fixture
def tiktok_client(settings: Settings) -> TikTokClient:
    return TikTokClient(settings)


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client for the app, sharing the test database session."""

    async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def make_account(store: SnapshotStore, vault: TokenVault):
    """Factory creating a connected account holding sealed tokens."""

    async def _make(
        open_id: str = "open-id-1",
        display_name: str = "creator_one",
        access_token: str = "access-1",
        refresh_token: Optional[str] = "refresh-1",
    ) -> TikTokAccount:
        return await store.upsert_account_by_provider_id(
            open_id,
            vault.seal_token(access_token),
            vault.seal_token(refresh_token) if refresh_token else None,
            display_name,
        )

    return _make
