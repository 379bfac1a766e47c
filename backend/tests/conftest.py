"""Shared pytest fixtures.

Database tests run against a throwaway SQLite file per test (aiosqlite).
Instagram API calls are mocked with respx or with fake fetchers passed to
the services directly; nothing here touches the network.
"""

import os
from datetime import datetime, timedelta, timezone

# Settings are cached on first import, so the environment must be in place
# before any application module is imported.
_TEST_ENV_DEFAULTS: dict[str, str] = {
    "DATABASE_URL": "sqlite+aiosqlite:///:memory:",
    "JWT_SECRET": "test-jwt-secret",
    "TOKEN_ENCRYPTION_KEY": "test-token-encryption-key",
    "INSTAGRAM_APP_ID": "test-app-id",
    "INSTAGRAM_APP_SECRET": "test-app-secret",
    "BASE_URL": "http://testserver",
}
for _key, _default in _TEST_ENV_DEFAULTS.items():
    os.environ.setdefault(_key, _default)

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from jose import jwt  # noqa: E402
from sqlalchemy import event  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from config import get_settings  # noqa: E402
from database import Base, get_db  # noqa: E402
from middleware.rate_limit import limiter  # noqa: E402
from models.instagram_account import InstagramAccount  # noqa: E402
from services.credentials import AccountCredential  # noqa: E402
from services.oauth_state import clear_states  # noqa: E402
from services.token_crypto import encrypt_token  # noqa: E402

OWNER_ID = "user-owner"
OTHER_OWNER_ID = "user-other"
IG_USER_ID = "17841400000000001"
ACCESS_TOKEN = "IGAAtest-long-lived-token"
GRAPH_HOST = "graph.instagram.com"
GRAPH_PREFIX = f"/{get_settings().graph_api_version}"


def make_jwt(user_id: str) -> str:
    settings = get_settings()
    return jwt.encode(
        {"sub": user_id, "type": "access"},
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )


@pytest.fixture(autouse=True)
def _isolate_process_state():
    """Keep rate-limit and OAuth state from leaking between tests."""
    limiter.enabled = False
    clear_states()
    yield
    clear_states()
    limiter.enabled = True


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        # Let background snapshot writes commit while a request still reads
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def account(session_maker) -> InstagramAccount:
    async with session_maker() as db:
        account = InstagramAccount(
            owner_user_id=OWNER_ID,
            ig_user_id=IG_USER_ID,
            username="studio.test",
            name="Studio Test",
            account_type="BUSINESS",
            followers_count=1000,
            follows_count=150,
            media_count=42,
            access_token=encrypt_token(ACCESS_TOKEN),
            token_expires_at=datetime.now(timezone.utc) + timedelta(days=50),
        )
        db.add(account)
        await db.commit()
        await db.refresh(account)
        return account


@pytest.fixture
def credential() -> AccountCredential:
    return AccountCredential(
        account_id="acc-1",
        ig_user_id=IG_USER_ID,
        access_token=ACCESS_TOKEN,
        followers_count=1000,
        account_type="BUSINESS",
    )


@pytest_asyncio.fixture
async def client(session_maker, monkeypatch):
    """API client authenticated as OWNER_ID against the per-test database."""
    from main import app
    import services.snapshot_writer as snapshot_writer

    async def override_get_db():
        async with session_maker() as session:
            yield session

    # Background snapshot writes open their own sessions
    monkeypatch.setattr(snapshot_writer, "async_session", session_maker)

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://testserver",
        headers={"Authorization": f"Bearer {make_jwt(OWNER_ID)}"},
    ) as api_client:
        yield api_client

    app.dependency_overrides.pop(get_db, None)
