"""
Pytest configuration and shared fixtures for marketplace tests.

Every test gets its own SQLite file. Connections open their transactions with
BEGIN IMMEDIATE, so concurrent requests serialize on the database write lock
the way row locks serialize them on PostgreSQL.
"""
import os
import tempfile
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Callable, Dict, Optional, Sequence

# Settings are read once; configure them before the application is imported.
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{os.path.join(tempfile.gettempdir(), 'tcgmarket_app.db')}",
)
os.environ.setdefault("JWT_SECRET", "test-jwt-secret-with-enough-length-for-hs256")
os.environ.setdefault("ADMIN_USER_IDS", "")
os.environ.setdefault("REPORT_RATE_LIMIT_BACKEND", "memory")

import jwt
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from tcgmarket.core.config import get_settings
from tcgmarket.core.database import create_schema, get_db_session
from tcgmarket.main import app
from tcgmarket.services.rate_limiter import get_report_rate_limiter

settings = get_settings()


@pytest.fixture
async def test_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Fresh SQLite database with the full schema."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'tcgmarket_test.db'}",
        connect_args={"timeout": 30},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker:
    """Session factory for seeding and inspecting the test database.

    Close sessions before issuing requests; an open transaction holds the
    write lock.
    """
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the app with the test database injected."""

    async def _override_db_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = _override_db_session
    await get_report_rate_limiter().reset()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    await get_report_rate_limiter().reset()


def make_token(
    user_id: str,
    roles: Optional[Sequence[str]] = None,
    expires_in: timedelta = timedelta(hours=1),
    secret: Optional[str] = None,
    **claims,
) -> str:
    payload = {
        "sub": user_id,
        "exp": datetime.now(timezone.utc) + expires_in,
        **claims,
    }
    if roles is not None:
        payload["roles"] = list(roles)
    key = secret or settings.JWT_SECRET.get_secret_value()
    return jwt.encode(payload, key, algorithm="HS256")


@pytest.fixture
def auth_headers() -> Callable[..., Dict[str, str]]:
    """Build an Authorization header: ``auth_headers("alice", roles=["ADMIN"])``."""

    def _headers(user_id: str, roles: Optional[Sequence[str]] = None, **claims) -> Dict[str, str]:
        return {"Authorization": f"Bearer {make_token(user_id, roles=roles, **claims)}"}

    return _headers


@pytest.fixture
def token_factory() -> Callable[..., str]:
    return make_token


@pytest.fixture
def mock_redis():
    """Mock Redis client."""
    from unittest.mock import AsyncMock, MagicMock

    redis_mock = AsyncMock()
    redis_mock.ping = AsyncMock(return_value=True)
    redis_mock.delete = AsyncMock(return_value=1)
    redis_mock.pipeline = MagicMock()
    return redis_mock


LISTING_BODY = {
    "title": "Charizard Base Set Holo",
    "description": "Near mint, stored in a sleeve",
    "priceCents": 12500,
    "quantity": 1,
    "game": "POKEMON",
    "category": "CARD",
    "language": "EN",
    "condition": "NM",
}


@pytest.fixture
def listing_body() -> Callable[..., dict]:
    def _body(**overrides) -> dict:
        return {**LISTING_BODY, **overrides}

    return _body


@pytest.fixture
def create_listing(client, auth_headers, listing_body):
    """POST a listing and optionally publish it; returns the listing payload."""

    async def _create(owner: str = "seller", publish: bool = False, **overrides) -> dict:
        response = await client.post(
            "/api/v1/marketplace/listings",
            json=listing_body(**overrides),
            headers=auth_headers(owner),
        )
        assert response.status_code == 201, response.text
        listing = response.json()["data"]["listing"]
        if publish:
            response = await client.post(
                f"/api/v1/marketplace/listings/{listing['id']}/publish",
                headers=auth_headers(owner),
            )
            assert response.status_code == 200, response.text
            listing = response.json()["data"]
        return listing

    return _create


@pytest.fixture
def add_to_collection(client, auth_headers):
    """PUT a collection row for ``user_id``."""

    async def _add(user_id: str, card_id: str, quantity: int, language: str = "EN", condition: str = "NM") -> dict:
        response = await client.put(
            "/api/v1/collection/items",
            json={"cardId": card_id, "language": language, "condition": condition, "quantity": quantity},
            headers=auth_headers(user_id),
        )
        assert response.status_code == 200, response.text
        return response.json()["data"]

    return _add
