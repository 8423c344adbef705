"""
Shared fixtures: in-memory SQLite database, the FastAPI app wired to it,
seeded users/keys, and helpers for session tokens and usage counts.
"""

import datetime
import os

# Settings are read at import time; point them at test values first.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SESSION_JWT_KEY", "test-session-secret")

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.auth.keygen import generate_api_key
from app.core.config import settings
from app.core.database import Base, get_db_session
from app.main import app as fastapi_app
from app.models.api_key import ApiKey
from app.models.usage import UsageEvent
from app.models.user import User
from app.services.llm_client import InferenceClient, get_inference_client


def as_utc(ts: datetime.datetime) -> datetime.datetime:
    """SQLite returns naive datetimes; everything is stored as UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=datetime.timezone.utc)
    return ts


def make_session_token(user_id: str, **claims) -> str:
    return jwt.encode(
        {"sub": user_id, **claims},
        settings.SESSION_JWT_KEY,
        algorithm=settings.SESSION_JWT_ALGORITHM,
    )


async def count_usage(session: AsyncSession, **filters) -> int:
    stmt = select(func.count()).select_from(UsageEvent).filter_by(**filters)
    return (await session.execute(stmt)).scalar_one()


async def usage_rows(session: AsyncSession, **filters) -> list[UsageEvent]:
    stmt = (
        select(UsageEvent)
        .filter_by(**filters)
        .order_by(UsageEvent.timestamp.asc())
        .execution_options(populate_existing=True)
    )
    return list((await session.execute(stmt)).scalars().all())


def chat_completion_body(content: str = "Hello there!", total_tokens: int = 42) -> dict:
    return {
        "id": "chatcmpl-123",
        "object": "chat.completion",
        "created": 1700000000,
        "model": "ai/gpt-oss-20b",
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": "stop",
            }
        ],
        "usage": {"prompt_tokens": 10, "completion_tokens": 32, "total_tokens": total_tokens},
    }


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def db_session(engine):
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session


@pytest.fixture
def upstream_requests():
    """Requests seen by the fake model server."""
    return []


@pytest.fixture
def upstream_handler(upstream_requests):
    """Default fake upstream: a valid chat.completion. Tests may replace it."""

    def handler(request: httpx.Request) -> httpx.Response:
        upstream_requests.append(request)
        return httpx.Response(200, json=chat_completion_body())

    return handler


@pytest.fixture
async def inference_client(upstream_handler):
    client = InferenceClient(
        base_url="http://upstream.test/v1",
        transport=httpx.MockTransport(upstream_handler),
    )
    yield client
    await client.aclose()


@pytest.fixture
def test_app(db_session, inference_client):
    async def get_test_db():
        yield db_session

    fastapi_app.dependency_overrides[get_db_session] = get_test_db
    fastapi_app.dependency_overrides[get_inference_client] = lambda: inference_client

    yield fastapi_app

    fastapi_app.dependency_overrides.clear()


@pytest.fixture
async def client(test_app):
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
async def user(db_session) -> User:
    user = User(id="user_alice", email="alice@example.com", name="Alice")
    db_session.add(user)
    await db_session.commit()
    return user


@pytest.fixture
async def other_user(db_session) -> User:
    user = User(id="user_bob", email="bob@example.com", name="Bob")
    db_session.add(user)
    await db_session.commit()
    return user


@pytest.fixture
async def api_key(db_session, user) -> ApiKey:
    key = ApiKey(key=generate_api_key(), name="Primary", user_id=user.id)
    db_session.add(key)
    await db_session.commit()
    return key


@pytest.fixture
async def inactive_key(db_session, user) -> ApiKey:
    key = ApiKey(key=generate_api_key(), name="Disabled", user_id=user.id, is_active=False)
    db_session.add(key)
    await db_session.commit()
    return key


@pytest.fixture
def auth_headers(api_key) -> dict[str, str]:
    return {"Authorization": f"Bearer {api_key.key}"}


@pytest.fixture
def session_headers(user) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_session_token(user.id)}"}
