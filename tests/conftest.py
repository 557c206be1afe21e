"""Shared pytest fixtures for Hamme tests."""
import os

# Settings are cached on first import; pin the test configuration before any
# ``app`` module is loaded.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import uuid
from datetime import date

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.database import Base, get_db
from app.main import app
from app.models.user import User
from app.utils.security import create_access_token, hash_password

PASSWORD = "secret123"


@pytest.fixture
async def test_engine(tmp_path):
    """Async SQLite engine on a throwaway file database."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'hamme.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def test_session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, expire_on_commit=False)


@pytest.fixture
async def db_session(test_session_factory):
    async with test_session_factory() as session:
        yield session


@pytest.fixture
def make_user(test_session_factory):
    """Factory persisting a user in its own committed transaction."""

    async def _make_user(
        name: str = "Alex",
        email: str | None = None,
        date_of_birth: date | None = None,
        age: int | None = None,
        bio: str | None = None,
    ) -> User:
        user = User(
            email=email or f"{name.lower()}-{uuid.uuid4().hex[:8]}@example.com",
            password_hash=hash_password(PASSWORD),
            name=name,
            date_of_birth=date_of_birth,
            age=age,
            bio=bio,
            photos=[],
        )
        async with test_session_factory() as session:
            session.add(user)
            await session.commit()
        return user

    return _make_user


@pytest.fixture
async def api_client(test_session_factory):
    """Async HTTP client hitting the FastAPI app with the test DB."""

    async def override_get_db():
        async with test_session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """Build a bearer header for a persisted user."""

    def _auth_headers(user: User) -> dict[str, str]:
        token = create_access_token(user.id, user.email)
        return {"Authorization": f"Bearer {token}"}

    return _auth_headers
