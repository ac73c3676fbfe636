"""Pytest configuration and fixtures."""

import os

# Settings are read at import time by several modules
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test.db"
os.environ["DECK_STORE_BACKEND"] = "memory"
os.environ["STORAGE_DRIVER"] = "memory"
os.environ["STORAGE_BUCKET"] = "test-decks"
os.environ["PUBLIC_SITE_URL"] = "https://decks.example.com"
os.environ["RATE_LIMIT_STORAGE_URI"] = "memory://"
os.environ["RATE_LIMIT_PER_MINUTE"] = "10000"
os.environ["UPLOAD_RATE_LIMIT"] = "1000"
for name in ("DECK_ADMIN_TOKEN", "DECK_ADMIN_LOGINS", "CAPTCHA_SECRET"):
    os.environ.pop(name, None)

from typing import AsyncGenerator, Callable, Optional  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from alias_decks.config import Settings, get_settings  # noqa: E402
from alias_decks.db.session import Base, get_db  # noqa: E402
from alias_decks.main import app  # noqa: E402
from alias_decks.middleware.rate_limit import limiter, reset_upload_rate_limiter  # noqa: E402
from alias_decks.services.deck_store import reset_deck_store  # noqa: E402
from alias_decks.services.storage import reset_blob_storage  # noqa: E402

ADMIN_TOKEN = "test-admin-token"


@pytest.fixture(autouse=True)
def reset_services():
    """Fresh storage, store and limiters for every test."""
    reset_blob_storage()
    reset_deck_store()
    reset_upload_rate_limiter()
    limiter.reset()
    yield
    reset_blob_storage()
    reset_deck_store()
    reset_upload_rate_limiter()
    get_settings.cache_clear()


@pytest.fixture
def configure(monkeypatch) -> Callable[..., Settings]:
    """Override settings through the environment for one test."""

    def apply(**values) -> Settings:
        for key, value in values.items():
            monkeypatch.setenv(key.upper(), str(value))
        get_settings.cache_clear()
        return get_settings()

    return apply


@pytest.fixture
def make_deck() -> Callable[..., dict]:
    """Build a valid deck document."""

    def build(
        title: str = "Test Deck",
        words: Optional[list] = None,
        word_count: int = 20,
        language: str = "en",
        **extra,
    ) -> dict:
        if words is None:
            words = [{"text": f"Word {index}", "difficulty": index % 5} for index in range(word_count)]
        deck = {
            "title": title,
            "author": "Tester",
            "language": language,
            "words": words,
        }
        deck.update(extra)
        return deck

    return build


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """Create test database engine."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/test.db", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async_session = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )

    async with async_session() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def admin_token(configure) -> str:
    """Enable moderation with a shared admin token."""
    configure(deck_admin_token=ADMIN_TOKEN)
    return ADMIN_TOKEN


@pytest.fixture
def admin_headers(admin_token: str) -> dict:
    return {"Authorization": f"Bearer {admin_token}"}


@pytest_asyncio.fixture
async def moderator_key(db_session: AsyncSession, configure) -> str:
    """API key whose owner is on the admin allowlist."""
    from alias_decks.auth.security import create_api_key

    configure(deck_admin_logins="moderator")
    _, full_key = await create_api_key(db_session, name="Moderator", owner="Moderator")
    await db_session.commit()
    return full_key


@pytest_asyncio.fixture
async def member_key(db_session: AsyncSession) -> str:
    """API key for an ordinary submitter."""
    from alias_decks.auth.security import create_api_key

    _, full_key = await create_api_key(db_session, name="Member", owner="player-one")
    await db_session.commit()
    return full_key
