"""Async database engine and session management."""

import logging
from typing import Any, AsyncGenerator, Callable, Optional

from sqlalchemy.exc import IntegrityError, OperationalError, ProgrammingError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from alias_decks.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()


class Base(DeclarativeBase):
    pass


_engine: Optional[AsyncEngine] = None
_session_maker: Optional[async_sessionmaker[AsyncSession]] = None


def get_engine() -> AsyncEngine:
    """Lazily create the process-wide engine (connection pool)."""
    global _engine
    if _engine is None:
        kwargs = {"pool_pre_ping": True}
        if not settings.database_url.startswith("sqlite"):
            kwargs["pool_size"] = settings.database_pool_size
        _engine = create_async_engine(settings.database_url, echo=False, **kwargs)
    return _engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    global _session_maker
    if _session_maker is None:
        _session_maker = async_sessionmaker(
            get_engine(), class_=AsyncSession, expire_on_commit=False
        )
    return _session_maker


def use_engine(engine: AsyncEngine) -> None:
    """Point the session factory at an existing engine (tests)."""
    global _engine, _session_maker
    _engine = engine
    _session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a session per request."""
    async with get_session_maker()() as session:
        yield session


def is_duplicate_object_error(error: Exception) -> bool:
    """DDL lost a race with another process creating the same object."""
    message = str(error).lower()
    return "already exists" in message or "duplicate" in message


async def run_schema_ddl(
    engine: AsyncEngine, fn: Callable[..., Any], attempts: int = 2
) -> Any:
    """
    Run check-then-create DDL in one transaction.

    Instances booting together can both pass the existence check; the loser
    gets "already exists" and runs again, now seeing the winner's objects.
    """
    for attempt in range(1, attempts + 1):
        try:
            async with engine.begin() as conn:
                return await conn.run_sync(fn)
        except (IntegrityError, OperationalError, ProgrammingError) as e:
            if attempt == attempts or not is_duplicate_object_error(e):
                raise
            logger.info(f"Schema object created concurrently, retrying: {e.orig}")


async def init_db() -> None:
    """Create tables that do not exist yet."""
    from alias_decks.db import models  # noqa: F401

    await run_schema_ddl(get_engine(), Base.metadata.create_all)


async def dispose_engine() -> None:
    """Close the pool; the next access creates a fresh engine."""
    global _engine, _session_maker
    if _engine is not None:
        await _engine.dispose()
        logger.info("Database engine disposed")
    _engine = None
    _session_maker = None
