"""Health check and system info routes."""

import logging

from fastapi import APIRouter
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from alias_decks.config import get_settings
from alias_decks.db.session import get_engine
from alias_decks.exceptions import DeckServiceError
from alias_decks.schemas.schemas import HealthResponse, LanguageInfo
from alias_decks.services.storage import get_blob_storage

logger = logging.getLogger(__name__)

router = APIRouter(tags=["System"])

settings = get_settings()

VERSION = "1.0.0"


async def _database_status() -> str:
    if settings.deck_store_backend == "memory":
        return "skipped"
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        logger.warning(f"Database health check failed: {e}")
        return "error"
    return "ok"


async def _storage_status() -> str:
    try:
        storage = get_blob_storage()
    except DeckServiceError as e:
        logger.warning(f"Storage not configured: {e.message}")
        return "error"
    return "ok" if await storage.health_check() else "error"


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check the health status of the service and its dependencies.",
)
async def health_check():
    """
    Health check endpoint.

    Returns the status of:
    - Database connection (skipped for the memory deck store)
    - Blob storage
    """
    db_status = await _database_status()
    storage_status = await _storage_status()

    overall_status = "healthy"
    if "error" in (db_status, storage_status):
        overall_status = "degraded"

    return HealthResponse(
        status=overall_status,
        version=VERSION,
        database=db_status,
        storage=storage_status,
        deck_store=settings.deck_store_backend,
    )


@router.get(
    "/v1/languages",
    response_model=list[LanguageInfo],
    summary="List deck languages",
    description="Languages a deck can be written in.",
)
async def list_languages():
    return [LanguageInfo(code=code, name=name) for code, name in settings.language_names.items()]
