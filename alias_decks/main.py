"""Main FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from alias_decks.api import auth, deck_json, decks, health
from alias_decks.config import get_settings
from alias_decks.db.session import dispose_engine, init_db
from alias_decks.exceptions import DeckServiceError
from alias_decks.middleware.rate_limit import limiter
from alias_decks.services.deck_store import get_deck_store

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    logger.info("Starting Alias Deck Service...")

    try:
        await init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    try:
        await get_deck_store().ensure_ready()
    except DeckServiceError as e:
        # uploads fail until storage is configured; reads and health still work
        logger.warning(f"Deck store not ready: {e.message}")

    logger.info("Alias Deck Service started successfully")

    yield

    # Shutdown
    logger.info("Shutting down Alias Deck Service...")
    await dispose_engine()


# Create FastAPI app
app = FastAPI(
    title="Alias Deck Service",
    description="""
## Community word decks for the Alias party game

- **Browse**: search published decks by text, language, category, tag and difficulty
- **Upload**: submit a deck as JSON or as a file; it is validated, normalized and stored
- **Import**: every deck has a stable JSON URL and an `alias://import` deep link
- **Moderate**: admins publish, hide or reject submitted decks

### Authentication
Uploads are anonymous (captcha and rate limit protected). Admin operations
accept either the shared admin token:
```
Authorization: Bearer <DECK_ADMIN_TOKEN>
```
or an API key whose owner is listed in `DECK_ADMIN_LOGINS`:
```
X-API-Key: ask_your_api_key_here
```
    """,
    version=health.VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# Add rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.cors_origins.split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DeckServiceError)
async def deck_service_exception_handler(request: Request, exc: DeckServiceError):
    """Render service errors as ``{"message": ...}``."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_payload(),
        headers=exc.headers,
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle uncaught exceptions."""
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )


# Include routers
app.include_router(health.router)
app.include_router(decks.router)
app.include_router(deck_json.router)
app.include_router(auth.router)


# Root endpoint
@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with service info."""
    return {
        "service": "Alias Deck Service",
        "version": health.VERSION,
        "docs": "/docs",
        "health": "/health",
        "decks": "/api/decks",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "alias_decks.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
