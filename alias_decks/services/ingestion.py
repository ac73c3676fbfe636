"""Upload pipeline: throttle, verify, parse, validate, store."""

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from alias_decks.auth.security import Caller
from alias_decks.config import Settings, get_settings
from alias_decks.db.models import DeckStatus
from alias_decks.exceptions import (
    CaptchaFailedError,
    CaptchaRequiredError,
    MalformedInputError,
    RateLimitedError,
    SizeExceededError,
)
from alias_decks.middleware.rate_limit import UploadRateLimiter, get_upload_rate_limiter
from alias_decks.schemas.deck import validate_deck
from alias_decks.schemas.schemas import DeckMetadata
from alias_decks.services.captcha import CaptchaVerifier, get_captcha_verifier
from alias_decks.services.deck_store import DeckStore, get_deck_store
from alias_decks.services.moderation import initial_status
from alias_decks.services.urls import deck_import_url, deck_json_url, deck_page_url

logger = logging.getLogger(__name__)

CAPTCHA_BODY_FIELD = "captchaToken"


@dataclass
class UploadRequest:
    """Raw upload as received by the HTTP layer."""

    payload: bytes
    captcha_token: Optional[str] = None
    cover_url: Optional[str] = None
    client_ip: Optional[str] = None
    caller: Caller = field(default_factory=Caller)


@dataclass
class IngestionResult:
    slug: str
    status: DeckStatus
    deck_url: str
    json_url: str
    import_url: str
    metadata: DeckMetadata

    def to_response(self) -> dict[str, Any]:
        return {
            "slug": self.slug,
            "deckUrl": self.deck_url,
            "jsonUrl": self.json_url,
            "importUrl": self.import_url,
            "status": self.status.value,
        }


class DeckIngestionService:
    """Turns an untrusted upload into a stored, indexed deck."""

    def __init__(
        self,
        store: DeckStore,
        rate_limiter: UploadRateLimiter,
        captcha: CaptchaVerifier,
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.rate_limiter = rate_limiter
        self.captcha = captcha
        self.settings = settings or get_settings()

    async def _check_rate_limit(self, client_ip: Optional[str]) -> None:
        if not self.rate_limiter.enabled:
            return
        result = await self.rate_limiter.check(client_ip or "anonymous")
        if not result.success:
            now = time.time()
            logger.warning(f"Upload rate limit exceeded for {client_ip}")
            raise RateLimitedError(
                retry_after=result.retry_after(now),
                limit=result.limit,
                remaining=result.remaining,
                reset=int(result.reset),
            )

    async def _check_captcha(self, token: Optional[str], client_ip: Optional[str]) -> None:
        if not self.captcha.enabled:
            return
        if not token:
            raise CaptchaRequiredError()
        result = await self.captcha.verify(token, client_ip)
        if not result.success:
            logger.info(f"Captcha rejected upload from {client_ip}: {result.error}")
            raise CaptchaFailedError()

    def _decode(self, payload: bytes) -> Any:
        if len(payload) > self.settings.max_upload_bytes:
            raise SizeExceededError("File too large")
        try:
            return json.loads(payload)
        except (UnicodeDecodeError, ValueError) as e:
            raise MalformedInputError() from e

    async def ingest(self, request: UploadRequest) -> IngestionResult:
        """
        Run an upload through every gate and persist it.

        Order: rate limit, size bound, JSON decode, captcha (the token may
        travel inside the JSON body), word-count bound, schema validation,
        moderation status, then slug/hash/blob/row in the store.
        """
        client_ip = request.client_ip or request.caller.client_ip
        await self._check_rate_limit(client_ip)

        document = self._decode(request.payload)

        token = request.captcha_token
        if isinstance(document, dict):
            body_token = document.pop(CAPTCHA_BODY_FIELD, None)
            if not token and isinstance(body_token, str):
                token = body_token
        await self._check_captcha(token, client_ip)

        if isinstance(document, dict):
            words = document.get("words")
            if isinstance(words, list) and len(words) > self.settings.max_deck_words:
                raise SizeExceededError("Deck too large")

        deck = validate_deck(document)
        status = initial_status(request.caller.is_admin, self.settings)

        metadata = await self.store.create(
            deck,
            cover_url=request.cover_url,
            submitted_by=request.caller.identity,
            status=status,
        )
        logger.info(f"Ingested deck '{metadata.slug}' from {client_ip} ({metadata.word_count} words)")

        return IngestionResult(
            slug=metadata.slug,
            status=metadata.status,
            deck_url=deck_page_url(metadata.slug, self.settings),
            json_url=deck_json_url(metadata.slug, self.settings),
            import_url=deck_import_url(metadata.slug, self.settings),
            metadata=metadata,
        )


def get_ingestion_service() -> DeckIngestionService:
    """Dependency wiring the pipeline to the process-wide services."""
    return DeckIngestionService(
        store=get_deck_store(),
        rate_limiter=get_upload_rate_limiter(),
        captcha=get_captcha_verifier(),
    )
