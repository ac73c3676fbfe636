"""Deck metadata store: shared create/seed flow and backend selection."""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from alias_decks.config import Settings, get_settings
from alias_decks.data.sample_decks import SAMPLE_DECK_SEEDS, DeckSeed
from alias_decks.db.models import DeckStatus
from alias_decks.exceptions import DeckValidationError, StorageUnavailableError
from alias_decks.schemas.deck import Deck, load_stored_deck, validate_deck
from alias_decks.schemas.schemas import (
    DeckFacets,
    DeckFilters,
    DeckMetadata,
    DeckRecord,
    DeckSearchResult,
)
from alias_decks.services.hashing import sha256_from_string
from alias_decks.services.moderation import initial_status, resolve_rejection_reason
from alias_decks.services.normalization import (
    compute_difficulty_range,
    normalize_deck,
    serialize_deck,
)
from alias_decks.services.slug import create_slug, generate_unique_slug
from alias_decks.services.storage import BlobStorage, get_blob_storage, put_deck_json

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 30
DEFAULT_PAGE_SIZE = 12
SAMPLE_WORD_COUNT = 12
MAX_SLUG_ATTEMPTS = 5


class SlugConflictError(Exception):
    """Raised by a backend when the slug was taken between the existence check and the insert."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def clamp_page(page: Optional[int], page_size: Optional[int]) -> tuple[int, int]:
    page = max(1, 1 if page is None else page)
    if page_size is None:
        page_size = DEFAULT_PAGE_SIZE
    return page, max(1, min(MAX_PAGE_SIZE, page_size))


def effective_statuses(statuses: Optional[list[DeckStatus]]) -> list[DeckStatus]:
    return list(statuses) if statuses else [DeckStatus.PUBLISHED]


def build_metadata(
    deck: Deck,
    *,
    slug: str,
    json_path: str,
    sha256: str,
    created_at: datetime,
    updated_at: datetime,
    status: DeckStatus,
    cover_url: Optional[str] = None,
    submitted_by: Optional[str] = None,
    description: Optional[str] = None,
    tags: Optional[list[str]] = None,
    rejection_reason: Optional[str] = None,
) -> DeckMetadata:
    """Derive the index record for a normalized deck."""
    difficulty_min, difficulty_max = compute_difficulty_range(deck.words)
    categories = list(deck.metadata.categories)
    return DeckMetadata(
        id=str(uuid4()),
        slug=slug,
        title=deck.title,
        author=deck.author,
        language=deck.language,
        difficulty_min=difficulty_min,
        difficulty_max=difficulty_max,
        categories=categories,
        word_classes=list(deck.metadata.word_classes),
        word_count=len(deck.words),
        cover_url=cover_url,
        json_path=json_path,
        sha256=sha256,
        nsfw=deck.allow_nsfw,
        created_at=created_at,
        updated_at=updated_at,
        submitted_by=submitted_by,
        description=description,
        tags=list(tags) if tags is not None else categories,
        sample_words=[word.text for word in deck.words[:SAMPLE_WORD_COUNT]],
        status=status,
        rejection_reason=rejection_reason,
    )


class DeckStore(ABC):
    """
    Index of decks whose bodies live in blob storage.

    Backends implement the row-level primitives; creation, seeding and blob
    reads are shared so both behave identically.
    """

    backend: str = "abstract"

    def __init__(self, storage: BlobStorage, settings: Optional[Settings] = None):
        self.storage = storage
        self.settings = settings or get_settings()
        self._ready = False
        self._init_lock = asyncio.Lock()

    # ---- backend primitives ----

    async def _prepare(self) -> None:
        """Backend specific one-time setup (schema, connections)."""

    @abstractmethod
    async def _count(self) -> int: ...

    @abstractmethod
    async def _slug_exists(self, slug: str) -> bool: ...

    @abstractmethod
    async def _insert(self, metadata: DeckMetadata) -> None:
        """Persist a row; raise ``SlugConflictError`` on a duplicate slug."""

    @abstractmethod
    async def _reset(self) -> None: ...

    @abstractmethod
    async def get_metadata_by_slug(
        self,
        slug: str,
        include_unpublished: bool = False,
        statuses: Optional[list[DeckStatus]] = None,
    ) -> Optional[DeckMetadata]: ...

    @abstractmethod
    async def search(self, filters: DeckFilters) -> DeckSearchResult: ...

    @abstractmethod
    async def list_facets(self) -> DeckFacets: ...

    @abstractmethod
    async def list_slugs(self, statuses: Optional[list[DeckStatus]] = None) -> list[str]: ...

    @abstractmethod
    async def _update_status(
        self, slug: str, status: DeckStatus, rejection_reason: Optional[str], updated_at: datetime
    ) -> bool: ...

    # ---- shared behaviour ----

    async def ensure_ready(self) -> None:
        """Run setup and seeding once; concurrent first callers wait on the same run."""
        if self._ready:
            return
        async with self._init_lock:
            if self._ready:
                return
            await self._prepare()
            if self.settings.seed_sample_decks:
                await self.seed()
            self._ready = True
            logger.info(f"Deck store ready ({self.backend})")

    async def reset(self) -> None:
        """Drop every record so the next access reseeds (test isolation)."""
        async with self._init_lock:
            await self._reset()
            self._ready = False

    async def seed(self, seeds: Optional[list[DeckSeed]] = None) -> int:
        """Load sample decks into an empty store. Returns how many were added."""
        if await self._count() > 0:
            return 0

        added = 0
        for seed in seeds if seeds is not None else SAMPLE_DECK_SEEDS:
            deck = normalize_deck(validate_deck(seed.deck))
            slug = create_slug(seed.slug) if seed.slug else ""
            if not slug:
                slug = await generate_unique_slug(deck.title, self._slug_exists)
            if await self._slug_exists(slug):
                continue

            deck_json = serialize_deck(deck)
            location = await put_deck_json(
                self.storage, slug, deck_json, prefix=self.settings.storage_prefix
            )
            status = DeckStatus(seed.status)
            metadata = build_metadata(
                deck,
                slug=slug,
                json_path=location.url,
                sha256=sha256_from_string(deck_json),
                created_at=datetime.fromisoformat(seed.created_at),
                updated_at=datetime.fromisoformat(seed.updated_at),
                status=status,
                cover_url=deck.metadata.cover_image,
                submitted_by=seed.submitted_by,
                description=seed.description,
                tags=seed.tags,
                rejection_reason=resolve_rejection_reason(status, seed.rejection_reason),
            )
            await self._insert(metadata)
            added += 1

        logger.info(f"Seeded {added} sample decks")
        return added

    async def create(
        self,
        deck: Deck,
        cover_url: Optional[str] = None,
        submitted_by: Optional[str] = None,
        status: Optional[DeckStatus] = None,
        rejection_reason: Optional[str] = None,
    ) -> DeckMetadata:
        """
        Normalize, upload and index a deck.

        The blob is written before the row, so a failed upload never leaves a
        row behind. A slug taken by a concurrent writer between the check and
        the insert triggers a fresh allocation.
        """
        await self.ensure_ready()
        normalized = normalize_deck(deck)

        min_words = self.settings.min_deck_words
        if len(normalized.words) < min_words:
            if self.settings.enforce_min_words_after_normalize:
                raise DeckValidationError(
                    issues=[
                        {
                            "path": ["words"],
                            "message": f"Deck needs at least {min_words} unique words",
                            "code": "too_short",
                        }
                    ]
                )
            logger.warning(
                f"Deck '{normalized.title}' has {len(normalized.words)} words after de-duplication"
            )

        if cover_url and cover_url.startswith("https://"):
            cover = cover_url
        else:
            cover = normalized.metadata.cover_image
        deck_for_storage = normalized.model_copy(
            update={"metadata": normalized.metadata.model_copy(update={"cover_image": cover})}
        )
        deck_json = serialize_deck(deck_for_storage)
        sha256 = sha256_from_string(deck_json)

        status = status or initial_status(is_admin=False, settings=self.settings)
        reason = resolve_rejection_reason(status, rejection_reason)

        for attempt in range(1, MAX_SLUG_ATTEMPTS + 1):
            slug = await generate_unique_slug(normalized.title, self._slug_exists)
            location = await put_deck_json(
                self.storage, slug, deck_json, prefix=self.settings.storage_prefix
            )
            now = utcnow()
            metadata = build_metadata(
                deck_for_storage,
                slug=slug,
                json_path=location.url,
                sha256=sha256,
                created_at=now,
                updated_at=now,
                status=status,
                cover_url=cover,
                submitted_by=submitted_by,
                rejection_reason=reason,
            )
            try:
                await self._insert(metadata)
            except SlugConflictError:
                logger.warning(f"Slug '{slug}' was taken concurrently (attempt {attempt})")
                continue
            logger.info(f"Created deck '{slug}' with status {status.value}")
            return metadata

        raise StorageUnavailableError("Could not allocate a unique slug")

    async def get_by_slug(
        self,
        slug: str,
        include_unpublished: bool = False,
        statuses: Optional[list[DeckStatus]] = None,
    ) -> Optional[DeckRecord]:
        """Metadata plus the deck body fetched from blob storage."""
        metadata = await self.get_metadata_by_slug(slug, include_unpublished, statuses)
        if metadata is None:
            return None
        blob = await self.storage.get(metadata.json_path)
        return DeckRecord(metadata=metadata, deck=load_stored_deck(blob.body))

    async def update_status(
        self, slug: str, status: DeckStatus, rejection_reason: Optional[str] = None
    ) -> bool:
        """Set status and reason together; the reason is kept only for rejections."""
        await self.ensure_ready()
        reason = resolve_rejection_reason(status, rejection_reason)
        return await self._update_status(slug, status, reason, utcnow())


_deck_store: Optional[DeckStore] = None


def create_deck_store(settings: Settings, storage: BlobStorage) -> DeckStore:
    if settings.deck_store_backend == "memory":
        from alias_decks.services.memory_deck_store import MemoryDeckStore

        return MemoryDeckStore(storage, settings)

    from alias_decks.services.sql_deck_store import SqlDeckStore

    return SqlDeckStore(storage, settings)


def get_deck_store() -> DeckStore:
    """Process-wide store selected by ``DECK_STORE_BACKEND``."""
    global _deck_store
    if _deck_store is None:
        _deck_store = create_deck_store(get_settings(), get_blob_storage())
    return _deck_store


def reset_deck_store() -> None:
    global _deck_store
    _deck_store = None
