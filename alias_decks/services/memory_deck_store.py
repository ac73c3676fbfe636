"""Volatile deck store used by tests and local development."""

import asyncio
from datetime import datetime
from typing import Optional

from alias_decks.config import Settings
from alias_decks.db.models import DeckStatus
from alias_decks.schemas.schemas import DeckFacets, DeckFilters, DeckMetadata, DeckSearchResult
from alias_decks.services.deck_store import (
    DeckStore,
    SlugConflictError,
    clamp_page,
    effective_statuses,
)
from alias_decks.services.normalization import build_search_text
from alias_decks.services.storage import BlobStorage


def _matches(metadata: DeckMetadata, filters: DeckFilters, statuses: list[DeckStatus]) -> bool:
    if metadata.status not in statuses:
        return False
    if metadata.nsfw and not filters.include_nsfw:
        return False
    if filters.language and metadata.language != filters.language:
        return False
    if filters.query and filters.query.strip():
        search_text = build_search_text(
            metadata.title, metadata.author, metadata.categories, metadata.tags
        )
        if filters.query.strip().lower() not in search_text:
            return False
    if any(category not in metadata.categories for category in filters.categories):
        return False
    if any(tag not in metadata.tags for tag in filters.tags):
        return False
    if (
        filters.difficulty_min is not None
        and metadata.difficulty_max is not None
        and metadata.difficulty_max < filters.difficulty_min
    ):
        return False
    if (
        filters.difficulty_max is not None
        and metadata.difficulty_min is not None
        and metadata.difficulty_min > filters.difficulty_max
    ):
        return False
    return True


class MemoryDeckStore(DeckStore):
    backend = "memory"

    def __init__(self, storage: BlobStorage, settings: Optional[Settings] = None):
        super().__init__(storage, settings)
        self._records: list[DeckMetadata] = []
        self._lock = asyncio.Lock()

    async def _count(self) -> int:
        return len(self._records)

    async def _slug_exists(self, slug: str) -> bool:
        return any(record.slug == slug for record in self._records)

    async def _insert(self, metadata: DeckMetadata) -> None:
        async with self._lock:
            if any(record.slug == metadata.slug for record in self._records):
                raise SlugConflictError(metadata.slug)
            self._records.append(metadata)

    async def _reset(self) -> None:
        async with self._lock:
            self._records = []

    async def get_metadata_by_slug(
        self,
        slug: str,
        include_unpublished: bool = False,
        statuses: Optional[list[DeckStatus]] = None,
    ) -> Optional[DeckMetadata]:
        await self.ensure_ready()
        for record in self._records:
            if record.slug != slug:
                continue
            if statuses:
                return record if record.status in statuses else None
            if not include_unpublished and record.status != DeckStatus.PUBLISHED:
                return None
            return record
        return None

    async def search(self, filters: DeckFilters) -> DeckSearchResult:
        await self.ensure_ready()
        page, page_size = clamp_page(filters.page, filters.page_size)
        statuses = effective_statuses(filters.statuses)

        matched = [record for record in self._records if _matches(record, filters, statuses)]
        matched.sort(key=lambda record: (record.updated_at, record.id), reverse=True)
        start = (page - 1) * page_size
        return DeckSearchResult(
            items=matched[start : start + page_size],
            total=len(matched),
            page=page,
            page_size=page_size,
        )

    async def list_facets(self) -> DeckFacets:
        await self.ensure_ready()
        published = [record for record in self._records if record.status == DeckStatus.PUBLISHED]
        mins = [r.difficulty_min for r in published if r.difficulty_min is not None]
        maxes = [r.difficulty_max for r in published if r.difficulty_max is not None]
        return DeckFacets(
            languages=sorted({r.language for r in published}),
            categories=sorted({c for r in published for c in r.categories}),
            tags=sorted({t for r in published for t in r.tags}),
            difficulty_min=min(mins) if mins else None,
            difficulty_max=max(maxes) if maxes else None,
        )

    async def list_slugs(self, statuses: Optional[list[DeckStatus]] = None) -> list[str]:
        await self.ensure_ready()
        allowed = effective_statuses(statuses)
        records = sorted(self._records, key=lambda r: (r.updated_at, r.id), reverse=True)
        return [record.slug for record in records if record.status in allowed]

    async def _update_status(
        self, slug: str, status: DeckStatus, rejection_reason: Optional[str], updated_at: datetime
    ) -> bool:
        async with self._lock:
            for index, record in enumerate(self._records):
                if record.slug == slug:
                    self._records[index] = record.model_copy(
                        update={
                            "status": status,
                            "rejection_reason": rejection_reason,
                            "updated_at": updated_at,
                        }
                    )
                    return True
        return False
