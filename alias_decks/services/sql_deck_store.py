"""Relational deck store on SQLAlchemy async."""

import json
import logging
from contextlib import nullcontext
from datetime import datetime, timezone
from typing import Optional

from alembic.migration import MigrationContext
from alembic.operations import Operations
from pydantic import ValidationError
from sqlalchemy import Column, String, cast, column, func, inspect, or_, select, table, update
from sqlalchemy.exc import IntegrityError, OperationalError, ProgrammingError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from alias_decks.config import Settings
from alias_decks.db.models import DeckRow, DeckStatus
from alias_decks.db.session import Base, get_engine, is_duplicate_object_error, run_schema_ddl
from alias_decks.exceptions import StorageUnavailableError
from alias_decks.schemas.deck import load_stored_deck
from alias_decks.schemas.schemas import DeckFacets, DeckFilters, DeckMetadata, DeckSearchResult
from alias_decks.services.deck_store import (
    DeckStore,
    SlugConflictError,
    clamp_page,
    effective_statuses,
)
from alias_decks.services.hashing import sha256_from_string
from alias_decks.services.normalization import build_search_text, serialize_deck
from alias_decks.services.storage import BlobStorage, put_deck_json

logger = logging.getLogger(__name__)

LIKE_ESCAPE = "!"

# early deployments stored the deck body inline in this column
INLINE_DECK_COLUMN = "deck_json"
inline_decks = table(
    "decks", column("id"), column("slug"), column("json_path"), column(INLINE_DECK_COLUMN)
)

BACKFILL_DEFAULTS = {
    "status": DeckStatus.PUBLISHED,
    "nsfw": False,
    "categories": [],
    "word_classes": [],
    "sample_words": [],
}


def escape_like(value: str) -> str:
    return (
        value.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", f"{LIKE_ESCAPE}%")
        .replace("_", f"{LIKE_ESCAPE}_")
    )


def json_array_contains(column, value: str):
    """Portable "JSON array contains string" test on the serialized column."""
    pattern = escape_like(json.dumps(value))
    return cast(column, String).like(f"%{pattern}%", escape=LIKE_ESCAPE)


def _as_utc(value: datetime) -> datetime:
    # sqlite hands back naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def row_to_metadata(row: DeckRow) -> DeckMetadata:
    return DeckMetadata(
        id=row.id,
        slug=row.slug,
        title=row.title,
        author=row.author,
        language=row.language,
        difficulty_min=row.difficulty_min,
        difficulty_max=row.difficulty_max,
        categories=list(row.categories or []),
        word_classes=list(row.word_classes or []),
        word_count=row.word_count,
        cover_url=row.cover_url,
        json_path=row.json_path,
        sha256=row.sha256,
        nsfw=bool(row.nsfw),
        created_at=_as_utc(row.created_at),
        updated_at=_as_utc(row.updated_at),
        submitted_by=row.submitted_by,
        description=row.description,
        tags=list(row.tags or []),
        sample_words=list(row.sample_words or []),
        status=row.status or DeckStatus.PUBLISHED,
        rejection_reason=row.rejection_reason,
    )


def metadata_to_row(metadata: DeckMetadata) -> DeckRow:
    return DeckRow(
        id=metadata.id,
        slug=metadata.slug,
        title=metadata.title,
        author=metadata.author,
        language=metadata.language,
        difficulty_min=metadata.difficulty_min,
        difficulty_max=metadata.difficulty_max,
        categories=list(metadata.categories),
        word_classes=list(metadata.word_classes),
        word_count=metadata.word_count,
        cover_url=metadata.cover_url,
        json_path=metadata.json_path,
        sha256=metadata.sha256,
        nsfw=metadata.nsfw,
        created_at=metadata.created_at,
        updated_at=metadata.updated_at,
        submitted_by=metadata.submitted_by,
        description=metadata.description,
        tags=list(metadata.tags),
        sample_words=list(metadata.sample_words),
        search_text=build_search_text(
            metadata.title, metadata.author, metadata.categories, metadata.tags
        ),
        status=metadata.status,
        rejection_reason=metadata.rejection_reason,
    )


def _savepoint(sync_conn):
    # pysqlite savepoints need driver workarounds; sqlite also serializes DDL
    if sync_conn.dialect.name == "sqlite":
        return nullcontext()
    return sync_conn.begin_nested()


def _column_names(sync_conn) -> set[str]:
    return {column["name"] for column in inspect(sync_conn).get_columns(DeckRow.__tablename__)}


def _add_missing_columns(sync_conn) -> list[str]:
    """Add columns the model has but the live table lacks. Returns their names."""
    table = DeckRow.__table__
    existing = _column_names(sync_conn)
    operations = Operations(MigrationContext.configure(sync_conn))

    added = []
    for column in table.columns:
        if column.name in existing:
            continue
        try:
            with _savepoint(sync_conn):
                operations.add_column(table.name, Column(column.name, column.type, nullable=True))
        except (OperationalError, ProgrammingError) as e:
            # another instance won the race
            if not is_duplicate_object_error(e):
                raise
            logger.info(f"Column decks.{column.name} already added elsewhere")
            continue
        added.append(column.name)

    for index in table.indexes:
        if any(column.name in added for column in index.columns):
            index.create(sync_conn, checkfirst=True)
    return added


def _backfill_defaults(sync_conn) -> int:
    """Give rows older than a column the value new rows get. Returns rows touched."""
    table = DeckRow.__table__
    touched = 0
    for name, value in BACKFILL_DEFAULTS.items():
        result = sync_conn.execute(
            update(table).where(table.c[name].is_(None)).values({name: value})
        )
        touched += max(result.rowcount or 0, 0)

    # tags default to the categories, as on create
    result = sync_conn.execute(
        update(table).where(table.c.tags.is_(None)).values(tags=table.c.categories)
    )
    touched += max(result.rowcount or 0, 0)

    rows = sync_conn.execute(
        select(table.c.id, table.c.title, table.c.author, table.c.categories, table.c.tags).where(
            table.c.search_text.is_(None)
        )
    ).all()
    for row in rows:
        search_text = build_search_text(
            row.title or "", row.author or "", row.categories or [], row.tags or []
        )
        sync_conn.execute(update(table).where(table.c.id == row.id).values(search_text=search_text))
    return touched + len(rows)


def _upgrade_schema(sync_conn) -> tuple[list[str], int]:
    Base.metadata.create_all(sync_conn, checkfirst=True)
    added = _add_missing_columns(sync_conn)
    return added, _backfill_defaults(sync_conn)


async def ensure_schema(engine: AsyncEngine) -> None:
    """Create the deck tables, add columns introduced since, and fill them for old rows."""
    from alias_decks.db import models  # noqa: F401

    added, backfilled = await run_schema_ddl(engine, _upgrade_schema)
    if added:
        logger.info(f"Added columns to decks: {', '.join(added)}")
    if backfilled:
        logger.info(f"Backfilled {backfilled} legacy deck values")


def _drop_inline_deck_column(sync_conn) -> None:
    Operations(MigrationContext.configure(sync_conn)).drop_column(
        DeckRow.__tablename__, INLINE_DECK_COLUMN
    )


class SqlDeckStore(DeckStore):
    """Durable store; each write is a single-row statement."""

    backend = "sql"

    def __init__(
        self,
        storage: BlobStorage,
        settings: Optional[Settings] = None,
        engine: Optional[AsyncEngine] = None,
    ):
        super().__init__(storage, settings)
        self._engine = engine
        self._session_maker: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = get_engine()
        return self._engine

    def session(self) -> AsyncSession:
        if self._session_maker is None:
            self._session_maker = async_sessionmaker(
                self.engine, class_=AsyncSession, expire_on_commit=False
            )
        return self._session_maker()

    async def _prepare(self) -> None:
        try:
            await ensure_schema(self.engine)
            await self._migrate_inline_decks()
        except SQLAlchemyError as e:
            logger.error(f"Deck schema setup failed: {e}")
            raise StorageUnavailableError("Deck database is unavailable") from e

    async def _migrate_inline_decks(self) -> int:
        """Move deck bodies kept in the row out to blob storage, then drop the column."""
        async with self.engine.connect() as conn:
            if INLINE_DECK_COLUMN not in await conn.run_sync(_column_names):
                return 0
            rows = (
                await conn.execute(
                    select(inline_decks.c.id, inline_decks.c.slug, inline_decks.c.deck_json).where(
                        inline_decks.c.deck_json.is_not(None),
                        or_(
                            inline_decks.c.json_path.is_(None),
                            inline_decks.c.json_path == "",
                            inline_decks.c.json_path.not_like("%://%"),
                        ),
                    )
                )
            ).all()

        decks = DeckRow.__table__
        for row in rows:
            body = row.deck_json
            if not isinstance(body, (str, bytes)):
                body = json.dumps(body)
            try:
                deck = load_stored_deck(body)
            except ValidationError as e:
                raise StorageUnavailableError(f"Inline deck '{row.slug}' is not a valid deck") from e

            deck_json = serialize_deck(deck)
            location = await put_deck_json(
                self.storage, row.slug, deck_json, prefix=self.settings.storage_prefix
            )
            async with self.engine.begin() as conn:
                await conn.execute(
                    update(decks)
                    .where(decks.c.id == row.id)
                    .values(json_path=location.url, sha256=sha256_from_string(deck_json))
                )
        if rows:
            logger.info(f"Moved {len(rows)} inline decks to blob storage")

        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(_drop_inline_deck_column)
        except (OperationalError, ProgrammingError) as e:
            # another instance may have dropped it first
            logger.warning(f"Could not drop decks.{INLINE_DECK_COLUMN}: {e}")
        return len(rows)

    async def _count(self) -> int:
        async with self.session() as session:
            result = await session.execute(select(func.count()).select_from(DeckRow))
            return result.scalar_one()

    async def _slug_exists(self, slug: str) -> bool:
        async with self.session() as session:
            result = await session.execute(select(DeckRow.id).where(DeckRow.slug == slug))
            return result.first() is not None

    async def _insert(self, metadata: DeckMetadata) -> None:
        async with self.session() as session:
            session.add(metadata_to_row(metadata))
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise SlugConflictError(metadata.slug) from e
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Failed to insert deck '{metadata.slug}': {e}")
                raise StorageUnavailableError("Failed to save deck metadata") from e

    async def _reset(self) -> None:
        async with self.session() as session:
            await session.execute(DeckRow.__table__.delete())
            await session.commit()

    async def get_metadata_by_slug(
        self,
        slug: str,
        include_unpublished: bool = False,
        statuses: Optional[list[DeckStatus]] = None,
    ) -> Optional[DeckMetadata]:
        await self.ensure_ready()
        query = select(DeckRow).where(DeckRow.slug == slug)
        if statuses:
            query = query.where(DeckRow.status.in_(statuses))
        elif not include_unpublished:
            query = query.where(DeckRow.status == DeckStatus.PUBLISHED)

        async with self.session() as session:
            row = (await session.execute(query)).scalar_one_or_none()
        return row_to_metadata(row) if row else None

    def _search_conditions(self, filters: DeckFilters) -> list:
        conditions = [DeckRow.status.in_(effective_statuses(filters.statuses))]
        if not filters.include_nsfw:
            conditions.append(DeckRow.nsfw == False)  # noqa: E712
        if filters.language:
            conditions.append(DeckRow.language == filters.language)
        if filters.query and filters.query.strip():
            pattern = escape_like(filters.query.strip().lower())
            conditions.append(DeckRow.search_text.like(f"%{pattern}%", escape=LIKE_ESCAPE))
        for category in filters.categories:
            conditions.append(json_array_contains(DeckRow.categories, category))
        for tag in filters.tags:
            conditions.append(json_array_contains(DeckRow.tags, tag))
        if filters.difficulty_min is not None:
            conditions.append(
                or_(DeckRow.difficulty_max.is_(None), DeckRow.difficulty_max >= filters.difficulty_min)
            )
        if filters.difficulty_max is not None:
            conditions.append(
                or_(DeckRow.difficulty_min.is_(None), DeckRow.difficulty_min <= filters.difficulty_max)
            )
        return conditions

    async def search(self, filters: DeckFilters) -> DeckSearchResult:
        await self.ensure_ready()
        page, page_size = clamp_page(filters.page, filters.page_size)
        conditions = self._search_conditions(filters)

        async with self.session() as session:
            total = (
                await session.execute(select(func.count()).select_from(DeckRow).where(*conditions))
            ).scalar_one()
            rows = (
                await session.execute(
                    select(DeckRow)
                    .where(*conditions)
                    .order_by(DeckRow.updated_at.desc(), DeckRow.id.desc())
                    .offset((page - 1) * page_size)
                    .limit(page_size)
                )
            ).scalars().all()

        return DeckSearchResult(
            items=[row_to_metadata(row) for row in rows],
            total=total,
            page=page,
            page_size=page_size,
        )

    async def list_facets(self) -> DeckFacets:
        await self.ensure_ready()
        async with self.session() as session:
            result = await session.execute(
                select(
                    DeckRow.language,
                    DeckRow.categories,
                    DeckRow.tags,
                    DeckRow.difficulty_min,
                    DeckRow.difficulty_max,
                ).where(DeckRow.status == DeckStatus.PUBLISHED)
            )
            rows = result.all()

        languages, categories, tags = set(), set(), set()
        mins, maxes = [], []
        for language, row_categories, row_tags, difficulty_min, difficulty_max in rows:
            languages.add(language)
            categories.update(row_categories or [])
            tags.update(row_tags or [])
            if difficulty_min is not None:
                mins.append(difficulty_min)
            if difficulty_max is not None:
                maxes.append(difficulty_max)

        return DeckFacets(
            languages=sorted(languages),
            categories=sorted(categories),
            tags=sorted(tags),
            difficulty_min=min(mins) if mins else None,
            difficulty_max=max(maxes) if maxes else None,
        )

    async def list_slugs(self, statuses: Optional[list[DeckStatus]] = None) -> list[str]:
        await self.ensure_ready()
        async with self.session() as session:
            result = await session.execute(
                select(DeckRow.slug)
                .where(DeckRow.status.in_(effective_statuses(statuses)))
                .order_by(DeckRow.updated_at.desc(), DeckRow.id.desc())
            )
            return list(result.scalars().all())

    async def _update_status(
        self, slug: str, status: DeckStatus, rejection_reason: Optional[str], updated_at: datetime
    ) -> bool:
        async with self.session() as session:
            try:
                result = await session.execute(
                    update(DeckRow)
                    .where(DeckRow.slug == slug)
                    .values(status=status, rejection_reason=rejection_reason, updated_at=updated_at)
                )
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Failed to update status of '{slug}': {e}")
                raise StorageUnavailableError("Failed to update deck status") from e
            return result.rowcount > 0
