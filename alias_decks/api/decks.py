"""Deck gallery API routes."""

import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.datastructures import UploadFile

from alias_decks.auth.security import Caller, require_admin, resolve_caller
from alias_decks.config import get_settings
from alias_decks.db.models import DeckStatus
from alias_decks.exceptions import (
    DeckValidationError,
    MalformedInputError,
    NotFoundError,
    SizeExceededError,
    UnauthorizedError,
)
from alias_decks.middleware.rate_limit import rate_limit_general
from alias_decks.schemas.deck import format_issues, validate_deck
from alias_decks.schemas.schemas import (
    DeckFilters,
    DeckListResponse,
    DeckMetadata,
    DeckUploadResponse,
    DeckValidateResponse,
    DifficultyFacet,
    FacetsResponse,
    ModerationRequest,
)
from alias_decks.services.deck_store import DeckStore, get_deck_store
from alias_decks.services.ingestion import (
    DeckIngestionService,
    UploadRequest,
    get_ingestion_service,
)
from alias_decks.services.moderation import moderate_deck
from alias_decks.services.urls import deck_links

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/decks", tags=["Decks"])

settings = get_settings()

MULTIPART_CAPTCHA_FIELDS = ("captchaToken", "h-captcha-response")


def split_csv(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_status_filter(value: Optional[str]) -> list[DeckStatus]:
    """Known statuses from a csv list; unknown entries are ignored."""
    allowed = {status.value for status in DeckStatus}
    return [DeckStatus(item) for item in split_csv(value) if item in allowed]


def serialize_metadata(metadata: DeckMetadata, include_moderation_fields: bool) -> dict[str, Any]:
    data = metadata.to_public(include_moderation_fields=include_moderation_fields)
    data.update(deck_links(metadata.slug))
    return data


async def read_limited_body(request: Request, limit: int) -> bytes:
    """Read at most ``limit + 1`` bytes so oversized uploads are detectable."""
    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > limit:
            break
    return bytes(body[: limit + 1])


async def build_upload_request(request: Request, caller: Caller) -> UploadRequest:
    limit = settings.max_upload_bytes
    content_type = request.headers.get("content-type", "")

    if content_type.startswith("multipart/form-data"):
        form = await request.form(max_files=1)
        file = form.get("file")
        if not isinstance(file, UploadFile):
            raise MalformedInputError("File missing")
        payload = await file.read(limit + 1)

        cover_url = form.get("coverUrl")
        captcha_token = None
        for name in MULTIPART_CAPTCHA_FIELDS:
            value = form.get(name)
            if isinstance(value, str) and value:
                captcha_token = value
                break
        return UploadRequest(
            payload=payload,
            captcha_token=captcha_token,
            cover_url=cover_url if isinstance(cover_url, str) and cover_url else None,
            client_ip=caller.client_ip,
            caller=caller,
        )

    return UploadRequest(
        payload=await read_limited_body(request, limit),
        captcha_token=request.headers.get("x-captcha-token") or None,
        client_ip=caller.client_ip,
        caller=caller,
    )


@router.post(
    "",
    response_model=DeckUploadResponse,
    summary="Upload a deck",
    description="Upload a deck as a JSON body or as a multipart file.",
)
async def upload_deck(
    request: Request,
    caller: Caller = Depends(resolve_caller),
    ingestion: DeckIngestionService = Depends(get_ingestion_service),
):
    """
    Upload a new deck.

    - **JSON body**: a deck document, optionally with `captchaToken`
    - **multipart**: `file`, optional `coverUrl` and `captchaToken`

    New decks are published immediately unless moderation is configured and
    the submitter is not an admin.
    """
    upload = await build_upload_request(request, caller)
    result = await ingestion.ingest(upload)

    return DeckUploadResponse(
        slug=result.slug,
        deck_url=result.deck_url,
        json_url=result.json_url,
        import_url=result.import_url,
        status=result.status,
    )


@router.post(
    "/validate",
    response_model=DeckValidateResponse,
    response_model_exclude_none=True,
    summary="Validate a deck",
    description="Check a deck document against the schema without storing it.",
)
async def validate_deck_document(request: Request):
    body = await read_limited_body(request, settings.max_upload_bytes)
    if len(body) > settings.max_upload_bytes:
        return JSONResponse(
            status_code=SizeExceededError.status_code,
            content={"success": False, "message": "File too large"},
        )

    try:
        payload = json.loads(body)
    except (UnicodeDecodeError, ValueError):
        return JSONResponse(
            status_code=400,
            content={"success": False, "message": MalformedInputError.default_message},
        )

    try:
        deck = validate_deck(payload)
    except DeckValidationError as e:
        return JSONResponse(
            status_code=400,
            content={"success": False, "message": e.message, "issues": e.issues},
        )

    return DeckValidateResponse(
        success=True,
        deck=deck.to_document(),
        word_count=len(deck.words),
        language=deck.language,
    )


@router.get(
    "",
    response_model=DeckListResponse,
    summary="Search decks",
    description="List decks with filters, pagination and catalog facets.",
)
@rate_limit_general()
async def list_decks(
    request: Request,
    q: Optional[str] = Query(None, description="Free-text search"),
    language: Optional[str] = Query(None),
    categories: Optional[str] = Query(None, description="Comma separated, all must match"),
    tags: Optional[str] = Query(None, description="Comma separated, all must match"),
    difficulty_min: Optional[int] = Query(None, alias="difficultyMin"),
    difficulty_max: Optional[int] = Query(None, alias="difficultyMax"),
    nsfw: bool = Query(False, description="Include NSFW decks"),
    page: int = Query(1),
    page_size: int = Query(12, alias="pageSize"),
    status_param: Optional[str] = Query(None, alias="status"),
    caller: Caller = Depends(resolve_caller),
    store: DeckStore = Depends(get_deck_store),
):
    """
    Search the catalog.

    Only published decks are listed unless an admin asks for other statuses.
    """
    statuses = parse_status_filter(status_param)
    if status_param is not None and not statuses:
        raise DeckValidationError("Invalid status filter")
    if any(status != DeckStatus.PUBLISHED for status in statuses) and not caller.is_admin:
        raise UnauthorizedError()

    result = await store.search(
        DeckFilters(
            query=q,
            language=language,
            categories=split_csv(categories),
            tags=split_csv(tags),
            include_nsfw=nsfw,
            difficulty_min=difficulty_min,
            difficulty_max=difficulty_max,
            page=page,
            page_size=page_size,
            statuses=statuses,
        )
    )
    facets = await store.list_facets()

    return DeckListResponse(
        items=[serialize_metadata(item, caller.is_admin) for item in result.items],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
        facets=FacetsResponse(
            languages=facets.languages,
            categories=facets.categories,
            tags=facets.tags,
            difficulty=DifficultyFacet(min=facets.difficulty_min, max=facets.difficulty_max),
        ),
    )


@router.get(
    "/slugs",
    summary="List published slugs",
    description="Slugs of every published deck, newest first (sitemap feed).",
)
async def list_deck_slugs(store: DeckStore = Depends(get_deck_store)):
    return {"slugs": await store.list_slugs()}


@router.post(
    "/moderate",
    summary="Moderate a deck",
    description="Publish, unpublish or reject a deck. Admin only.",
)
async def moderate(
    request: Request,
    _: Caller = Depends(require_admin),
    store: DeckStore = Depends(get_deck_store),
):
    try:
        payload = await request.json()
    except (UnicodeDecodeError, ValueError) as e:
        raise MalformedInputError() from e

    try:
        body = ModerationRequest.model_validate(payload)
    except ValidationError as e:
        raise DeckValidationError("Invalid body", issues=format_issues(e)) from e

    record = await moderate_deck(store, body.slug.strip(), body.status, body.rejection_reason)

    data = serialize_metadata(record.metadata, include_moderation_fields=True)
    data["deck"] = record.deck.to_document()
    return data


@router.get(
    "/{slug}",
    summary="Get a deck",
    description="Deck metadata plus the full deck document.",
)
@rate_limit_general()
async def get_deck(
    request: Request,
    slug: str,
    caller: Caller = Depends(resolve_caller),
    store: DeckStore = Depends(get_deck_store),
):
    """Unpublished decks are visible to admins only; everyone else gets 404."""
    record = await store.get_by_slug(slug, include_unpublished=caller.is_admin)
    if record is None:
        raise NotFoundError()

    data = serialize_metadata(record.metadata, include_moderation_fields=caller.is_admin)
    data["deck"] = record.deck.to_document()
    return data
