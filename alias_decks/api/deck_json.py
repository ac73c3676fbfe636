"""Raw deck JSON served to the game client."""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response

from alias_decks.exceptions import NotFoundError
from alias_decks.middleware.rate_limit import rate_limit_general
from alias_decks.services.deck_store import DeckStore, get_deck_store

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Decks"])

DECK_JSON_CACHE_CONTROL = "public, max-age=300, s-maxage=600"


@router.get(
    "/decks/{slug}.json",
    summary="Download deck JSON",
    description="The stored deck document for a published deck.",
    response_class=Response,
)
@rate_limit_general()
async def get_deck_json(
    request: Request,
    slug: str,
    store: DeckStore = Depends(get_deck_store),
):
    """Proxy the blob so the import link stays stable if storage moves."""
    metadata = await store.get_metadata_by_slug(slug)
    if metadata is None:
        raise NotFoundError()

    blob = await store.storage.get(metadata.json_path)

    headers = {"Cache-Control": DECK_JSON_CACHE_CONTROL}
    if blob.etag:
        headers["ETag"] = blob.etag
    return Response(
        content=blob.body,
        media_type=blob.content_type or "application/json",
        headers=headers,
    )
