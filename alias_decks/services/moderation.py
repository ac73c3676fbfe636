"""Moderation workflow: initial status and authorized transitions."""

import logging
from typing import TYPE_CHECKING, Optional

from alias_decks.config import Settings, get_settings
from alias_decks.db.models import DeckStatus
from alias_decks.exceptions import DeckValidationError, NotFoundError

if TYPE_CHECKING:
    from alias_decks.schemas.schemas import DeckRecord
    from alias_decks.services.deck_store import DeckStore

logger = logging.getLogger(__name__)


def initial_status(is_admin: bool, settings: Optional[Settings] = None) -> DeckStatus:
    """Uploads go straight to the catalog unless moderation is configured."""
    settings = settings or get_settings()
    if not settings.moderation_enabled or is_admin:
        return DeckStatus.PUBLISHED
    return DeckStatus.PENDING


def resolve_rejection_reason(status: DeckStatus, reason: Optional[str]) -> Optional[str]:
    """Reason to persist alongside ``status``; rejections must carry one."""
    if status != DeckStatus.REJECTED:
        return None
    reason = (reason or "").strip()
    if not reason:
        raise DeckValidationError(
            "Rejection reason required",
            issues=[
                {
                    "path": ["rejectionReason"],
                    "message": "Rejection reason required",
                    "code": "missing",
                }
            ],
        )
    return reason


async def moderate_deck(
    store: "DeckStore",
    slug: str,
    status: DeckStatus,
    rejection_reason: Optional[str] = None,
) -> "DeckRecord":
    """Apply a transition and return the deck as an admin sees it."""
    updated = await store.update_status(slug, status, rejection_reason)
    if not updated:
        raise NotFoundError()

    record = await store.get_by_slug(slug, include_unpublished=True)
    if record is None:
        raise NotFoundError()

    logger.info(f"Deck '{slug}' moved to {status.value}")
    return record
