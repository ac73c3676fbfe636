"""Tests for the moderation workflow."""

import pytest

from alias_decks.config import Settings
from alias_decks.db.models import DeckStatus
from alias_decks.exceptions import DeckValidationError, NotFoundError
from alias_decks.schemas.deck import validate_deck
from alias_decks.services.memory_deck_store import MemoryDeckStore
from alias_decks.services.moderation import (
    initial_status,
    moderate_deck,
    resolve_rejection_reason,
)
from alias_decks.services.storage import MemoryBlobStorage


@pytest.mark.parametrize(
    "settings, is_admin, expected",
    [
        (Settings(deck_admin_token=None, deck_admin_logins=""), False, DeckStatus.PUBLISHED),
        (Settings(deck_admin_token=None, deck_admin_logins="mod"), False, DeckStatus.PENDING),
        (Settings(deck_admin_token=None, deck_admin_logins="mod"), True, DeckStatus.PUBLISHED),
        (Settings(deck_admin_token="secret", deck_admin_logins=""), False, DeckStatus.PENDING),
    ],
)
def test_initial_status(settings, is_admin, expected):
    assert initial_status(is_admin, settings) == expected


def test_rejection_reason_rules():
    assert resolve_rejection_reason(DeckStatus.REJECTED, "  spam ") == "spam"
    assert resolve_rejection_reason(DeckStatus.PUBLISHED, "spam") is None
    assert resolve_rejection_reason(DeckStatus.PENDING, None) is None
    for reason in (None, "", "   "):
        with pytest.raises(DeckValidationError):
            resolve_rejection_reason(DeckStatus.REJECTED, reason)


@pytest.mark.asyncio
async def test_moderate_deck_returns_admin_view(make_deck):
    store = MemoryDeckStore(MemoryBlobStorage(), Settings(seed_sample_decks=False))
    await store.create(validate_deck(make_deck()), status=DeckStatus.PENDING)

    record = await moderate_deck(store, "test-deck", DeckStatus.REJECTED, "Duplicate of another deck")

    assert record.metadata.status == DeckStatus.REJECTED
    assert record.metadata.rejection_reason == "Duplicate of another deck"
    assert record.deck.title == "Test Deck"


@pytest.mark.asyncio
async def test_moderate_unknown_deck():
    store = MemoryDeckStore(MemoryBlobStorage(), Settings(seed_sample_decks=False))
    with pytest.raises(NotFoundError):
        await moderate_deck(store, "missing", DeckStatus.PUBLISHED)
