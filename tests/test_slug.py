"""Tests for slug generation and content hashing."""

import re

import pytest

from alias_decks.services.hashing import sha256_from_string
from alias_decks.services.slug import create_slug, generate_unique_slug


@pytest.mark.parametrize(
    "text, expected",
    [
        ("  My New Deck  ", "my-new-deck"),
        ("Deck?!", "deck"),
        ("Éclair Déjà Vu", "eclair-deja-vu"),
        ("Crème brûlée", "creme-brulee"),
    ],
)
def test_create_slug(text, expected):
    assert create_slug(text) == expected


def test_create_slug_transliterates_cyrillic():
    slug = create_slug("Кухня")
    assert slug == create_slug("Кухня")
    assert re.fullmatch(r"[a-z0-9-]+", slug)


@pytest.mark.asyncio
async def test_unique_slug_appends_counter():
    taken = {"party", "party-2"}

    async def exists(slug: str) -> bool:
        return slug in taken

    assert await generate_unique_slug("Party", exists) == "party-3"


@pytest.mark.asyncio
async def test_unique_slug_falls_back_for_empty_title():
    async def exists(slug: str) -> bool:
        return False

    slug = await generate_unique_slug("?!", exists)
    assert re.fullmatch(r"deck-\d+", slug)


def test_sha256_is_deterministic():
    assert sha256_from_string("deck") == sha256_from_string("deck")
    assert sha256_from_string("deck") != sha256_from_string("Deck")
    assert len(sha256_from_string("колода")) == 64
