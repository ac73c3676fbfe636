"""Canonical deck normalization and derived metadata helpers."""

import json
from typing import Iterable, Optional

from alias_decks.schemas.deck import Deck, DeckWord


def _unique_trimmed(values: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    result = []
    for value in values:
        item = value.strip()
        if item and item not in seen:
            seen.add(item)
            result.append(item)
    return result


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value.strip() or None


def normalize_deck(deck: Deck) -> Deck:
    """
    Return the canonical form of a validated deck.

    Words are trimmed, empty ones dropped and duplicates (case-insensitive)
    removed keeping the first occurrence. Running it twice changes nothing.
    The result is not re-validated, so de-duplication may leave fewer words
    than the schema minimum.
    """
    words: list[DeckWord] = []
    seen: set[str] = set()
    for word in deck.words:
        text = word.text.strip()
        if not text:
            continue
        key = text.lower()
        if key in seen:
            continue
        seen.add(key)
        words.append(
            word.model_copy(
                update={
                    "text": text,
                    "category": _blank_to_none(word.category),
                    "word_class": _blank_to_none(word.word_class),
                }
            )
        )

    metadata = deck.metadata.model_copy(
        update={
            "categories": _unique_trimmed(deck.metadata.categories),
            "word_classes": _unique_trimmed(deck.metadata.word_classes),
        }
    )

    return deck.model_copy(
        update={
            "title": deck.title.strip(),
            "author": deck.author.strip(),
            "words": words,
            "metadata": metadata,
        }
    )


def serialize_deck(deck: Deck) -> str:
    """Compact canonical JSON; this exact text is hashed and uploaded."""
    return json.dumps(deck.to_document(), ensure_ascii=False, separators=(",", ":"))


def compute_difficulty_range(words: list[DeckWord]) -> tuple[Optional[int], Optional[int]]:
    difficulties = [word.difficulty for word in words if word.difficulty is not None]
    if not difficulties:
        return None, None
    return min(difficulties), max(difficulties)


def build_search_text(title: str, author: str, categories: list[str], tags: list[str]) -> str:
    return " ".join(item.lower() for item in [title, author, *categories, *tags])
