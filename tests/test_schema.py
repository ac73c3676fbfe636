"""Tests for deck validation and normalization."""

import json

import pytest

from alias_decks.exceptions import DeckValidationError
from alias_decks.schemas.deck import load_stored_deck, validate_deck
from alias_decks.services.normalization import (
    build_search_text,
    compute_difficulty_range,
    normalize_deck,
    serialize_deck,
)


def test_valid_deck_passes(make_deck):
    deck = validate_deck(make_deck())
    assert deck.title == "Test Deck"
    assert deck.allow_nsfw is False
    assert deck.metadata.categories == []
    assert len(deck.words) == 20


def test_short_deck_points_at_words(make_deck):
    with pytest.raises(DeckValidationError) as exc_info:
        validate_deck(make_deck(word_count=19))

    paths = [issue["path"] for issue in exc_info.value.issues]
    assert ["words"] in paths
    assert exc_info.value.message == "Deck JSON failed validation"


def test_all_issues_are_reported(make_deck):
    raw = make_deck(language="de", word_count=5)
    del raw["title"]

    with pytest.raises(DeckValidationError) as exc_info:
        validate_deck(raw)

    fields = {issue["path"][0] for issue in exc_info.value.issues}
    assert fields == {"title", "language", "words"}
    assert all({"path", "message", "code"} <= issue.keys() for issue in exc_info.value.issues)


def test_word_difficulty_bounds(make_deck):
    words = [{"text": f"w{i}"} for i in range(20)]
    words[3]["difficulty"] = 11
    words[4]["difficulty"] = "3"

    with pytest.raises(DeckValidationError) as exc_info:
        validate_deck(make_deck(words=words))

    paths = [issue["path"] for issue in exc_info.value.issues]
    assert ["words", 3, "difficulty"] in paths
    assert ["words", 4, "difficulty"] in paths


def test_word_difficulty_accepts_integral_numbers(make_deck):
    words = [{"text": f"w{i}"} for i in range(20)]
    words[0]["difficulty"] = 5.0
    deck = validate_deck(make_deck(words=words))
    assert deck.words[0].difficulty == 5
    assert isinstance(deck.words[0].difficulty, int)

    words[1]["difficulty"] = 2.5
    words[2]["difficulty"] = True
    with pytest.raises(DeckValidationError) as exc_info:
        validate_deck(make_deck(words=words))

    paths = [issue["path"] for issue in exc_info.value.issues]
    assert paths == [["words", 1, "difficulty"], ["words", 2, "difficulty"]]


def test_cover_image_must_be_absolute_url(make_deck):
    with pytest.raises(DeckValidationError) as exc_info:
        validate_deck(make_deck(metadata={"coverImage": "/images/cover.png"}))
    assert exc_info.value.issues[0]["path"] == ["metadata", "coverImage"]


def test_non_object_payload_is_rejected():
    with pytest.raises(DeckValidationError):
        validate_deck(["not", "a", "deck"])


def test_unknown_keys_are_dropped(make_deck):
    deck = validate_deck(make_deck(extra_field="ignored"))
    assert "extra_field" not in deck.to_document()


def test_normalize_removes_case_insensitive_duplicates(make_deck):
    words = [{"text": f"Word {i}"} for i in range(19)] + [{"text": "Cat"}, {"text": " cat "}]
    deck = normalize_deck(validate_deck(make_deck(words=words)))

    texts = [word.text for word in deck.words]
    assert len(texts) == 20
    assert texts[-1] == "Cat"


def test_normalize_trims_and_drops_blank_words(make_deck):
    words = [{"text": f"  Word {i}  ", "category": "  ", "wordClass": " noun "} for i in range(20)]
    words.append({"text": "   "})
    deck = normalize_deck(validate_deck(make_deck(words=words, title="  Padded  ")))

    assert deck.title == "Padded"
    assert len(deck.words) == 20
    assert deck.words[0].text == "Word 0"
    assert deck.words[0].category is None
    assert deck.words[0].word_class == "noun"


def test_normalize_dedups_metadata_lists(make_deck):
    raw = make_deck(
        metadata={"categories": ["Food", " Food", "food", ""], "wordClasses": ["noun", "noun "]}
    )
    deck = normalize_deck(validate_deck(raw))

    assert deck.metadata.categories == ["Food", "food"]
    assert deck.metadata.word_classes == ["noun"]


def test_normalize_is_idempotent(make_deck):
    words = [{"text": f" Word {i % 15} ", "category": " Misc "} for i in range(25)]
    once = normalize_deck(validate_deck(make_deck(words=words)))
    twice = normalize_deck(once)

    assert serialize_deck(once) == serialize_deck(twice)


def test_serialize_is_compact_and_keeps_unicode(make_deck):
    deck = normalize_deck(validate_deck(make_deck(title="Кухня", language="ru")))
    text = serialize_deck(deck)

    assert "Кухня" in text
    assert ", " not in text
    document = json.loads(text)
    assert document["allowNSFW"] is False
    assert "coverImage" not in document["metadata"]


def test_stored_deck_may_have_fewer_words_than_upload_minimum(make_deck):
    words = [{"text": f"Word {i % 10}"} for i in range(20)]
    deck = normalize_deck(validate_deck(make_deck(words=words)))

    reloaded = load_stored_deck(serialize_deck(deck).encode("utf-8"))
    assert len(reloaded.words) == 10


def test_difficulty_range(make_deck):
    deck = validate_deck(make_deck())
    assert compute_difficulty_range(deck.words) == (0, 4)

    plain = validate_deck(make_deck(words=[{"text": f"w{i}"} for i in range(20)]))
    assert compute_difficulty_range(plain.words) == (None, None)


def test_search_text_is_lowercase():
    assert build_search_text("Big Night", "Ann", ["Party"], ["Fun"]) == "big night ann party fun"
