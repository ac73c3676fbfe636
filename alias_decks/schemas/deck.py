"""Deck document contract: the JSON players upload and the game imports."""

from typing import Literal, Optional
from urllib.parse import urlparse

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
)
from pydantic_core import PydanticCustomError

from alias_decks.exceptions import DeckValidationError

DeckLanguage = Literal["en", "ru"]

MIN_DECK_WORDS = 20


class DeckWord(BaseModel):
    """A single card in a deck."""

    model_config = ConfigDict(populate_by_name=True)

    text: str = Field(..., min_length=1)
    difficulty: Optional[int] = Field(None, ge=0, le=10)
    category: Optional[str] = None
    word_class: Optional[str] = Field(None, alias="wordClass")

    @field_validator("difficulty", mode="before")
    @classmethod
    def check_difficulty_is_number(cls, v: object) -> object:
        # integral floats such as 5.0 pass; strings and booleans do not
        if isinstance(v, (bool, str)):
            raise PydanticCustomError("int_type", "Input should be a valid integer")
        return v


class DeckMetadataBlock(BaseModel):
    """Free-form deck metadata embedded in the document."""

    model_config = ConfigDict(populate_by_name=True)

    categories: list[str] = Field(default_factory=list)
    word_classes: list[str] = Field(default_factory=list, alias="wordClasses")
    cover_image: Optional[str] = Field(None, alias="coverImage")
    version: Optional[str] = None

    @field_validator("cover_image")
    @classmethod
    def check_cover_image(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        parsed = urlparse(v)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError("Invalid url")
        return v


class Deck(BaseModel):
    """Canonical deck document."""

    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(..., min_length=1, max_length=100)
    author: str = Field(..., min_length=1, max_length=100)
    language: DeckLanguage
    allow_nsfw: bool = Field(False, alias="allowNSFW", strict=True)
    words: list[DeckWord]
    metadata: DeckMetadataBlock = Field(default_factory=DeckMetadataBlock)

    @field_validator("words")
    @classmethod
    def check_word_count(cls, v: list[DeckWord], info: ValidationInfo) -> list[DeckWord]:
        # stored decks were validated on upload and may have shrunk during normalization
        if info.context and info.context.get("stored"):
            return v
        if len(v) < MIN_DECK_WORDS:
            raise PydanticCustomError(
                "too_short",
                "List should have at least {min_length} items after validation, not {actual_length}",
                {"min_length": MIN_DECK_WORDS, "actual_length": len(v)},
            )
        return v

    def to_document(self) -> dict:
        """Dump with the public camelCase keys, omitting absent fields."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def format_issues(error: ValidationError) -> list[dict]:
    """Flatten pydantic errors into ``{path, message, code}`` issues."""
    return [
        {
            "path": list(issue["loc"]),
            "message": issue["msg"],
            "code": issue["type"],
        }
        for issue in error.errors()
    ]


def validate_deck(raw: object) -> Deck:
    """
    Validate a decoded JSON value against the deck contract.

    Every violated field is reported; nothing short-circuits on the first
    failure.
    """
    if not isinstance(raw, dict):
        raise DeckValidationError(
            issues=[{"path": [], "message": "Expected object", "code": "model_type"}]
        )
    try:
        return Deck.model_validate(raw)
    except ValidationError as e:
        raise DeckValidationError(issues=format_issues(e)) from e


def load_stored_deck(body: bytes) -> Deck:
    """Parse a deck read back from blob storage."""
    return Deck.model_validate_json(body, context={"stored": True})
