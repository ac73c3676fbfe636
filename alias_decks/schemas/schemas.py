"""Pydantic schemas for deck metadata and request/response validation."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from alias_decks.db.models import DeckStatus
from alias_decks.schemas.deck import Deck, DeckLanguage


# ============== Deck Metadata ==============


class DeckMetadata(BaseModel):
    """Indexed description of a stored deck."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    slug: str
    title: str
    author: str
    language: DeckLanguage
    difficulty_min: Optional[int] = None
    difficulty_max: Optional[int] = None
    categories: list[str] = Field(default_factory=list)
    word_classes: list[str] = Field(default_factory=list)
    word_count: int
    cover_url: Optional[str] = None
    json_path: str
    sha256: str
    nsfw: bool = False
    created_at: datetime
    updated_at: datetime
    submitted_by: Optional[str] = None
    description: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    sample_words: list[str] = Field(default_factory=list)
    status: DeckStatus = DeckStatus.PUBLISHED
    rejection_reason: Optional[str] = None

    def to_public(self, include_moderation_fields: bool = False) -> dict[str, Any]:
        data = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        if not include_moderation_fields:
            data.pop("rejectionReason", None)
        return data


@dataclass
class DeckRecord:
    metadata: DeckMetadata
    deck: Deck


@dataclass
class DeckFilters:
    query: Optional[str] = None
    language: Optional[str] = None
    categories: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    include_nsfw: bool = False
    difficulty_min: Optional[int] = None
    difficulty_max: Optional[int] = None
    page: int = 1
    page_size: int = 12
    statuses: list[DeckStatus] = field(default_factory=list)


@dataclass
class DeckSearchResult:
    items: list[DeckMetadata]
    total: int
    page: int
    page_size: int


@dataclass
class DeckFacets:
    languages: list[str]
    categories: list[str]
    tags: list[str]
    difficulty_min: Optional[int] = None
    difficulty_max: Optional[int] = None


# ============== Deck API Schemas ==============


class DeckUploadResponse(BaseModel):
    """Response after a successful upload."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    slug: str
    deck_url: str
    json_url: str
    import_url: str
    status: DeckStatus


class DifficultyFacet(BaseModel):
    min: Optional[int] = None
    max: Optional[int] = None


class FacetsResponse(BaseModel):
    languages: list[str]
    categories: list[str]
    tags: list[str]
    difficulty: DifficultyFacet


class DeckListResponse(BaseModel):
    """Paginated deck listing with catalog facets."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    items: list[dict[str, Any]]
    total: int
    page: int
    page_size: int
    facets: FacetsResponse


class ValidationIssue(BaseModel):
    path: list[Any]
    message: str
    code: str


class DeckValidateResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool
    deck: Optional[dict[str, Any]] = None
    word_count: Optional[int] = None
    language: Optional[str] = None
    message: Optional[str] = None
    issues: list[ValidationIssue] = Field(default_factory=list)


class ModerationRequest(BaseModel):
    """Admin request to move a deck to another status."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    slug: str = Field(..., min_length=1)
    status: DeckStatus
    rejection_reason: Optional[str] = None


# ============== API Key Schemas ==============


class ApiKeyCreate(BaseModel):
    """Request to create a new API key."""

    name: str = Field(..., min_length=1, max_length=100)
    owner: str = Field(..., min_length=1, max_length=100)
    expires_in_days: Optional[int] = Field(None, ge=1, le=365)


class ApiKeyResponse(BaseModel):
    """Response after creating an API key (only time full key is shown)."""

    id: str
    api_key: str  # Full key, shown only once
    key_prefix: str
    name: str
    owner: str
    is_admin: bool
    created_at: datetime
    expires_at: Optional[datetime] = None


class ApiKeyInfo(BaseModel):
    """API key info (without full key)."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    key_prefix: str
    name: str
    owner: str
    is_active: bool
    created_at: datetime
    expires_at: Optional[datetime] = None


# ============== Health & Misc Schemas ==============


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: str
    storage: str
    deck_store: str


class LanguageInfo(BaseModel):
    code: str
    name: str
