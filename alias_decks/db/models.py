"""Database models for the deck service."""

import enum
from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from alias_decks.db.session import Base


class DeckStatus(str, enum.Enum):
    """Moderation status of a deck."""

    PUBLISHED = "published"
    PENDING = "pending"
    REJECTED = "rejected"


class ApiKey(Base):
    """API keys identifying submitters and moderators."""

    __tablename__ = "api_keys"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    key_hash: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    key_prefix: Mapped[str] = mapped_column(String(12), index=True)  # "ask_" + 8 chars
    name: Mapped[str] = mapped_column(String(100))
    owner: Mapped[str] = mapped_column(String(100))  # login used as submitter identity
    is_active: Mapped[bool] = mapped_column(default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class DeckRow(Base):
    """Index row for a deck; the deck body lives in blob storage at json_path."""

    __tablename__ = "decks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    slug: Mapped[str] = mapped_column(String(191), unique=True)
    title: Mapped[str] = mapped_column(String(191))
    author: Mapped[str] = mapped_column(String(191))
    language: Mapped[str] = mapped_column(String(10), index=True)
    difficulty_min: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    difficulty_max: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    categories: Mapped[list] = mapped_column(JSON, default=list)
    word_classes: Mapped[list] = mapped_column(JSON, default=list)
    word_count: Mapped[int] = mapped_column(Integer)
    cover_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    json_path: Mapped[str] = mapped_column(Text)
    sha256: Mapped[str] = mapped_column(String(64))
    nsfw: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    submitted_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tags: Mapped[list] = mapped_column(JSON, default=list)
    sample_words: Mapped[list] = mapped_column(JSON, default=list)
    search_text: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[DeckStatus] = mapped_column(
        Enum(
            DeckStatus,
            native_enum=False,
            length=16,
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        default=DeckStatus.PUBLISHED,
        index=True,
    )
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
