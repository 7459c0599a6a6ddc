"""Validated input models for documents and chunking requests."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator

from diary_kb.config import ChunkingOverrides
from diary_kb.types import Category, DocumentStatus, Language


def _normalize_tags(tags: list[str] | None) -> list[str] | None:
    if tags is None:
        return None
    cleaned: list[str] = []
    for tag in tags:
        value = tag.strip().lower()
        if value and value not in cleaned:
            cleaned.append(value)
    return cleaned


def _normalize_enum_text(value: object) -> object:
    if isinstance(value, str):
        return value.strip().lower()
    return value


class DocumentCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(min_length=1, max_length=200)
    content: str = Field(min_length=1, max_length=50_000)
    category: Category
    language: Language = Language.EN
    tags: list[str] = Field(default_factory=list)
    status: DocumentStatus = DocumentStatus.PUBLISHED
    author_id: str | None = None
    chunking: ChunkingOverrides | None = None

    @field_validator("category", "language", "status", mode="before")
    @classmethod
    def lower_enums(cls, value: object) -> object:
        return _normalize_enum_text(value)

    @field_validator("tags")
    @classmethod
    def clean_tags(cls, tags: list[str]) -> list[str]:
        return _normalize_tags(tags) or []


class DocumentUpdate(BaseModel):
    """Partial update; only fields that are set are changed."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: str | None = Field(default=None, min_length=1, max_length=200)
    content: str | None = Field(default=None, min_length=1, max_length=50_000)
    category: Category | None = None
    language: Language | None = None
    tags: list[str] | None = None
    status: DocumentStatus | None = None
    chunking: ChunkingOverrides | None = None

    @field_validator("category", "language", "status", mode="before")
    @classmethod
    def lower_enums(cls, value: object) -> object:
        return _normalize_enum_text(value)

    @field_validator("tags")
    @classmethod
    def clean_tags(cls, tags: list[str] | None) -> list[str] | None:
        return _normalize_tags(tags)

    def changes(self) -> dict[str, object]:
        return self.model_dump(exclude_unset=True, exclude={"chunking"})
