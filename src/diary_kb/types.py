"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Literal, Union


class Category(str, Enum):
    GENERAL = "general"
    USER_GUIDE = "user-guide"
    TOKENOMICS = "tokenomics"
    TECHNICAL = "technical"
    TROUBLESHOOTING = "troubleshooting"
    API = "api"


class Language(str, Enum):
    EN = "en"
    ES = "es"
    RU = "ru"


class DocumentStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


@dataclass(slots=True)
class Document:
    """A knowledge-base document as held by the document store."""

    id: str
    title: str
    content: str
    category: Category
    language: Language = Language.EN
    tags: list[str] = field(default_factory=list)
    status: DocumentStatus = DocumentStatus.PUBLISHED
    version: int = 1
    author_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def metadata(self) -> dict[str, Any]:
        """Metadata inherited by every chunk of this document."""

        return {
            "title": self.title,
            "category": self.category.value,
            "language": self.language.value,
            "tags": list(self.tags),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass(slots=True)
class Chunk:
    """A bounded slice of a document's normalized text."""

    chunk_id: str
    doc_id: str
    text: str
    index: int
    start_index: int
    end_index: int
    token_count: int
    metadata: dict[str, Any]
    context: str | None = None

    @property
    def embedding_text(self) -> str:
        if self.context:
            return f"{self.context}\n\n{self.text}"
        return self.text


@dataclass(slots=True, frozen=True)
class Heading:
    position: int
    end: int
    level: int


@dataclass(slots=True, frozen=True)
class ParagraphBreak:
    position: int


@dataclass(slots=True, frozen=True)
class CodeBlock:
    position: int
    end: int


StructuralElement = Union[Heading, ParagraphBreak, CodeBlock]


@dataclass(slots=True)
class ScoredChunk:
    """A vector backend hit with its similarity score."""

    chunk: Chunk
    score: float
    rank: int = 0


@dataclass(slots=True, frozen=True)
class ChunkInfo:
    chunk_id: str
    index: int
    total_chunks: int
    start_index: int
    end_index: int


@dataclass(slots=True)
class SearchResult:
    """Uniform result shape returned by every search tier."""

    id: str
    title: str
    content: str
    category: str
    language: str
    tags: list[str]
    score: float | None = None
    is_chunk: bool = False
    chunk_info: ChunkInfo | None = None


TierStatus = Literal["hit", "empty", "skipped", "failed"]


@dataclass(slots=True, frozen=True)
class TierOutcome:
    """What a single search tier produced for one query."""

    tier: str
    status: TierStatus
    results: tuple[SearchResult, ...] = ()
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == "hit"


@dataclass(slots=True)
class SearchResponse:
    results: list[SearchResult]
    search_type: str
    outcomes: list[TierOutcome] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.results)


@dataclass(slots=True, frozen=True)
class EnrichmentOutcome:
    """Result of contextual enrichment; a failure carries the untouched chunk."""

    chunk: Chunk
    enriched: bool
    error: str | None = None
