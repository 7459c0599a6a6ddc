"""Configuration models for the knowledge base."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ChunkingOptions(BaseModel):
    """Effective parameters for segmenting one document (sizes in tokens)."""

    enable_chunking: bool = True
    chunk_size: int = Field(default=500, ge=1)
    overlap: int = Field(default=100, ge=0)
    min_chunk_size: int = Field(default=50, ge=0)
    preserve_paragraphs: bool = True

    @model_validator(mode="after")
    def _check_overlap(self) -> "ChunkingOptions":
        if self.overlap >= self.chunk_size:
            raise ValueError("overlap must be less than chunk_size")
        return self


class ChunkingOverrides(BaseModel):
    """Caller-supplied overrides; unset fields leave the resolved policy alone."""

    enable_chunking: bool | None = None
    chunk_size: int | None = Field(default=None, ge=1)
    overlap: int | None = Field(default=None, ge=0)
    min_chunk_size: int | None = Field(default=None, ge=0)
    preserve_paragraphs: bool | None = None


class SearchConfig(BaseModel):
    """Configures tier fallback and candidate expansion."""

    default_limit: int = Field(default=10, ge=1)
    vector_score_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    dedup_oversample: int = Field(default=4, ge=1)
    context_limit: int = Field(default=3, ge=1)
    context_oversample: int = Field(default=2, ge=1)
    poorly_indexed_scripts: frozenset[str] = frozenset({"CYRILLIC"})


class KnowledgeSettings(BaseSettings):
    """Runtime settings loaded from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_prefix="KB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    openai_api_key: str = Field(
        default="", validation_alias=AliasChoices("OPENAI_API_KEY", "KB_OPENAI_API_KEY")
    )
    openai_model: str = Field(
        default="gpt-4o-mini", validation_alias=AliasChoices("OPENAI_MODEL", "KB_OPENAI_MODEL")
    )
    embedding_model: str = "text-embedding-3-small"

    enable_rag: bool = True
    vector_backend: Literal["faiss", "memory"] = "faiss"
    contextual_enrichment: bool = False
    backend_timeout_seconds: float = Field(default=10.0, gt=0.0)
    backend_max_retries: int = Field(default=1, ge=0, le=1)

    sqlite_path: str = "diary_kb.db"
    sync_batch_size: int = Field(default=5, ge=1)
    sync_pause_seconds: float = Field(default=1.0, ge=0.0)

    log_level: str = "INFO"


@lru_cache
def get_settings() -> KnowledgeSettings:
    return KnowledgeSettings()
