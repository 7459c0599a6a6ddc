"""Vector index adapter: chunk, embed and upsert documents; similarity search."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from typing import Any, TypeVar

from diary_kb.config import ChunkingOverrides, KnowledgeSettings, SearchConfig
from diary_kb.errors import BackendUnavailable, ConfigurationError
from diary_kb.ingest.embedder import Embedder, OpenAIEmbedder
from diary_kb.ingest.pipeline import ChunkPreparer
from diary_kb.retrieval.backends import FaissVectorBackend, InMemoryVectorBackend, VectorBackend
from diary_kb.types import Chunk, ChunkInfo, Document, ScoredChunk, SearchResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


class VectorIndexAdapter:
    """Wraps an embedder and a vector backend behind document-level operations.

    Without credentials (or with `KB_ENABLE_RAG=false`) `initialize()` leaves
    the adapter disabled: writes become no-ops and searches return nothing.
    Backend failures surface as `BackendUnavailable` after at most
    `backend_max_retries` retries.
    """

    def __init__(
        self,
        settings: KnowledgeSettings | None = None,
        *,
        backend: VectorBackend | None = None,
        embedder: Embedder | None = None,
        preparer: ChunkPreparer | None = None,
        search_config: SearchConfig | None = None,
    ) -> None:
        self.settings = settings or KnowledgeSettings()
        self.preparer = preparer or ChunkPreparer()
        self.search_config = search_config or SearchConfig()
        self._backend = backend
        self._embedder = embedder
        self.initialized = False
        self.enabled = False
        self.disabled_reason: str | None = None

    def initialize(self) -> bool:
        """Connect once; returns whether the index is enabled."""

        if self.initialized:
            return self.enabled
        self.initialized = True
        try:
            self._configure()
        except ConfigurationError as exc:
            self.enabled = False
            self.disabled_reason = str(exc)
            logger.warning("Vector index disabled: %s", exc)
            return False

        self.enabled = True
        logger.info("Vector index ready (%s)", type(self._backend).__name__)
        return True

    def _configure(self) -> None:
        if not self.settings.enable_rag:
            raise ConfigurationError("RAG is turned off (KB_ENABLE_RAG=false)")
        if self._embedder is None:
            if not self.settings.openai_api_key:
                raise ConfigurationError("OPENAI_API_KEY is not set")
            self._embedder = OpenAIEmbedder(
                api_key=self.settings.openai_api_key,
                model=self.settings.embedding_model,
                timeout=self.settings.backend_timeout_seconds,
                max_retries=self.settings.backend_max_retries,
            )
        if self._backend is None:
            if self.settings.vector_backend == "faiss":
                self._backend = FaissVectorBackend(self._embedder)
            else:
                self._backend = InMemoryVectorBackend()

    def add_documents(
        self,
        items: Sequence[Document | Chunk],
        overrides: ChunkingOverrides | Mapping[str, Any] | None = None,
    ) -> list[str]:
        """Index documents (or pre-built chunks); returns the stored chunk ids.

        A document that is already indexed has all of its previous chunks
        replaced.
        """

        if not self._ready("add_documents"):
            return []

        stored: list[str] = []
        loose_chunks: list[Chunk] = []
        for item in items:
            if isinstance(item, Document):
                chunks = self.preparer.prepare(item, overrides)
                self._replace(item.id, chunks)
                stored.extend(chunk.chunk_id for chunk in chunks)
            else:
                loose_chunks.append(item)

        if loose_chunks:
            embeddings = self._call(
                "embed", self._embedder.embed_documents, [c.embedding_text for c in loose_chunks]
            )
            self._call("upsert", self._backend.upsert, loose_chunks, embeddings)
            stored.extend(chunk.chunk_id for chunk in loose_chunks)

        logger.info("Indexed %d chunk(s) from %d item(s)", len(stored), len(items))
        return stored

    def _replace(self, doc_id: str, chunks: list[Chunk]) -> None:
        # Embed before deleting so a failed embedding call keeps the old vectors.
        embeddings = (
            self._call("embed", self._embedder.embed_documents, [c.embedding_text for c in chunks])
            if chunks
            else []
        )
        removed = self._call("delete", self._backend.delete_document, doc_id)
        if chunks:
            self._call("upsert", self._backend.upsert, chunks, embeddings)
        logger.debug("Replaced %d old chunk(s) of %s with %d", removed, doc_id, len(chunks))

    def search(
        self,
        query: str,
        *,
        category: str | None = None,
        tags: Sequence[str] | None = None,
        language: str | None = None,
        limit: int | None = None,
        offset: int = 0,
        return_chunks: bool = False,
        score_threshold: float | None = None,
    ) -> list[SearchResult]:
        if not self._ready("search"):
            return []

        limit = limit or self.search_config.default_limit
        threshold = (
            self.search_config.vector_score_threshold
            if score_threshold is None
            else score_threshold
        )
        metadata_filter: dict[str, Any] = {}
        if category:
            metadata_filter["category"] = category
        if language:
            metadata_filter["language"] = language
        # Stored tags are lower-cased on write.
        filter_tags = [tag.strip().lower() for tag in tags or () if tag.strip()]
        if filter_tags:
            metadata_filter["tags"] = filter_tags

        offset = max(0, offset)
        window = offset + limit
        k = window if return_chunks else window * self.search_config.dedup_oversample
        query_embedding = self._call("embed_query", self._embedder.embed_query, query)
        hits = self._call(
            "similarity_search",
            self._backend.similarity_search,
            query_embedding,
            k,
            metadata_filter or None,
        )
        hits = [hit for hit in hits if hit.score >= threshold]

        if return_chunks:
            results = [_chunk_result(hit) for hit in hits]
        else:
            results = _best_per_document(hits)
        page = results[offset:window]
        logger.info("Vector search %r -> %d result(s)", query[:50], len(page))
        return page

    def delete_document(self, doc_id: str) -> int:
        """Remove every chunk of `doc_id`; returns the number removed."""

        if not self._ready("delete_document"):
            return 0
        removed = self._call("delete", self._backend.delete_document, doc_id)
        logger.info("Removed %d chunk(s) of %s from vector index", removed, doc_id)
        return removed

    def clear(self) -> None:
        if self._ready("clear"):
            self._call("clear", self._backend.clear)

    def health(self) -> dict[str, Any]:
        if not self.initialized:
            return {"status": "error", "mode": "uninitialized", "vectors": 0}
        if not self.enabled:
            return {
                "status": "disabled",
                "mode": "stub",
                "vectors": 0,
                "reason": self.disabled_reason,
            }
        try:
            count = self._call("count", self._backend.count)
        except BackendUnavailable as exc:
            return {"status": "error", "mode": "active", "vectors": 0, "reason": str(exc)}
        return {"status": "ok", "mode": "active", "vectors": count}

    def _ready(self, operation: str) -> bool:
        if not self.initialized:
            self.initialize()
        if not self.enabled:
            logger.debug("Vector index disabled, skipping %s", operation)
        return self.enabled

    def _call(self, operation: str, func: Callable[..., T], *args: Any) -> T:
        attempts = 1 + self.settings.backend_max_retries
        for attempt in range(1, attempts + 1):
            try:
                return func(*args)
            except Exception as exc:
                if attempt == attempts:
                    raise BackendUnavailable(f"{operation} failed: {exc}") from exc
                logger.warning(
                    "Vector backend %s failed (attempt %d/%d): %s", operation, attempt, attempts, exc
                )
        raise AssertionError("unreachable")


def _chunk_result(hit: ScoredChunk) -> SearchResult:
    chunk = hit.chunk
    return SearchResult(
        id=chunk.chunk_id,
        title=str(chunk.metadata.get("title", "")),
        content=chunk.text,
        category=str(chunk.metadata.get("category", "")),
        language=str(chunk.metadata.get("language", "")),
        tags=list(chunk.metadata.get("tags") or []),
        score=hit.score,
        is_chunk=True,
        chunk_info=ChunkInfo(
            chunk_id=chunk.chunk_id,
            index=chunk.index,
            total_chunks=int(chunk.metadata.get("total_chunks", 1)),
            start_index=chunk.start_index,
            end_index=chunk.end_index,
        ),
    )


def _best_per_document(hits: list[ScoredChunk]) -> list[SearchResult]:
    seen: set[str] = set()
    results: list[SearchResult] = []
    for hit in sorted(hits, key=lambda item: -item.score):
        if hit.chunk.doc_id in seen:
            continue
        seen.add(hit.chunk.doc_id)
        result = _chunk_result(hit)
        result.id = hit.chunk.doc_id
        result.is_chunk = False
        result.chunk_info = None
        results.append(result)
    return results
