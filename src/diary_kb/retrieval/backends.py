"""Vector backend contract and concrete backends."""

from __future__ import annotations

from dataclasses import dataclass
from math import sqrt
from typing import Any, Protocol, cast

from diary_kb.errors import ConfigurationError
from diary_kb.ingest.embedder import Embedder
from diary_kb.types import Chunk, ScoredChunk


class VectorBackend(Protocol):
    """Minimal similarity backend used by `VectorIndexAdapter`."""

    def upsert(self, chunks: list[Chunk], embeddings: list[list[float]]) -> None:
        """Insert or replace chunk vectors keyed by chunk id."""

    def similarity_search(
        self,
        query_embedding: list[float],
        k: int,
        metadata_filter: dict[str, Any] | None = None,
    ) -> list[ScoredChunk]:
        """Top-k chunks by similarity, best first."""

    def delete_document(self, doc_id: str) -> int:
        """Remove every chunk of `doc_id`; returns how many were removed."""

    def count(self) -> int:
        """Number of stored vectors."""

    def clear(self) -> None:
        """Remove every vector."""


@dataclass(slots=True)
class _StoredVector:
    chunk: Chunk
    embedding: list[float]


class InMemoryVectorBackend:
    """Deterministic cosine-similarity backend for tests and local runs."""

    def __init__(self) -> None:
        self._store: dict[str, _StoredVector] = {}

    def upsert(self, chunks: list[Chunk], embeddings: list[list[float]]) -> None:
        if len(chunks) != len(embeddings):
            raise ValueError("chunks and embeddings must have the same length")
        for chunk, embedding in zip(chunks, embeddings, strict=True):
            self._store[chunk.chunk_id] = _StoredVector(chunk=chunk, embedding=embedding)

    def similarity_search(
        self,
        query_embedding: list[float],
        k: int,
        metadata_filter: dict[str, Any] | None = None,
    ) -> list[ScoredChunk]:
        ranked = sorted(
            (
                ScoredChunk(
                    chunk=record.chunk,
                    score=_cosine_similarity(query_embedding, record.embedding),
                )
                for record in self._store.values()
                if metadata_matches(record.chunk.metadata, metadata_filter)
            ),
            key=lambda item: (-item.score, item.chunk.chunk_id),
        )
        return [
            ScoredChunk(chunk=item.chunk, score=item.score, rank=i + 1)
            for i, item in enumerate(ranked[:k])
        ]

    def delete_document(self, doc_id: str) -> int:
        doomed = [key for key, record in self._store.items() if record.chunk.doc_id == doc_id]
        for key in doomed:
            del self._store[key]
        return len(doomed)

    def count(self) -> int:
        return len(self._store)

    def clear(self) -> None:
        self._store.clear()


class FaissVectorBackend:
    """FAISS backend via the LangChain community integration.

    Vectors are compared by inner product, which equals cosine similarity for
    the normalized embeddings OpenAI returns.
    """

    def __init__(self, embedder: Embedder) -> None:
        try:
            from langchain_community.vectorstores import FAISS
            from langchain_community.vectorstores.utils import DistanceStrategy
            from langchain_core.embeddings import Embeddings
        except ImportError as exc:  # pragma: no cover - depends on installed extras
            raise ConfigurationError(
                "FAISS dependencies are not available. Install langchain-community/faiss-cpu."
            ) from exc

        class _EmbeddingAdapter(Embeddings):
            def __init__(self, adapter_embedder: Embedder) -> None:
                self._embedder = adapter_embedder

            def embed_documents(self, texts: list[str]) -> list[list[float]]:
                return cast(list[list[float]], self._embedder.embed_documents(texts))

            def embed_query(self, text: str) -> list[float]:
                return cast(list[float], self._embedder.embed_query(text))

        self._faiss_cls = FAISS
        self._distance = DistanceStrategy.MAX_INNER_PRODUCT
        self._embeddings = _EmbeddingAdapter(embedder)
        self._index: Any | None = None
        self._chunks: dict[str, Chunk] = {}

    def upsert(self, chunks: list[Chunk], embeddings: list[list[float]]) -> None:
        if len(chunks) != len(embeddings):
            raise ValueError("chunks and embeddings must have the same length")
        if not chunks:
            return

        ids = [chunk.chunk_id for chunk in chunks]
        existing = [chunk_id for chunk_id in ids if chunk_id in self._chunks]
        if existing and self._index is not None:
            self._index.delete(existing)

        text_embeddings = list(zip([chunk.text for chunk in chunks], embeddings, strict=True))
        metadatas = [{**chunk.metadata, "chunk_id": chunk.chunk_id} for chunk in chunks]
        if self._index is None:
            self._index = self._faiss_cls.from_embeddings(
                text_embeddings=text_embeddings,
                embedding=self._embeddings,
                metadatas=metadatas,
                ids=ids,
                distance_strategy=self._distance,
            )
        else:
            self._index.add_embeddings(
                text_embeddings=text_embeddings,
                metadatas=metadatas,
                ids=ids,
            )
        for chunk in chunks:
            self._chunks[chunk.chunk_id] = chunk

    def similarity_search(
        self,
        query_embedding: list[float],
        k: int,
        metadata_filter: dict[str, Any] | None = None,
    ) -> list[ScoredChunk]:
        if self._index is None or not self._chunks:
            return []
        # Tag filters match list-valued metadata, so filter after fetching extra candidates.
        fetch = k * 4 if metadata_filter else k
        docs_and_scores = self._index.similarity_search_with_score_by_vector(
            embedding=query_embedding,
            k=fetch,
        )
        results: list[ScoredChunk] = []
        for doc, score in docs_and_scores:
            chunk = self._chunks.get(str(doc.metadata.get("chunk_id")))
            if chunk is None or not metadata_matches(chunk.metadata, metadata_filter):
                continue
            results.append(ScoredChunk(chunk=chunk, score=float(score), rank=len(results) + 1))
            if len(results) >= k:
                break
        return results

    def delete_document(self, doc_id: str) -> int:
        doomed = [key for key, chunk in self._chunks.items() if chunk.doc_id == doc_id]
        if doomed and self._index is not None:
            self._index.delete(doomed)
        for key in doomed:
            del self._chunks[key]
        return len(doomed)

    def count(self) -> int:
        return len(self._chunks)

    def clear(self) -> None:
        self._index = None
        self._chunks.clear()


def metadata_matches(metadata: dict[str, Any], metadata_filter: dict[str, Any] | None) -> bool:
    """Scalar filter values match by equality, list values by any shared element."""

    if not metadata_filter:
        return True
    for key, expected in metadata_filter.items():
        actual = metadata.get(key)
        if isinstance(expected, (list, tuple, set, frozenset)):
            actual_values = set(actual) if isinstance(actual, (list, tuple, set)) else {actual}
            if not actual_values & set(expected):
                return False
        elif isinstance(actual, (list, tuple, set)):
            if expected not in actual:
                return False
        elif actual != expected:
            return False
    return True


def _cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)
