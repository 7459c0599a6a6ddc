import pytest

pytest.importorskip("faiss")
pytest.importorskip("langchain_community.vectorstores")

from diary_kb.ingest.embedder import HashingEmbedder  # noqa: E402
from diary_kb.retrieval.backends import FaissVectorBackend  # noqa: E402
from diary_kb.types import Chunk  # noqa: E402


def _chunk(doc_id: str, index: int, text: str, tags: list[str]) -> Chunk:
    return Chunk(
        chunk_id=f"{doc_id}_chunk_{index}",
        doc_id=doc_id,
        text=text,
        index=index,
        start_index=0,
        end_index=len(text),
        token_count=len(text) // 4,
        metadata={"doc_id": doc_id, "category": "general", "tags": tags},
    )


def _upsert(backend: FaissVectorBackend, embedder: HashingEmbedder, chunks: list[Chunk]) -> None:
    backend.upsert(chunks, embedder.embed_documents([chunk.text for chunk in chunks]))


def test_faiss_backend_replaces_filters_and_deletes() -> None:
    embedder = HashingEmbedder()
    backend = FaissVectorBackend(embedder)
    _upsert(
        backend,
        embedder,
        [
            _chunk("a", 0, "reading streak grows daily", ["habits"]),
            _chunk("a", 1, "streak resets at midnight", ["habits"]),
            _chunk("b", 0, "sort books on the shelf", ["books"]),
        ],
    )
    assert backend.count() == 3

    _upsert(backend, embedder, [_chunk("a", 0, "streak goals for the month", ["habits"])])
    assert backend.count() == 3

    query = embedder.embed_query("streak goals")
    hits = backend.similarity_search(query, k=3)
    assert hits[0].chunk.text == "streak goals for the month"
    assert [hit.chunk.text for hit in hits].count("reading streak grows daily") == 0

    filtered = backend.similarity_search(query, k=3, metadata_filter={"tags": ["books"]})
    assert [hit.chunk.doc_id for hit in filtered] == ["b"]

    assert backend.delete_document("a") == 2
    remaining = backend.similarity_search(query, k=3)
    assert {hit.chunk.doc_id for hit in remaining} == {"b"}

    _upsert(backend, embedder, [_chunk("a", 0, "streak is back", ["habits"])])
    assert backend.count() == 2
    backend.clear()
    assert backend.count() == 0
    assert backend.similarity_search(query, k=3) == []
