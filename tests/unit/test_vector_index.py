import pytest

from diary_kb.config import KnowledgeSettings, SearchConfig
from diary_kb.errors import BackendUnavailable
from diary_kb.ingest.embedder import HashingEmbedder
from diary_kb.retrieval.backends import InMemoryVectorBackend, metadata_matches
from diary_kb.retrieval.vector_index import VectorIndexAdapter
from diary_kb.types import Category, Document, Language


def _settings(**overrides) -> KnowledgeSettings:
    values = {"enable_rag": True, "vector_backend": "memory", "backend_max_retries": 1}
    values.update(overrides)
    return KnowledgeSettings(**values)


def _adapter(backend: InMemoryVectorBackend | None = None) -> VectorIndexAdapter:
    return VectorIndexAdapter(
        _settings(),
        backend=backend or InMemoryVectorBackend(),
        embedder=HashingEmbedder(),
        search_config=SearchConfig(vector_score_threshold=0.0),
    )


def _long_document(doc_id: str, topic: str, **fields) -> Document:
    body = "\n\n".join(f"{topic} paragraph {i}. " + f"{topic} notes " * 60 for i in range(6))
    return Document(
        id=doc_id,
        title=f"About {topic}",
        content=body,
        category=fields.pop("category", Category.GENERAL),
        **fields,
    )


def test_disabled_adapter_is_a_noop() -> None:
    adapter = VectorIndexAdapter(_settings(enable_rag=False), embedder=HashingEmbedder())

    assert adapter.initialize() is False
    assert adapter.add_documents([_long_document("a", "streak")]) == []
    assert adapter.search("streak") == []
    assert adapter.delete_document("a") == 0
    assert adapter.health()["status"] == "disabled"


def test_add_documents_replaces_previous_chunks() -> None:
    backend = InMemoryVectorBackend()
    adapter = _adapter(backend)

    first_ids = adapter.add_documents([_long_document("doc", "streak")])
    assert len(first_ids) > 1
    assert backend.count() == len(first_ids)

    short = Document(
        id="doc", title="Streaks", content="Streaks reset at midnight.", category=Category.GENERAL
    )
    second_ids = adapter.add_documents([short])

    assert second_ids == ["doc_chunk_0"]
    assert backend.count() == 1


def test_search_returns_one_result_per_document_by_default() -> None:
    adapter = _adapter()
    adapter.add_documents([_long_document("streak-doc", "streak"), _long_document("shelf-doc", "shelf")])

    results = adapter.search("streak notes", limit=5)

    ids = [result.id for result in results]
    assert len(ids) == len(set(ids))
    assert ids[0] == "streak-doc"
    assert all(result.is_chunk is False for result in results)


def test_search_can_return_chunks_with_positions() -> None:
    adapter = _adapter()
    adapter.add_documents([_long_document("streak-doc", "streak")])

    results = adapter.search("streak notes", limit=3, return_chunks=True)

    assert 0 < len(results) <= 3
    assert all(result.is_chunk for result in results)
    info = results[0].chunk_info
    assert info is not None
    assert results[0].id == info.chunk_id
    assert info.total_chunks > 1


def test_search_filters_on_metadata() -> None:
    adapter = _adapter()
    adapter.add_documents(
        [
            _long_document("en-doc", "streak", language=Language.EN, tags=["habits"]),
            _long_document("ru-doc", "streak", language=Language.RU, tags=["habits", "ru"]),
        ]
    )

    russian = adapter.search("streak", language="ru")
    tagged = adapter.search("streak", tags=["ru"])

    assert [result.id for result in russian] == ["ru-doc"]
    assert [result.id for result in tagged] == ["ru-doc"]


def test_delete_removes_all_chunks_of_a_document() -> None:
    backend = InMemoryVectorBackend()
    adapter = _adapter(backend)
    adapter.add_documents([_long_document("keep", "shelf"), _long_document("gone", "streak")])

    removed = adapter.delete_document("gone")

    assert removed > 0
    assert all(result.id != "gone" for result in adapter.search("streak notes", limit=10))
    assert adapter.health() == {"status": "ok", "mode": "active", "vectors": backend.count()}


def test_backend_failures_are_retried_then_raised() -> None:
    class FlakyBackend(InMemoryVectorBackend):
        def __init__(self, failures: int) -> None:
            super().__init__()
            self.failures = failures
            self.calls = 0

        def similarity_search(self, query_embedding, k, metadata_filter=None):
            self.calls += 1
            if self.calls <= self.failures:
                raise ConnectionError("index unreachable")
            return super().similarity_search(query_embedding, k, metadata_filter)

    recovering = FlakyBackend(failures=1)
    assert _adapter(recovering).search("anything") == []
    assert recovering.calls == 2

    down = FlakyBackend(failures=5)
    with pytest.raises(BackendUnavailable):
        _adapter(down).search("anything")
    assert down.calls == 2


def test_metadata_matches_scalar_and_list_values() -> None:
    metadata = {"category": "api", "tags": ["sync", "books"]}

    assert metadata_matches(metadata, None)
    assert metadata_matches(metadata, {"category": "api", "tags": ["books", "other"]})
    assert metadata_matches(metadata, {"tags": "sync"})
    assert not metadata_matches(metadata, {"category": "general"})
    assert not metadata_matches(metadata, {"tags": ["other"]})
