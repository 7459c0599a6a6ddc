import pytest

from diary_kb.errors import BackendUnavailable
from diary_kb.schemas import DocumentCreate, DocumentUpdate
from diary_kb.store.document_store import SqliteDocumentStore
from diary_kb.types import DocumentStatus


def _create(store: SqliteDocumentStore, title: str, content: str, **fields):
    payload = {"category": "general", **fields, "title": title, "content": content}
    return store.create(DocumentCreate(**payload))


def test_create_get_update_delete_roundtrip() -> None:
    store = SqliteDocumentStore()
    document = _create(store, "Shelves", "Organize books into shelves.", tags=["Books", "books "])

    assert document.tags == ["books"]
    assert store.get(document.id) == document

    updated = store.update(document.id, DocumentUpdate(content="Organize books by genre."))
    assert updated is not None
    assert updated.version == 2
    assert updated.content == "Organize books by genre."

    retitled = store.update(document.id, DocumentUpdate(title="Bookshelves"))
    assert retitled is not None and retitled.version == 2

    assert store.delete(document.id) is not None
    assert store.get(document.id) is None
    assert store.delete(document.id) is None
    assert store.update("missing", DocumentUpdate(title="x")) is None


def test_list_filters_by_category_language_tags_and_status() -> None:
    store = SqliteDocumentStore()
    _create(store, "Guide", "How to log pages.", category="user-guide", tags=["logging"])
    _create(store, "Руководство", "Как записывать страницы.", language="ru", tags=["logging"])
    _create(store, "Draft", "Unfinished.", status="draft")

    assert [d.title for d in store.list(category="user-guide")] == ["Guide"]
    assert [d.title for d in store.list(language="ru")] == ["Руководство"]
    assert {d.title for d in store.list(tags=["logging"])} == {"Guide", "Руководство"}
    assert [d.title for d in store.list(status="draft")] == ["Draft"]
    assert store.count() == 3
    assert store.count(status=DocumentStatus.PUBLISHED.value) == 2


def test_full_text_search_weights_title_matches() -> None:
    store = SqliteDocumentStore()
    if not store.fts_enabled:
        pytest.skip("SQLite build without FTS5")
    in_title = _create(store, "Reading goals", "Set a target for the month.")
    _create(store, "Monthly summary", "Your goals appear in the monthly summary once set.")
    _create(store, "Hidden goals", "Drafts are not searchable.", status="draft")

    hits = store.full_text_search("goals")

    assert [document.id for document, _ in hits][0] == in_title.id
    assert len(hits) == 2
    assert hits[0][1] >= hits[1][1]


def test_full_text_search_unavailable_raises() -> None:
    store = SqliteDocumentStore()
    store.fts_enabled = False

    with pytest.raises(BackendUnavailable):
        store.full_text_search("goals")


def test_regex_search_matches_any_term_case_insensitively() -> None:
    store = SqliteDocumentStore()
    both = _create(store, "Цели и привычки", "Цели помогают читать регулярно.")
    one = _create(store, "Привычки", "Ежедневное чтение.")
    _create(store, "Streaks", "Unrelated English text.")

    results = store.regex_search("ЦЕЛИ привычки")

    assert [document.id for document in results] == [both.id, one.id]
    assert store.regex_search("   ") == []
    assert store.regex_search("a.b(") == []


def test_statistics_counts_documents() -> None:
    store = SqliteDocumentStore()
    _create(store, "One", "First.", tags=["alpha"])
    _create(store, "Two", "Second.", category="api", tags=["alpha", "beta"])

    stats = store.statistics()

    assert stats["by_category"] == {"general": 1, "api": 1}
    assert stats["top_tags"][0] == {"tag": "alpha", "count": 2}
