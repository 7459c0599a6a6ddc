"""Document store collaborator backed by SQLite, with FTS5 and regex indexes."""

from __future__ import annotations

import json
import logging
import re
import sqlite3
import threading
import uuid
from collections import Counter
from collections.abc import Sequence
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Protocol

from diary_kb.errors import BackendUnavailable
from diary_kb.schemas import DocumentCreate, DocumentUpdate
from diary_kb.types import Category, Document, DocumentStatus, Language

logger = logging.getLogger(__name__)

_WORD_PATTERN = re.compile(r"\w+", flags=re.UNICODE)

# Column weights for bm25(): title, content, tags.
_FTS_WEIGHTS = (10.0, 5.0, 3.0)

_COLUMNS = (
    "id, title, content, category, language, tags, status, version, "
    "author_id, created_at, updated_at"
)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    content TEXT NOT NULL,
    category TEXT NOT NULL,
    language TEXT NOT NULL,
    tags TEXT NOT NULL DEFAULT '[]',
    status TEXT NOT NULL,
    version INTEGER NOT NULL DEFAULT 1,
    author_id TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS documents_filter_idx ON documents (category, language, status);
"""

_FTS_SCHEMA = """
CREATE VIRTUAL TABLE IF NOT EXISTS documents_fts USING fts5(
    title, content, tags,
    content='documents', content_rowid='rowid', tokenize='unicode61'
);
CREATE TRIGGER IF NOT EXISTS documents_ai AFTER INSERT ON documents BEGIN
    INSERT INTO documents_fts(rowid, title, content, tags)
    VALUES (new.rowid, new.title, new.content, new.tags);
END;
CREATE TRIGGER IF NOT EXISTS documents_ad AFTER DELETE ON documents BEGIN
    INSERT INTO documents_fts(documents_fts, rowid, title, content, tags)
    VALUES ('delete', old.rowid, old.title, old.content, old.tags);
END;
CREATE TRIGGER IF NOT EXISTS documents_au AFTER UPDATE ON documents BEGIN
    INSERT INTO documents_fts(documents_fts, rowid, title, content, tags)
    VALUES ('delete', old.rowid, old.title, old.content, old.tags);
    INSERT INTO documents_fts(rowid, title, content, tags)
    VALUES (new.rowid, new.title, new.content, new.tags);
END;
"""


class DocumentStore(Protocol):
    """CRUD and lexical search contract the knowledge service depends on."""

    def create(self, payload: DocumentCreate, *, doc_id: str | None = None) -> Document: ...

    def get(self, doc_id: str) -> Document | None: ...

    def update(self, doc_id: str, changes: DocumentUpdate) -> Document | None: ...

    def delete(self, doc_id: str) -> Document | None: ...

    def list(
        self,
        *,
        category: str | None = None,
        language: str | None = None,
        tags: Sequence[str] | None = None,
        status: str | None = DocumentStatus.PUBLISHED.value,
        limit: int = 10,
        offset: int = 0,
    ) -> list[Document]: ...

    def count(self, *, status: str | None = None) -> int: ...

    def full_text_search(
        self,
        query: str,
        *,
        category: str | None = None,
        language: str | None = None,
        tags: Sequence[str] | None = None,
        limit: int = 10,
        offset: int = 0,
    ) -> list[tuple[Document, float]]: ...

    def regex_search(
        self,
        query: str,
        *,
        category: str | None = None,
        language: str | None = None,
        tags: Sequence[str] | None = None,
        limit: int = 10,
        offset: int = 0,
    ) -> list[Document]: ...

    def statistics(self) -> dict[str, Any]: ...

class SqliteDocumentStore:
    """SQLite document store.

    The `documents_fts` FTS5 table mirrors title/content/tags through
    triggers and serves the full-text tier. Regex search goes through a
    Python `REGEXP` function so it works for any script. When the SQLite
    build lacks FTS5, `fts_enabled` is False and full-text search raises
    `BackendUnavailable`.
    """

    def __init__(self, path: str = ":memory:") -> None:
        self.path = path
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.create_function("REGEXP", 2, _regexp, deterministic=True)
        with self._conn:
            self._conn.executescript(_SCHEMA)
        self.fts_enabled = self._create_fts()

    def _create_fts(self) -> bool:
        try:
            with self._conn:
                self._conn.executescript(_FTS_SCHEMA)
        except sqlite3.OperationalError as exc:
            logger.warning("SQLite FTS5 unavailable, full-text tier disabled: %s", exc)
            return False
        return True

    def close(self) -> None:
        self._conn.close()

    def create(self, payload: DocumentCreate, *, doc_id: str | None = None) -> Document:
        now = _now()
        document = Document(
            id=doc_id or uuid.uuid4().hex,
            title=payload.title,
            content=payload.content,
            category=payload.category,
            language=payload.language,
            tags=list(payload.tags),
            status=payload.status,
            version=1,
            author_id=payload.author_id,
            created_at=now,
            updated_at=now,
        )
        with self._lock, self._conn:
            self._conn.execute(
                f"INSERT INTO documents ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                _to_row(document),
            )
        logger.info("Stored document %s (%r)", document.id, document.title)
        return document

    def get(self, doc_id: str) -> Document | None:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_COLUMNS} FROM documents WHERE id = ?", (doc_id,)
            ).fetchone()
        return _from_row(row) if row else None

    def update(self, doc_id: str, changes: DocumentUpdate) -> Document | None:
        current = self.get(doc_id)
        if current is None:
            return None

        values = changes.changes()
        for key, value in values.items():
            if value is not None:
                setattr(current, key, value)
        if "content" in values and values["content"] is not None:
            current.version += 1
        current.updated_at = _now()

        with self._lock, self._conn:
            self._conn.execute(
                "UPDATE documents SET title = ?, content = ?, category = ?, language = ?, "
                "tags = ?, status = ?, version = ?, updated_at = ? WHERE id = ?",
                (
                    current.title,
                    current.content,
                    current.category.value,
                    current.language.value,
                    json.dumps(current.tags, ensure_ascii=False),
                    current.status.value,
                    current.version,
                    current.updated_at.isoformat(),
                    doc_id,
                ),
            )
        return current

    def delete(self, doc_id: str) -> Document | None:
        current = self.get(doc_id)
        if current is None:
            return None
        with self._lock, self._conn:
            self._conn.execute("DELETE FROM documents WHERE id = ?", (doc_id,))
        return current

    def list(
        self,
        *,
        category: str | None = None,
        language: str | None = None,
        tags: Sequence[str] | None = None,
        status: str | None = DocumentStatus.PUBLISHED.value,
        limit: int = 10,
        offset: int = 0,
    ) -> list[Document]:
        clauses, params = _filters(category, language, tags, status)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._lock:
            rows = self._conn.execute(
                f"SELECT {_COLUMNS} FROM documents {where} "
                "ORDER BY updated_at DESC, id LIMIT ? OFFSET ?",
                (*params, limit, offset),
            ).fetchall()
        return [_from_row(row) for row in rows]

    def count(self, *, status: str | None = None) -> int:
        with self._lock:
            if status is None:
                row = self._conn.execute("SELECT COUNT(*) FROM documents").fetchone()
            else:
                row = self._conn.execute(
                    "SELECT COUNT(*) FROM documents WHERE status = ?", (status,)
                ).fetchone()
        return int(row[0])

    def full_text_search(
        self,
        query: str,
        *,
        category: str | None = None,
        language: str | None = None,
        tags: Sequence[str] | None = None,
        limit: int = 10,
        offset: int = 0,
    ) -> list[tuple[Document, float]]:
        if not self.fts_enabled:
            raise BackendUnavailable("full-text index is not available")
        terms = _query_terms(query)
        if not terms:
            return []

        match = " OR ".join(f'"{term}"' for term in terms)
        clauses, params = _filters(
            category, language, tags, DocumentStatus.PUBLISHED.value, alias="d"
        )
        weights = ", ".join(str(weight) for weight in _FTS_WEIGHTS)
        columns = ", ".join(f"d.{column.strip()}" for column in _COLUMNS.split(","))
        sql = (
            f"SELECT {columns}, bm25(documents_fts, {weights}) AS rank "
            "FROM documents_fts JOIN documents d ON d.rowid = documents_fts.rowid "
            f"WHERE documents_fts MATCH ? AND {' AND '.join(clauses)} "
            "ORDER BY rank LIMIT ? OFFSET ?"
        )
        try:
            with self._lock:
                rows = self._conn.execute(sql, (match, *params, limit, offset)).fetchall()
        except sqlite3.Error as exc:
            raise BackendUnavailable(f"full-text query failed: {exc}") from exc
        # bm25() is lower-is-better; flip it so higher scores rank first everywhere.
        return [(_from_row(row), -float(row["rank"])) for row in rows]

    def regex_search(
        self,
        query: str,
        *,
        category: str | None = None,
        language: str | None = None,
        tags: Sequence[str] | None = None,
        limit: int = 10,
        offset: int = 0,
    ) -> list[Document]:
        terms = [term for term in _query_terms(query) if len(term) >= 2]
        if not terms:
            stripped = query.strip()
            if not stripped:
                return []
            terms = [stripped]

        pattern = "|".join(re.escape(term) for term in terms)
        clauses, params = _filters(category, language, tags, DocumentStatus.PUBLISHED.value)
        sql = (
            f"SELECT {_COLUMNS} FROM documents "
            "WHERE (title REGEXP ? OR content REGEXP ? OR tags REGEXP ?) "
            f"AND {' AND '.join(clauses)}"
        )
        try:
            with self._lock:
                rows = self._conn.execute(sql, (pattern, pattern, pattern, *params)).fetchall()
        except sqlite3.Error as exc:
            raise BackendUnavailable(f"regex query failed: {exc}") from exc

        documents = [_from_row(row) for row in rows]
        ranked = sorted(
            documents,
            key=lambda doc: (
                -_matched_terms(doc, terms),
                -(doc.updated_at.timestamp() if doc.updated_at else 0.0),
                doc.id,
            ),
        )
        return ranked[offset : offset + limit]

    def statistics(self) -> dict[str, Any]:
        with self._lock:
            rows = self._conn.execute("SELECT category, language, status, tags FROM documents").fetchall()
        tag_counts: Counter[str] = Counter()
        for row in rows:
            tag_counts.update(json.loads(row["tags"]))
        return {
            "by_category": dict(Counter(row["category"] for row in rows)),
            "by_language": dict(Counter(row["language"] for row in rows)),
            "by_status": dict(Counter(row["status"] for row in rows)),
            "top_tags": [{"tag": tag, "count": count} for tag, count in tag_counts.most_common(20)],
        }


def _filters(
    category: str | None,
    language: str | None,
    tags: Sequence[str] | None,
    status: str | None,
    *,
    alias: str = "documents",
) -> tuple[list[str], list[Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    if status:
        clauses.append(f"{alias}.status = ?")
        params.append(status)
    if category:
        clauses.append(f"{alias}.category = ?")
        params.append(category)
    if language:
        clauses.append(f"{alias}.language = ?")
        params.append(language)
    if tags:
        placeholders = ", ".join("?" for _ in tags)
        clauses.append(
            f"EXISTS (SELECT 1 FROM json_each({alias}.tags) WHERE json_each.value IN ({placeholders}))"
        )
        params.extend(tag.lower() for tag in tags)
    if not clauses:
        clauses.append("1 = 1")
    return clauses, params


def _query_terms(query: str) -> list[str]:
    seen: list[str] = []
    for term in _WORD_PATTERN.findall(query.lower()):
        if term not in seen:
            seen.append(term)
    return seen


def _matched_terms(document: Document, terms: list[str]) -> int:
    haystack = " ".join((document.title, document.content, " ".join(document.tags))).lower()
    return sum(1 for term in terms if term.lower() in haystack)


@lru_cache(maxsize=256)
def _compile(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern, flags=re.IGNORECASE)


def _regexp(pattern: str, value: str | None) -> bool:
    if value is None:
        return False
    return _compile(pattern).search(value) is not None


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_row(document: Document) -> tuple[Any, ...]:
    return (
        document.id,
        document.title,
        document.content,
        document.category.value,
        document.language.value,
        json.dumps(document.tags, ensure_ascii=False),
        document.status.value,
        document.version,
        document.author_id,
        document.created_at.isoformat() if document.created_at else _now().isoformat(),
        document.updated_at.isoformat() if document.updated_at else _now().isoformat(),
    )


def _from_row(row: sqlite3.Row) -> Document:
    return Document(
        id=row["id"],
        title=row["title"],
        content=row["content"],
        category=Category(row["category"]),
        language=Language(row["language"]),
        tags=json.loads(row["tags"]),
        status=DocumentStatus(row["status"]),
        version=int(row["version"]),
        author_id=row["author_id"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )
