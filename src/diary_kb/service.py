"""Knowledge service: keeps the document store and the vector index in step."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from diary_kb.config import ChunkingOverrides, KnowledgeSettings, SearchConfig
from diary_kb.errors import BackendUnavailable, DocumentValidationError, PartialSyncError
from diary_kb.ingest.enricher import ContextualEnricher, create_context_llm
from diary_kb.ingest.pipeline import ChunkPreparer
from diary_kb.retrieval.orchestrator import SearchOrchestrator
from diary_kb.retrieval.vector_index import VectorIndexAdapter
from diary_kb.schemas import DocumentCreate, DocumentUpdate
from diary_kb.store.document_store import DocumentStore, SqliteDocumentStore
from diary_kb.types import Document, DocumentStatus, SearchResponse

logger = logging.getLogger(__name__)

_REINDEX_FIELDS = frozenset({"title", "content", "category", "language", "tags", "status"})


@dataclass(slots=True)
class WriteResult:
    document: Document | None
    chunk_count: int = 0
    vector_synced: bool = True
    warning: str | None = None


@dataclass(slots=True)
class SyncReport:
    documents: int = 0
    chunks: int = 0
    batches: int = 0
    failed_ids: list[str] = field(default_factory=list)


class KnowledgeService:
    """Facade used by the API layer and the answer-generation pipeline.

    The document store is the source of truth. Vector index failures after a
    successful store write are logged as `PartialSyncError` and reported as a
    warning on the returned `WriteResult`; they are never rolled back.
    """

    def __init__(
        self,
        store: DocumentStore,
        vector_index: VectorIndexAdapter,
        *,
        search_config: SearchConfig | None = None,
        orchestrator: SearchOrchestrator | None = None,
        sync_batch_size: int = 5,
        sync_pause_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.vector_index = vector_index
        self.orchestrator = orchestrator or SearchOrchestrator(
            vector_index, store, search_config
        )
        self.sync_batch_size = sync_batch_size
        self.sync_pause_seconds = sync_pause_seconds
        self._sleep = sleep

    def initialize(self) -> None:
        self.vector_index.initialize()

    def create_document(self, payload: DocumentCreate | dict[str, Any]) -> WriteResult:
        data = _validated(DocumentCreate, payload)
        document = self.store.create(data)
        if document.status is not DocumentStatus.PUBLISHED:
            return WriteResult(document=document)
        return self._index(document, data.chunking)

    def update_document(
        self, doc_id: str, payload: DocumentUpdate | dict[str, Any]
    ) -> WriteResult:
        data = _validated(DocumentUpdate, payload)
        document = self.store.update(doc_id, data)
        if document is None:
            raise DocumentValidationError(f"Document not found: {doc_id}")
        logger.info("Updated document %s", doc_id)

        if not (_REINDEX_FIELDS & data.changes().keys()) and data.chunking is None:
            return WriteResult(document=document)
        if document.status is not DocumentStatus.PUBLISHED:
            return self._unindex(document)
        return self._index(document, data.chunking)

    def delete_document(self, doc_id: str) -> WriteResult:
        document = self.store.delete(doc_id)
        if document is None:
            raise DocumentValidationError(f"Document not found: {doc_id}")
        logger.info("Deleted document %s", doc_id)
        return self._unindex(document)

    def get_document(self, doc_id: str) -> Document:
        document = self.store.get(doc_id)
        if document is None:
            raise DocumentValidationError(f"Document not found: {doc_id}")
        return document

    def list_documents(self, **filters: Any) -> list[Document]:
        return self.store.list(**filters)

    def search(self, query: str, **options: Any) -> SearchResponse:
        return self.orchestrator.search(query, **options)

    def get_context_for_query(
        self, query: str, limit: int | None = None, **options: Any
    ) -> SearchResponse:
        return self.orchestrator.get_context_for_query(query, limit, **options)

    def resync(self, *, clear_first: bool = False) -> SyncReport:
        """Re-embed every published document in small sequential batches."""

        report = SyncReport()
        if not self.vector_index.initialize():
            logger.warning("Vector index disabled, nothing to resync")
            return report
        if clear_first:
            self.vector_index.clear()

        documents = self._all_published()
        for start in range(0, len(documents), self.sync_batch_size):
            if start:
                self._sleep(self.sync_pause_seconds)
            batch = documents[start : start + self.sync_batch_size]
            report.batches += 1
            for document in batch:
                try:
                    chunk_ids = self.vector_index.add_documents([document])
                except BackendUnavailable as exc:
                    logger.warning("Resync failed for %s: %s", document.id, exc)
                    report.failed_ids.append(document.id)
                    continue
                report.documents += 1
                report.chunks += len(chunk_ids)

        logger.info(
            "Resync finished: %d document(s), %d chunk(s), %d failure(s) in %d batch(es)",
            report.documents,
            report.chunks,
            len(report.failed_ids),
            report.batches,
        )
        return report

    def health(self) -> dict[str, Any]:
        return {
            "documents": self.store.count(status=DocumentStatus.PUBLISHED.value),
            "vector_index": self.vector_index.health(),
        }

    def statistics(self) -> dict[str, Any]:
        return self.store.statistics()

    def _all_published(self) -> list[Document]:
        documents: list[Document] = []
        page_size = 100
        while True:
            page = self.store.list(
                status=DocumentStatus.PUBLISHED.value, limit=page_size, offset=len(documents)
            )
            documents.extend(page)
            if len(page) < page_size:
                return documents

    def _index(self, document: Document, overrides: ChunkingOverrides | None) -> WriteResult:
        try:
            chunk_ids = self.vector_index.add_documents([document], overrides)
        except BackendUnavailable as exc:
            return _partial(document, exc)
        return WriteResult(
            document=document,
            chunk_count=len(chunk_ids),
            vector_synced=self.vector_index.enabled,
        )

    def _unindex(self, document: Document) -> WriteResult:
        try:
            self.vector_index.delete_document(document.id)
        except BackendUnavailable as exc:
            return _partial(document, exc)
        return WriteResult(document=document, vector_synced=self.vector_index.enabled)


def build_service(settings: KnowledgeSettings) -> KnowledgeService:
    """Wire the store, preparer and vector index from settings."""

    enricher = None
    if settings.contextual_enrichment and settings.openai_api_key:
        enricher = ContextualEnricher(
            create_context_llm(
                api_key=settings.openai_api_key,
                model=settings.openai_model,
                timeout=settings.backend_timeout_seconds,
                max_retries=settings.backend_max_retries,
            )
        )
    search_config = SearchConfig()
    vector_index = VectorIndexAdapter(
        settings,
        preparer=ChunkPreparer(enricher=enricher),
        search_config=search_config,
    )
    return KnowledgeService(
        SqliteDocumentStore(settings.sqlite_path),
        vector_index,
        search_config=search_config,
        sync_batch_size=settings.sync_batch_size,
        sync_pause_seconds=settings.sync_pause_seconds,
    )


def _partial(document: Document, exc: BackendUnavailable) -> WriteResult:
    error = PartialSyncError(document.id, str(exc))
    logger.error("%s", error)
    return WriteResult(document=document, vector_synced=False, warning=str(error))


def _validated(model: type[Any], payload: Any) -> Any:
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise DocumentValidationError(str(exc)) from exc


__all__ = ["KnowledgeService", "SyncReport", "WriteResult", "build_service"]
