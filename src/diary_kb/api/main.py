"""FastAPI entrypoint for document management and knowledge search."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, HTTPException, Query, Request
from pydantic import BaseModel, Field

from diary_kb.config import get_settings
from diary_kb.errors import DocumentValidationError
from diary_kb.logging_config import setup_logging
from diary_kb.schemas import DocumentCreate, DocumentUpdate
from diary_kb.service import KnowledgeService, WriteResult, build_service
from diary_kb.types import Document, SearchResponse


class ContextRequest(BaseModel):
    query: str = Field(min_length=1)
    limit: int = Field(default=3, ge=1, le=20)
    language: str | None = None
    category: str | None = None


class ResyncRequest(BaseModel):
    clear_first: bool = False


def _document_payload(document: Document) -> dict[str, Any]:
    return {
        "id": document.id,
        "title": document.title,
        "content": document.content,
        "category": document.category.value,
        "language": document.language.value,
        "tags": document.tags,
        "status": document.status.value,
        "version": document.version,
        "author_id": document.author_id,
        "created_at": document.created_at.isoformat() if document.created_at else None,
        "updated_at": document.updated_at.isoformat() if document.updated_at else None,
    }


def _write_payload(result: WriteResult) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "document": _document_payload(result.document) if result.document else None,
        "chunks_created": result.chunk_count,
        "vector_synced": result.vector_synced,
    }
    if result.warning:
        payload["warning"] = result.warning
    return payload


def _search_payload(response: SearchResponse) -> dict[str, Any]:
    return {
        "search_type": response.search_type,
        "count": response.count,
        "items": [asdict(result) for result in response.results],
        "tiers": [
            {"tier": outcome.tier, "status": outcome.status, "error": outcome.error}
            for outcome in response.outcomes
        ],
    }


def _not_found_or_invalid(exc: DocumentValidationError) -> HTTPException:
    message = str(exc)
    status_code = 404 if message.startswith("Document not found") else 400
    return HTTPException(status_code=status_code, detail=message)


def create_app(service: KnowledgeService | None = None) -> FastAPI:
    """Build the app around `service`; without one it is built from settings on startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if getattr(app.state, "service", None) is None:
            settings = get_settings()
            setup_logging(settings.log_level)
            app.state.service = build_service(settings)
        app.state.service.initialize()
        yield

    app = FastAPI(title="Reading Diary Knowledge Base", version="0.1.0", lifespan=lifespan)
    app.state.service = service

    def _service(request: Request) -> KnowledgeService:
        current = request.app.state.service
        if current is None:
            raise HTTPException(status_code=503, detail="Knowledge service is not ready")
        return current

    @app.get("/health")
    def health(request: Request) -> dict[str, Any]:
        details = _service(request).health()
        return {"status": "ok", **details}

    @app.post("/documents", status_code=201)
    def create_document(request: Request, payload: DocumentCreate) -> dict[str, Any]:
        try:
            result = _service(request).create_document(payload)
        except DocumentValidationError as exc:
            raise _not_found_or_invalid(exc) from exc
        return _write_payload(result)

    @app.get("/documents")
    def list_documents(
        request: Request,
        category: str | None = None,
        language: str | None = None,
        tags: list[str] | None = Query(default=None),
        status: str = "published",
        limit: int = Query(default=10, ge=1, le=100),
        offset: int = Query(default=0, ge=0),
    ) -> dict[str, Any]:
        documents = _service(request).list_documents(
            category=category,
            language=language,
            tags=tags,
            status=status,
            limit=limit,
            offset=offset,
        )
        return {"items": [_document_payload(document) for document in documents]}

    @app.get("/documents/{doc_id}")
    def get_document(request: Request, doc_id: str) -> dict[str, Any]:
        try:
            document = _service(request).get_document(doc_id)
        except DocumentValidationError as exc:
            raise _not_found_or_invalid(exc) from exc
        return _document_payload(document)

    @app.patch("/documents/{doc_id}")
    def update_document(request: Request, doc_id: str, payload: DocumentUpdate) -> dict[str, Any]:
        try:
            result = _service(request).update_document(doc_id, payload)
        except DocumentValidationError as exc:
            raise _not_found_or_invalid(exc) from exc
        return _write_payload(result)

    @app.delete("/documents/{doc_id}")
    def delete_document(request: Request, doc_id: str) -> dict[str, Any]:
        try:
            result = _service(request).delete_document(doc_id)
        except DocumentValidationError as exc:
            raise _not_found_or_invalid(exc) from exc
        return _write_payload(result)

    @app.get("/search")
    def search(
        request: Request,
        q: str = Query(min_length=1),
        category: str | None = None,
        language: str | None = None,
        tags: list[str] | None = Query(default=None),
        limit: int = Query(default=10, ge=1, le=50),
        page: int = Query(default=1, ge=1),
        return_chunks: bool = False,
        force_regex: bool = False,
    ) -> dict[str, Any]:
        response = _service(request).search(
            q,
            category=category,
            language=language,
            tags=tags,
            limit=limit,
            page=page,
            return_chunks=return_chunks,
            force_regex=force_regex,
        )
        return _search_payload(response)

    @app.post("/context")
    def context(request: Request, body: ContextRequest) -> dict[str, Any]:
        response = _service(request).get_context_for_query(
            body.query, body.limit, language=body.language, category=body.category
        )
        return _search_payload(response)

    @app.post("/resync")
    def resync(request: Request, body: ResyncRequest | None = None) -> dict[str, Any]:
        report = _service(request).resync(clear_first=body.clear_first if body else False)
        return asdict(report)

    @app.get("/stats")
    def stats(request: Request) -> dict[str, Any]:
        return _service(request).statistics()

    return app


app = create_app()
