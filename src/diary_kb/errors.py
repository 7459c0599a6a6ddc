"""Error taxonomy for ingestion and retrieval."""

from __future__ import annotations


class KnowledgeBaseError(Exception):
    """Base class for knowledge-base errors."""


class ConfigurationError(KnowledgeBaseError):
    """Backend credentials or settings are missing; the component runs disabled."""


class BackendUnavailable(KnowledgeBaseError):
    """A network backend (embeddings, vector index, full-text index) failed."""


class DocumentValidationError(KnowledgeBaseError):
    """Caller supplied an invalid document or an unknown document id."""


class PartialSyncError(KnowledgeBaseError):
    """The document store write succeeded but the vector index write did not."""

    def __init__(self, doc_id: str, reason: str) -> None:
        super().__init__(f"Vector index out of sync for {doc_id}: {reason}")
        self.doc_id = doc_id
        self.reason = reason
