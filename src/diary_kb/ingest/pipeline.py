"""Document to chunks: resolve policy -> segment -> (optionally) enrich."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from diary_kb.config import ChunkingOverrides
from diary_kb.ingest.boundaries import normalize_text
from diary_kb.ingest.enricher import ContextualEnricher
from diary_kb.ingest.policy import ChunkingPolicyResolver
from diary_kb.ingest.segmenter import TextSegmenter
from diary_kb.types import Chunk, Document

logger = logging.getLogger(__name__)


class ChunkPreparer:
    """Turns a document into embeddable chunks.

    Kept separate from the vector adapter so chunking can be inspected (and
    tested) without any backend.
    """

    def __init__(
        self,
        resolver: ChunkingPolicyResolver | None = None,
        segmenter: TextSegmenter | None = None,
        enricher: ContextualEnricher | None = None,
    ) -> None:
        self.resolver = resolver or ChunkingPolicyResolver()
        self.segmenter = segmenter or TextSegmenter()
        self.enricher = enricher

    def prepare(
        self,
        document: Document,
        overrides: ChunkingOverrides | Mapping[str, Any] | None = None,
    ) -> list[Chunk]:
        options = self.resolver.resolve(document.category, len(document.content), overrides)
        chunks = self.segmenter.segment_document(document, options)
        if self.enricher is None or not chunks:
            return chunks

        full_text = normalize_text(document.content)
        outcomes = self.enricher.enrich_all(chunks, full_text)
        failed = sum(1 for outcome in outcomes if not outcome.enriched)
        if failed:
            logger.warning(
                "Enrichment skipped for %d/%d chunk(s) of %s", failed, len(outcomes), document.id
            )
        return [outcome.chunk for outcome in outcomes]
