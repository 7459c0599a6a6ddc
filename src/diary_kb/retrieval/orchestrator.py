"""Multi-tier search: vector, then structured full-text, then regex."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from diary_kb.config import SearchConfig
from diary_kb.retrieval.scripts import uses_any_script
from diary_kb.retrieval.vector_index import VectorIndexAdapter
from diary_kb.store.document_store import DocumentStore
from diary_kb.types import Document, SearchResponse, SearchResult, TierOutcome

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class SearchRequest:
    query: str
    category: str | None = None
    language: str | None = None
    tags: tuple[str, ...] = ()
    limit: int = 10
    page: int = 1
    return_chunks: bool = False
    score_threshold: float | None = None
    force_regex: bool = False

    @property
    def offset(self) -> int:
        return (max(1, self.page) - 1) * self.limit


class SearchTier(Protocol):
    """One fallible stage of the fallback chain."""

    name: str

    def skip_reason(self, request: SearchRequest) -> str | None:
        """Why this tier must not run for `request`, or None to run it."""

    def run(self, request: SearchRequest) -> list[SearchResult]:
        """Execute the tier; may raise."""


class VectorTier:
    name = "vector"

    def __init__(self, index: VectorIndexAdapter) -> None:
        self.index = index

    def skip_reason(self, request: SearchRequest) -> str | None:
        if request.force_regex:
            return "regex search requested"
        if not self.index.initialize():
            return f"vector index disabled: {self.index.disabled_reason}"
        return None

    def run(self, request: SearchRequest) -> list[SearchResult]:
        return self.index.search(
            request.query,
            category=request.category,
            tags=request.tags,
            language=request.language,
            limit=request.limit,
            offset=request.offset,
            return_chunks=request.return_chunks,
            score_threshold=request.score_threshold,
        )


class FullTextTier:
    name = "text"

    def __init__(self, store: DocumentStore, poorly_indexed_scripts: frozenset[str]) -> None:
        self.store = store
        self.poorly_indexed_scripts = poorly_indexed_scripts

    def skip_reason(self, request: SearchRequest) -> str | None:
        if request.force_regex:
            return "regex search requested"
        if uses_any_script(request.query, self.poorly_indexed_scripts):
            return "query script is poorly served by the full-text index"
        return None

    def run(self, request: SearchRequest) -> list[SearchResult]:
        hits = self.store.full_text_search(
            request.query,
            category=request.category,
            language=request.language,
            tags=request.tags,
            limit=request.limit,
            offset=request.offset,
        )
        return [document_result(document, score) for document, score in hits]


class RegexTier:
    name = "regex"

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    def skip_reason(self, request: SearchRequest) -> str | None:
        return None

    def run(self, request: SearchRequest) -> list[SearchResult]:
        documents = self.store.regex_search(
            request.query,
            category=request.category,
            language=request.language,
            tags=request.tags,
            limit=request.limit,
            offset=request.offset,
        )
        return [document_result(document, None) for document in documents]


def document_result(document: Document, score: float | None) -> SearchResult:
    return SearchResult(
        id=document.id,
        title=document.title,
        content=document.content,
        category=document.category.value,
        language=document.language.value,
        tags=list(document.tags),
        score=score,
    )


def run_tier(tier: SearchTier, request: SearchRequest) -> TierOutcome:
    reason = tier.skip_reason(request)
    if reason is not None:
        logger.debug("Skipping %s tier: %s", tier.name, reason)
        return TierOutcome(tier=tier.name, status="skipped", error=reason)
    try:
        results = tier.run(request)
    except Exception as exc:
        logger.warning("%s tier failed for %r: %s", tier.name, request.query[:50], exc)
        return TierOutcome(tier=tier.name, status="failed", error=str(exc))
    status = "hit" if results else "empty"
    return TierOutcome(tier=tier.name, status=status, results=tuple(results))


def first_success(
    tiers: Sequence[SearchTier], request: SearchRequest
) -> tuple[TierOutcome | None, list[TierOutcome]]:
    """Run tiers in order until one produces results."""

    outcomes: list[TierOutcome] = []
    for tier in tiers:
        outcome = run_tier(tier, request)
        outcomes.append(outcome)
        if outcome.succeeded:
            return outcome, outcomes
    return None, outcomes


class SearchOrchestrator:
    """Unifies the search tiers behind one call that never raises for backend faults."""

    def __init__(
        self,
        vector_index: VectorIndexAdapter,
        store: DocumentStore,
        config: SearchConfig | None = None,
        *,
        tiers: Sequence[SearchTier] | None = None,
    ) -> None:
        self.config = config or SearchConfig()
        self.tiers: tuple[SearchTier, ...] = tuple(
            tiers
            or (
                VectorTier(vector_index),
                FullTextTier(store, self.config.poorly_indexed_scripts),
                RegexTier(store),
            )
        )

    def search(
        self,
        query: str,
        *,
        category: str | None = None,
        language: str | None = None,
        tags: Sequence[str] | None = None,
        limit: int | None = None,
        page: int = 1,
        return_chunks: bool = False,
        score_threshold: float | None = None,
        force_regex: bool = False,
    ) -> SearchResponse:
        """Run the tier chain; `force_regex` goes straight to the regex tier."""

        request = SearchRequest(
            query=query.strip(),
            category=category,
            language=language,
            tags=tuple(tags or ()),
            limit=limit or self.config.default_limit,
            page=page,
            return_chunks=return_chunks,
            score_threshold=score_threshold,
            force_regex=force_regex,
        )
        return self._execute(request)

    def get_context_for_query(
        self,
        query: str,
        limit: int | None = None,
        *,
        language: str | None = None,
        category: str | None = None,
    ) -> SearchResponse:
        """Grounding passages for answer generation.

        Asks for chunk-level hits and oversamples candidates, then trims
        back to `limit`.
        """

        limit = limit or self.config.context_limit
        request = SearchRequest(
            query=query.strip(),
            category=category,
            language=language,
            limit=limit * self.config.context_oversample,
            return_chunks=True,
        )
        response = self._execute(request)
        response.results = response.results[:limit]
        return response

    def _execute(self, request: SearchRequest) -> SearchResponse:
        if not request.query:
            return SearchResponse(results=[], search_type="none")

        winner, outcomes = first_success(self.tiers, request)
        if winner is None:
            attempted = [outcome for outcome in outcomes if outcome.status != "skipped"]
            search_type = attempted[-1].tier if attempted else "none"
            results: list[SearchResult] = []
        else:
            search_type = winner.tier
            results = list(winner.results)

        logger.info(
            "Knowledge search %r -> %d result(s) via %s", request.query[:50], len(results), search_type
        )
        return SearchResponse(results=results, search_type=search_type, outcomes=outcomes)
