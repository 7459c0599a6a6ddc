"""Contextual enrichment of chunks before embedding."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

from langchain_core.prompts import ChatPromptTemplate

from diary_kb.types import Chunk, EnrichmentOutcome

logger = logging.getLogger(__name__)

_CONTEXT_PROMPT = """
<document>
{document}
</document>

Here is a part of the document above:
<chunk>
{chunk}
</chunk>

Write a short description (at most two sentences) that situates this part
within the whole document, naming the key concepts it refers to so it can be
found by search. Answer with the description only, no preamble.
""".strip()

# Keeps the prompt bounded for very long documents.
_MAX_DOCUMENT_CHARS = 24_000


def create_context_llm(
    *, api_key: str, model: str, timeout: float, max_retries: int
) -> Any:
    """Build the deterministic chat model used for enrichment."""

    from langchain_openai import ChatOpenAI

    return ChatOpenAI(
        model=model,
        api_key=api_key,
        temperature=0,
        max_tokens=200,
        timeout=timeout,
        max_retries=max_retries,
    )


class ContextualEnricher:
    """Prepends an LLM-written situating summary to each chunk.

    The stage fails open: any error leaves the chunk untouched and is
    reported in the returned `EnrichmentOutcome`.
    """

    def __init__(self, llm: Any, *, max_document_chars: int = _MAX_DOCUMENT_CHARS) -> None:
        self._chain = ChatPromptTemplate.from_messages([("human", _CONTEXT_PROMPT)]) | llm
        self.max_document_chars = max_document_chars

    def enrich(self, chunk: Chunk, full_text: str) -> EnrichmentOutcome:
        try:
            response = self._chain.invoke(
                {"document": full_text[: self.max_document_chars], "chunk": chunk.text}
            )
            context = _response_text(response)
        except Exception as exc:
            logger.warning("Contextual enrichment failed for %s: %s", chunk.chunk_id, exc)
            return EnrichmentOutcome(chunk=chunk, enriched=False, error=str(exc))

        if not context:
            logger.warning("Contextual enrichment returned nothing for %s", chunk.chunk_id)
            return EnrichmentOutcome(chunk=chunk, enriched=False, error="empty response")

        return EnrichmentOutcome(chunk=replace(chunk, context=context), enriched=True)

    def enrich_all(self, chunks: list[Chunk], full_text: str) -> list[EnrichmentOutcome]:
        return [self.enrich(chunk, full_text) for chunk in chunks]


def _response_text(response: Any) -> str:
    content = getattr(response, "content", response)
    if isinstance(content, list):
        content = "".join(
            part.get("text", "") if isinstance(part, dict) else str(part) for part in content
        )
    if not isinstance(content, str):
        raise TypeError(f"Unexpected LLM response type: {type(content).__name__}")
    return content.strip()
