from langchain_core.messages import AIMessage
from langchain_core.runnables import RunnableLambda

from diary_kb.config import ChunkingOptions
from diary_kb.ingest.enricher import ContextualEnricher
from diary_kb.ingest.pipeline import ChunkPreparer
from diary_kb.types import Category, Chunk, Document


def _chunk(text: str = "Set a daily page goal from the profile screen.") -> Chunk:
    return Chunk(
        chunk_id="doc_chunk_0",
        doc_id="doc",
        text=text,
        index=0,
        start_index=0,
        end_index=len(text),
        token_count=12,
        metadata={},
    )


def test_enrich_prepends_context_to_embedding_text() -> None:
    prompts: list[str] = []

    def fake_llm(prompt_value):
        prompts.append(prompt_value.to_string())
        return AIMessage(content="  From the goals chapter of the user guide.  ")

    enricher = ContextualEnricher(RunnableLambda(fake_llm))

    outcome = enricher.enrich(_chunk(), "Full guide text about reading goals.")

    assert outcome.enriched is True
    assert outcome.chunk.context == "From the goals chapter of the user guide."
    assert outcome.chunk.embedding_text.startswith("From the goals chapter")
    assert outcome.chunk.text == _chunk().text
    assert "Full guide text about reading goals." in prompts[0]
    assert "daily page goal" in prompts[0]


def test_enrich_fails_open_on_llm_error() -> None:
    def broken_llm(prompt_value):
        raise TimeoutError("model timed out")

    chunk = _chunk()
    outcome = ContextualEnricher(RunnableLambda(broken_llm)).enrich(chunk, "doc")

    assert outcome.enriched is False
    assert outcome.chunk is chunk
    assert "timed out" in (outcome.error or "")


def test_enrich_treats_empty_answer_as_failure() -> None:
    enricher = ContextualEnricher(RunnableLambda(lambda _: AIMessage(content="   ")))

    outcome = enricher.enrich(_chunk(), "doc")

    assert outcome.enriched is False
    assert outcome.chunk.context is None


def test_preparer_keeps_unenriched_chunks_when_some_calls_fail() -> None:
    calls = {"n": 0}

    def flaky_llm(prompt_value):
        calls["n"] += 1
        if calls["n"] % 2 == 0:
            raise RuntimeError("rate limited")
        return AIMessage(content="Situating summary.")

    preparer = ChunkPreparer(enricher=ContextualEnricher(RunnableLambda(flaky_llm)))
    document = Document(
        id="doc",
        title="Guide",
        content="\n\n".join(f"Paragraph {i} " + "pages read today " * 40 for i in range(12)),
        category=Category.GENERAL,
    )

    chunks = preparer.prepare(document)

    assert len(chunks) > 1
    assert any(chunk.context for chunk in chunks)
    assert any(chunk.context is None for chunk in chunks)


def test_preparer_without_enricher_only_segments() -> None:
    document = Document(id="d", title="t", content="Short note.", category=Category.GENERAL)

    chunks = ChunkPreparer().prepare(document, ChunkingOptions().model_dump())

    assert [chunk.text for chunk in chunks] == ["Short note."]
    assert chunks[0].context is None
