from datetime import datetime, timezone

from diary_kb.config import ChunkingOptions
from diary_kb.ingest.boundaries import code_blocks, collect_structure, normalize_text
from diary_kb.ingest.segmenter import TextSegmenter, chunk_id_for, chunking_stats, reconstruct_text
from diary_kb.types import Category, Document


def _paragraph(seed: int, words: int = 60) -> str:
    vocabulary = ["reading", "diary", "streak", "goal", "page", "chapter", "note", "shelf"]
    return " ".join(vocabulary[(seed + i) % len(vocabulary)] for i in range(words)) + "."


def _structured_text() -> str:
    sections = []
    for index in range(8):
        sections.append(f"## Section {index}")
        sections.extend(_paragraph(index * 3 + offset) for offset in range(3))
        if index == 3:
            code = "\n".join(f"    step_{line} = run_step({line})" for line in range(12))
            sections.append(f"```python\n{code}\n```")
    return "\n\n".join(sections)


def test_small_text_is_single_chunk() -> None:
    chunks = TextSegmenter().segment("Track pages   read each day.", ChunkingOptions(), doc_id="d")

    assert len(chunks) == 1
    assert chunks[0].text == "Track pages read each day."
    assert chunks[0].chunk_id == "d_chunk_0"
    assert chunks[0].metadata["total_chunks"] == 1


def test_disabled_chunking_keeps_long_text_whole() -> None:
    text = _structured_text()
    options = ChunkingOptions(enable_chunking=False, chunk_size=50, overlap=10)

    chunks = TextSegmenter().segment(text, options, doc_id="d")

    assert len(chunks) == 1
    assert chunks[0].text == normalize_text(text)


def test_uniform_prose_gets_two_overlapping_chunks() -> None:
    text = "word " * 600
    options = ChunkingOptions(chunk_size=500, overlap=100, min_chunk_size=50)

    chunks = TextSegmenter().segment(text, options, doc_id="prose")

    assert len(chunks) == 2
    first, second = chunks
    assert first.start_index == 0
    assert second.end_index == len(normalize_text(text))
    assert second.start_index < first.end_index
    assert first.end_index - second.start_index <= 400
    assert second.text.startswith("word")


def test_chunks_cover_text_within_budget_and_in_order() -> None:
    text = _structured_text()
    options = ChunkingOptions(chunk_size=120, overlap=30, min_chunk_size=20)

    chunks = TextSegmenter().segment(text, options, doc_id="guide")

    assert len(chunks) > 2
    assert reconstruct_text(chunks) == normalize_text(text)
    assert all(chunk.token_count <= options.chunk_size for chunk in chunks)
    starts = [chunk.start_index for chunk in chunks]
    assert starts == sorted(set(starts))
    assert [chunk.index for chunk in chunks] == list(range(len(chunks)))
    assert {chunk.metadata["total_chunks"] for chunk in chunks} == {len(chunks)}


def test_fitting_code_block_is_never_split() -> None:
    text = _structured_text()
    normalized = normalize_text(text)
    blocks = code_blocks(collect_structure(normalized))
    options = ChunkingOptions(chunk_size=120, overlap=30, min_chunk_size=20)

    chunks = TextSegmenter().segment(text, options, doc_id="guide")

    assert len(blocks) == 1
    block = blocks[0]
    for chunk in chunks:
        assert not block.position < chunk.start_index < block.end
        assert not block.position < chunk.end_index < block.end
    assert any(
        chunk.start_index <= block.position and block.end <= chunk.end_index for chunk in chunks
    )


def test_unbroken_text_still_terminates() -> None:
    text = "x" * 20_000
    options = ChunkingOptions(chunk_size=100, overlap=50, min_chunk_size=0)

    chunks = TextSegmenter().segment(text, options, doc_id="blob")

    assert chunks[-1].end_index == len(text)
    assert all(b.start_index > a.start_index for a, b in zip(chunks, chunks[1:]))
    assert reconstruct_text(chunks) == text


def test_segmentation_is_deterministic() -> None:
    text = _structured_text()
    options = ChunkingOptions(chunk_size=150, overlap=40)
    segmenter = TextSegmenter()

    first = segmenter.segment(text, options, doc_id="same")
    second = segmenter.segment(text, options, doc_id="same")

    assert [(c.start_index, c.end_index) for c in first] == [
        (c.start_index, c.end_index) for c in second
    ]


def test_segment_document_carries_document_metadata() -> None:
    document = Document(
        id="kb/42",
        title="Reading goals",
        content=_structured_text(),
        category=Category.USER_GUIDE,
        tags=["goals"],
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )

    chunks = TextSegmenter().segment_document(document, ChunkingOptions(chunk_size=200, overlap=40))

    assert chunks[0].chunk_id == chunk_id_for("kb/42", 0) == "kb_42_chunk_0"
    assert chunks[0].doc_id == "kb/42"
    meta = chunks[-1].metadata
    assert meta["title"] == "Reading goals"
    assert meta["category"] == "user-guide"
    assert meta["tags"] == ["goals"]
    assert meta["chunk_index"] == len(chunks) - 1
    assert meta["end_index"] == chunks[-1].end_index


def test_chunking_stats_summarizes_sizes() -> None:
    chunks = TextSegmenter().segment(
        _structured_text(), ChunkingOptions(chunk_size=120, overlap=30), doc_id="d"
    )

    stats = chunking_stats(chunks)

    assert stats["total_chunks"] == len(chunks)
    assert stats["unique_documents"] == 1
    assert sum(stats["chunk_size_distribution"].values()) == len(chunks)
    assert chunking_stats([])["total_chunks"] == 0
