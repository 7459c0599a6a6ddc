from diary_kb.ingest.boundaries import (
    code_block_at,
    collect_structure,
    nearest_boundary,
    normalize_text,
)
from diary_kb.ingest.tokens import estimate_tokens
from diary_kb.types import CodeBlock, Heading, ParagraphBreak


def test_normalize_text_collapses_whitespace_and_converts_setext_headings() -> None:
    raw = "Title\n=====\n\nBody   text  \r\n\n\n\nMore\t\tlines\n\n## Section ##"

    assert normalize_text(raw) == "# Title\n\nBody text\n\nMore lines\n\n## Section"


def test_normalize_text_keeps_code_fences_verbatim() -> None:
    raw = "Intro   text\n\n```python\ndef f():\n    return   1\n```\n\n\n\nOutro"

    normalized = normalize_text(raw)

    assert "def f():\n    return   1\n" in normalized
    assert normalized.startswith("Intro text\n\n```python")
    assert normalized.endswith("```\n\nOutro")


def test_collect_structure_ignores_breaks_and_headings_inside_code() -> None:
    text = "# Heading\n\nPara one.\n\n```\n# not a heading\n\nstill code\n```\n\nPara two."

    elements = collect_structure(text)

    headings = [e for e in elements if isinstance(e, Heading)]
    blocks = [e for e in elements if isinstance(e, CodeBlock)]
    breaks = [e for e in elements if isinstance(e, ParagraphBreak)]
    assert [h.position for h in headings] == [0]
    assert len(blocks) == 1
    assert all(code_block_at(blocks, b.position) is None for b in breaks)
    assert [e.position for e in elements] == sorted(e.position for e in elements)


def test_nearest_boundary_prefers_earlier_on_ties_and_respects_window() -> None:
    positions = [10, 30, 50]

    assert nearest_boundary(positions, 40, low=0, high=100) == 30
    assert nearest_boundary(positions, 40, low=35, high=45) is None
    assert nearest_boundary(positions, 40, low=50, high=40) is None


def test_estimate_tokens_counts_code_denser_than_prose() -> None:
    prose = "a" * 400
    code = "```" + "b" * 294 + "```"

    assert estimate_tokens("") == 0
    assert estimate_tokens(prose) == 100
    assert estimate_tokens(code) == 100
