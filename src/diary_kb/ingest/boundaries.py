"""Whitespace normalization and structural boundary detection."""

from __future__ import annotations

import re
from bisect import bisect_left, bisect_right

from diary_kb.ingest.tokens import FENCE_PATTERN
from diary_kb.types import CodeBlock, Heading, ParagraphBreak, StructuralElement

_HORIZONTAL_WS = re.compile(r"[ \t\f\v]+")
_TRAILING_WS = re.compile(r" +\n")
_EXCESS_NEWLINES = re.compile(r"\n{3,}")
_CLOSING_HASHES = re.compile(r"^(#{1,6} .*?) +#+ *$", flags=re.MULTILINE)
_SETEXT_HEADING = re.compile(r"^(?P<title>[^\n#].*)\n(?P<rule>=+|-+) *$", flags=re.MULTILINE)
_ATX_HEADING = re.compile(r"^(?P<marks>#{1,6}) \S.*$", flags=re.MULTILINE)
_PARAGRAPH_BREAK = re.compile(r"\n\n")


def normalize_text(text: str) -> str:
    """Normalize whitespace and heading markup outside fenced code.

    Code fences are copied verbatim so indentation inside them survives.
    """

    text = text.replace("\r\n", "\n").replace("\r", "\n")
    parts: list[str] = []
    last = 0
    for match in FENCE_PATTERN.finditer(text):
        parts.append(_normalize_prose(text[last : match.start()]))
        parts.append(match.group(0))
        last = match.end()
    parts.append(_normalize_prose(text[last:]))
    return "".join(parts).strip()


def _normalize_prose(text: str) -> str:
    text = _HORIZONTAL_WS.sub(" ", text)
    text = _TRAILING_WS.sub("\n", text)
    text = _EXCESS_NEWLINES.sub("\n\n", text)
    text = _SETEXT_HEADING.sub(_setext_to_atx, text)
    return _CLOSING_HASHES.sub(r"\1", text)


def _setext_to_atx(match: re.Match[str]) -> str:
    marks = "#" if match.group("rule").startswith("=") else "##"
    return f"{marks} {match.group('title').strip()}"


def collect_structure(text: str) -> list[StructuralElement]:
    """Scan normalized text once for headings, paragraph breaks and code spans."""

    blocks = [CodeBlock(position=m.start(), end=m.end()) for m in FENCE_PATTERN.finditer(text)]
    elements: list[StructuralElement] = list(blocks)

    for match in _ATX_HEADING.finditer(text):
        if code_block_at(blocks, match.start()) is None:
            elements.append(
                Heading(position=match.start(), end=match.end(), level=len(match.group("marks")))
            )

    for match in _PARAGRAPH_BREAK.finditer(text):
        if code_block_at(blocks, match.end()) is None:
            elements.append(ParagraphBreak(position=match.end()))

    return sorted(elements, key=lambda element: element.position)


def boundary_positions(elements: list[StructuralElement]) -> list[int]:
    """Sorted unique offsets where a chunk may end cleanly."""

    positions = {
        element.position
        for element in elements
        if isinstance(element, (Heading, ParagraphBreak))
    }
    return sorted(positions)


def code_blocks(elements: list[StructuralElement]) -> list[CodeBlock]:
    return [element for element in elements if isinstance(element, CodeBlock)]


def code_block_at(blocks: list[CodeBlock], position: int) -> CodeBlock | None:
    """Return the block that strictly contains `position`, if any."""

    for block in blocks:
        if block.position < position < block.end:
            return block
        if block.position >= position:
            break
    return None


def nearest_boundary(
    positions: list[int], target: int, *, low: int, high: int
) -> int | None:
    """Closest boundary to `target` within [low, high]; ties go to the earlier one."""

    if low > high:
        return None
    start = bisect_left(positions, low)
    stop = bisect_right(positions, high)
    best: int | None = None
    for position in positions[start:stop]:
        if best is None or abs(position - target) < abs(best - target):
            best = position
    return best
