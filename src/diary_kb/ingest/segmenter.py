"""Structure-aware sliding-window segmentation."""

from __future__ import annotations

import logging
import re
from typing import Any

from diary_kb.config import ChunkingOptions
from diary_kb.ingest.boundaries import (
    boundary_positions,
    code_block_at,
    code_blocks,
    collect_structure,
    nearest_boundary,
    normalize_text,
)
from diary_kb.ingest.tokens import CODE_CHARS_PER_TOKEN, estimate_tokens, tokens_to_chars
from diary_kb.types import Chunk, CodeBlock, Document

logger = logging.getLogger(__name__)

_UNSAFE_ID_CHARS = re.compile(r"[^A-Za-z0-9_-]")
_SNAP_WINDOW = 0.2
_MAX_OVERLAP_RATIO = 0.25


def chunk_id_for(doc_id: str, index: int) -> str:
    return f"{_UNSAFE_ID_CHARS.sub('_', doc_id)}_chunk_{index}"


class TextSegmenter:
    """Splits normalized text into ordered, overlapping chunks.

    Algorithm:
    1. Normalize whitespace. If the whole text fits `chunk_size` (or chunking is
       disabled) the result is a single chunk.
    2. Collect headings, paragraph breaks and fenced code spans once.
    3. From a cursor, aim for `cursor + chunk_size * 4` characters. With
       `preserve_paragraphs`, snap to the nearest paragraph/heading boundary
       within +/-20% of the target, then move a cut that lands inside a code
       block to the closer block edge. A block larger than the whole budget
       may be cut in the middle so the cursor keeps moving.
    4. Re-estimate the slice and pull the boundary back while it is over
       budget.
    5. Step the cursor back by `min(overlap, 25% of the chunk)` characters so
       neighbours share text, and repeat until the tail fits.

    Chunk text is always an exact slice of the normalized text, so
    `reconstruct_text` can rebuild the source from offsets.
    """

    def segment(
        self,
        text: str,
        options: ChunkingOptions,
        *,
        doc_id: str,
        metadata: dict[str, Any] | None = None,
    ) -> list[Chunk]:
        normalized = normalize_text(text)
        if not normalized:
            return []

        spans = self._spans(normalized, options)
        base_metadata = dict(metadata or {})
        chunks = [
            Chunk(
                chunk_id=chunk_id_for(doc_id, index),
                doc_id=doc_id,
                text=normalized[start:end],
                index=index,
                start_index=start,
                end_index=end,
                token_count=estimate_tokens(normalized[start:end]),
                metadata={
                    **base_metadata,
                    "doc_id": doc_id,
                    "chunk_index": index,
                    "total_chunks": len(spans),
                    "start_index": start,
                    "end_index": end,
                },
            )
            for index, (start, end) in enumerate(spans)
        ]

        logger.info("Segmented %s into %d chunk(s) (%d chars)", doc_id, len(chunks), len(normalized))
        for chunk in chunks:
            logger.debug(
                "%s: %d tokens [%d, %d)",
                chunk.chunk_id,
                chunk.token_count,
                chunk.start_index,
                chunk.end_index,
            )
        return chunks

    def segment_document(self, document: Document, options: ChunkingOptions) -> list[Chunk]:
        return self.segment(
            document.content,
            options,
            doc_id=document.id,
            metadata=document.metadata(),
        )

    def _spans(self, text: str, options: ChunkingOptions) -> list[tuple[int, int]]:
        length = len(text)
        if not options.enable_chunking or estimate_tokens(text) <= options.chunk_size:
            return [(0, length)]

        elements = collect_structure(text)
        positions = boundary_positions(elements)
        blocks = code_blocks(elements)

        budget_chars = tokens_to_chars(options.chunk_size)
        window = int(budget_chars * _SNAP_WINDOW)
        min_chars = tokens_to_chars(options.min_chunk_size)
        overlap_chars = tokens_to_chars(options.overlap)

        spans: list[tuple[int, int]] = []
        cursor = 0
        while estimate_tokens(text[cursor:]) > options.chunk_size:
            target = min(cursor + budget_chars, length)
            boundary = target
            if options.preserve_paragraphs:
                snapped = nearest_boundary(
                    positions,
                    target,
                    low=max(cursor + min_chars, target - window, cursor + 1),
                    high=min(target + window, length),
                )
                if snapped is not None:
                    boundary = snapped
                boundary = self._avoid_code_block(blocks, cursor, boundary, options)
            boundary = self._shrink_to_budget(text, blocks, cursor, boundary, options)

            spans.append((cursor, boundary))
            if boundary >= length:
                return spans

            next_cursor = self._overlap_start(text, blocks, cursor, boundary, overlap_chars, options)
            assert next_cursor > cursor, "segmentation cursor must advance"
            cursor = next_cursor

        spans.append((cursor, length))
        return spans

    @staticmethod
    def _avoid_code_block(
        blocks: list[CodeBlock], cursor: int, boundary: int, options: ChunkingOptions
    ) -> int:
        block = code_block_at(blocks, boundary)
        if block is None:
            return boundary
        if estimate_tokens_span(block) > options.chunk_size:
            return boundary

        candidates = [edge for edge in (block.position, block.end) if edge > cursor]
        if not candidates:
            return boundary
        return min(candidates, key=lambda edge: (abs(edge - boundary), edge))

    @staticmethod
    def _shrink_to_budget(
        text: str,
        blocks: list[CodeBlock],
        cursor: int,
        boundary: int,
        options: ChunkingOptions,
    ) -> int:
        tokens = estimate_tokens(text[cursor:boundary])
        while boundary > cursor + 1 and tokens > options.chunk_size:
            excess = tokens - options.chunk_size
            boundary = max(cursor + 1, boundary - excess * CODE_CHARS_PER_TOKEN)
            if options.preserve_paragraphs:
                block = code_block_at(blocks, boundary)
                if block is not None and estimate_tokens_span(block) <= options.chunk_size:
                    # A chunk opening on a fitting block keeps all of it.
                    boundary = block.position if block.position > cursor else block.end
            tokens = estimate_tokens(text[cursor:boundary])
        return boundary

    @staticmethod
    def _overlap_start(
        text: str,
        blocks: list[CodeBlock],
        cursor: int,
        boundary: int,
        overlap_chars: int,
        options: ChunkingOptions,
    ) -> int:
        chunk_length = boundary - cursor
        step_back = min(overlap_chars, int(chunk_length * _MAX_OVERLAP_RATIO))
        if step_back <= 0:
            return boundary
        if options.preserve_paragraphs and any(block.position == boundary for block in blocks):
            # A chunk that opens with a code block starts exactly at the fence.
            return boundary

        start = boundary - step_back
        # Start the shared region on a word, not mid-token.
        if text[start - 1] not in " \n":
            space = text.find(" ", start, boundary)
            newline = text.find("\n", start, boundary)
            gaps = [gap for gap in (space, newline) if gap != -1]
            if gaps and min(gaps) + 1 < boundary:
                start = min(gaps) + 1

        if options.preserve_paragraphs:
            block = code_block_at(blocks, start)
            if block is not None and estimate_tokens_span(block) <= options.chunk_size:
                start = min(block.end, boundary)
        return start


def estimate_tokens_span(block: CodeBlock) -> int:
    return -(-(block.end - block.position) // CODE_CHARS_PER_TOKEN)


def reconstruct_text(chunks: list[Chunk]) -> str:
    """Rebuild normalized text from chunk offsets, dropping overlapped prefixes."""

    parts: list[str] = []
    covered = 0
    for chunk in sorted(chunks, key=lambda item: item.index):
        if chunk.end_index <= covered:
            continue
        skip = max(0, covered - chunk.start_index)
        parts.append(chunk.text[skip:])
        covered = chunk.end_index
    return "".join(parts)


def chunking_stats(chunks: list[Chunk]) -> dict[str, Any]:
    if not chunks:
        return {
            "total_chunks": 0,
            "unique_documents": 0,
            "average_chunk_size": 0,
            "total_content_length": 0,
        }

    sizes = [len(chunk.text) for chunk in chunks]
    total = sum(sizes)
    return {
        "total_chunks": len(chunks),
        "unique_documents": len({chunk.doc_id for chunk in chunks}),
        "average_chunk_size": round(total / len(chunks)),
        "total_content_length": total,
        "min_chunk_size": min(sizes),
        "max_chunk_size": max(sizes),
        "chunk_size_distribution": {
            "small": sum(1 for size in sizes if size < 200),
            "medium": sum(1 for size in sizes if 200 <= size < 500),
            "large": sum(1 for size in sizes if size >= 500),
        },
    }
