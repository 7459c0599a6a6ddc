"""Character-ratio token estimation.

This is an approximation of the embedding model's tokenizer. It is kept in
one place so an exact tokenizer can be swapped in without touching the
segmenter.
"""

from __future__ import annotations

import math
import re

PROSE_CHARS_PER_TOKEN = 4
CODE_CHARS_PER_TOKEN = 3

FENCE_PATTERN = re.compile(r"```.*?(?:```|\Z)", flags=re.DOTALL)


def estimate_tokens(text: str) -> int:
    """Estimate tokens, counting fenced code denser than prose."""

    if not text:
        return 0
    code_chars = sum(len(match.group(0)) for match in FENCE_PATTERN.finditer(text))
    prose_chars = len(text) - code_chars
    return math.ceil(prose_chars / PROSE_CHARS_PER_TOKEN) + math.ceil(
        code_chars / CODE_CHARS_PER_TOKEN
    )


def tokens_to_chars(tokens: int) -> int:
    return tokens * PROSE_CHARS_PER_TOKEN
