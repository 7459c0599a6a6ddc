"""Writing-system detection for queries."""

from __future__ import annotations

import unicodedata


def query_scripts(text: str) -> frozenset[str]:
    """Script families of the letters in `text`, e.g. {"LATIN", "CYRILLIC"}."""

    scripts: set[str] = set()
    for char in text:
        if not char.isalpha():
            continue
        name = unicodedata.name(char, "")
        if name:
            scripts.add(name.split(" ", 1)[0])
    return frozenset(scripts)


def uses_any_script(text: str, scripts: frozenset[str]) -> bool:
    return bool(query_scripts(text) & scripts)
