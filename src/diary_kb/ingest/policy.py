"""Per-category and per-length chunking policy resolution."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from pydantic import ValidationError

from diary_kb.config import ChunkingOptions, ChunkingOverrides
from diary_kb.types import Category

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class LengthRule:
    """Adjusts chunk sizing for documents whose length falls in a range.

    Bounds are in characters; `below` is exclusive and `above` exclusive.
    """

    name: str
    below: int | None = None
    above: int | None = None
    enable_chunking: bool | None = None
    chunk_size_cap: int | None = None
    overlap_cap: int | None = None
    chunk_size_floor: int | None = None
    overlap_floor: int | None = None

    def matches(self, content_length: int) -> bool:
        if self.below is not None and content_length >= self.below:
            return False
        if self.above is not None and content_length <= self.above:
            return False
        return True

    def apply(self, params: dict[str, Any]) -> dict[str, Any]:
        updated = dict(params)
        if self.enable_chunking is not None:
            updated["enable_chunking"] = self.enable_chunking
        if self.chunk_size_cap is not None:
            updated["chunk_size"] = min(updated["chunk_size"], self.chunk_size_cap)
        if self.overlap_cap is not None:
            updated["overlap"] = min(updated["overlap"], self.overlap_cap)
        if self.chunk_size_floor is not None:
            updated["chunk_size"] = max(updated["chunk_size"], self.chunk_size_floor)
        if self.overlap_floor is not None:
            updated["overlap"] = max(updated["overlap"], self.overlap_floor)
        return updated


DEFAULT_OPTIONS = ChunkingOptions()

# Manual-style categories keep sequential instructions together; troubleshooting
# entries are short and retrieved for one precise symptom.
CATEGORY_POLICIES: Mapping[Category, Mapping[str, Any]] = MappingProxyType(
    {
        Category.USER_GUIDE: MappingProxyType({"chunk_size": 800, "overlap": 200}),
        Category.API: MappingProxyType({"chunk_size": 800, "overlap": 200}),
        Category.TECHNICAL: MappingProxyType({"chunk_size": 800, "overlap": 200}),
        Category.TROUBLESHOOTING: MappingProxyType({"chunk_size": 300, "overlap": 60}),
    }
)

LENGTH_RULES: tuple[LengthRule, ...] = (
    LengthRule(name="small", below=1_000, enable_chunking=False),
    LengthRule(name="medium", below=4_000, chunk_size_cap=400, overlap_cap=80),
    LengthRule(name="large", above=40_000, chunk_size_floor=1_000, overlap_floor=200),
)


class ChunkingPolicyResolver:
    """Maps (category, content length, overrides) to effective options.

    Precedence, lowest to highest: defaults, category table, first matching
    length rule, caller overrides. The result is always internally
    consistent: overlap and min_chunk_size are clamped below chunk_size.
    """

    def __init__(
        self,
        *,
        defaults: ChunkingOptions = DEFAULT_OPTIONS,
        category_policies: Mapping[Category, Mapping[str, Any]] = CATEGORY_POLICIES,
        length_rules: tuple[LengthRule, ...] = LENGTH_RULES,
    ) -> None:
        self.defaults = defaults
        self.category_policies = category_policies
        self.length_rules = length_rules

    def resolve(
        self,
        category: Category | str | None,
        content_length: int,
        overrides: ChunkingOverrides | Mapping[str, Any] | None = None,
    ) -> ChunkingOptions:
        params: dict[str, Any] = self.defaults.model_dump()

        resolved_category = _coerce_category(category)
        if resolved_category is not None:
            params.update(self.category_policies.get(resolved_category, {}))

        length = max(0, int(content_length))
        for rule in self.length_rules:
            if rule.matches(length):
                params = rule.apply(params)
                break

        params.update(_valid_overrides(overrides))
        return ChunkingOptions(**_clamp(params))


def _coerce_category(category: Category | str | None) -> Category | None:
    if category is None or isinstance(category, Category):
        return category
    try:
        return Category(str(category).strip().lower())
    except ValueError:
        logger.warning("Unknown category %r, using default chunking policy", category)
        return None


def _valid_overrides(
    overrides: ChunkingOverrides | Mapping[str, Any] | None,
) -> dict[str, Any]:
    if overrides is None:
        return {}
    if isinstance(overrides, ChunkingOverrides):
        return overrides.model_dump(exclude_none=True)

    accepted: dict[str, Any] = {}
    for key, value in overrides.items():
        if key not in ChunkingOverrides.model_fields:
            logger.warning("Ignoring unknown chunking option %r", key)
            continue
        try:
            checked = ChunkingOverrides.model_validate({key: value})
        except ValidationError as exc:
            logger.warning(
                "Invalid chunking option %s=%r, keeping policy value: %s",
                key,
                value,
                exc.errors()[0]["msg"],
            )
            continue
        field_value = getattr(checked, key)
        if field_value is not None:
            accepted[key] = field_value
    return accepted


def _clamp(params: dict[str, Any]) -> dict[str, Any]:
    chunk_size = max(1, int(params["chunk_size"]))
    params["chunk_size"] = chunk_size
    params["overlap"] = min(max(0, int(params["overlap"])), chunk_size - 1)
    params["min_chunk_size"] = min(max(0, int(params["min_chunk_size"])), chunk_size - 1)
    return params
