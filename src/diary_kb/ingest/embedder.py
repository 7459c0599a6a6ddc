"""Embedding abstractions: OpenAI-backed and a deterministic offline baseline."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from hashlib import blake2b
from math import sqrt
from typing import Any

_WORD_PATTERN = re.compile(r"\w+", flags=re.UNICODE)


class Embedder(ABC):
    """Embedder interface used by the vector index adapter."""

    @abstractmethod
    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed many chunk texts."""

    @abstractmethod
    def embed_query(self, text: str) -> list[float]:
        """Embed one query."""


class OpenAIEmbedder(Embedder):
    """Embeddings from the OpenAI API via LangChain."""

    def __init__(
        self,
        *,
        api_key: str,
        model: str = "text-embedding-3-small",
        timeout: float = 10.0,
        max_retries: int = 1,
    ) -> None:
        from langchain_openai import OpenAIEmbeddings

        self.model = model
        self._client: Any = OpenAIEmbeddings(
            model=model,
            api_key=api_key,
            timeout=timeout,
            max_retries=max_retries,
        )

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return self._client.embed_documents(texts)

    def embed_query(self, text: str) -> list[float]:
        return self._client.embed_query(text)


class HashingEmbedder(Embedder):
    """Deterministic bag-of-words embedding for tests; not wired by `build_service`.

    Production runs always embed through `OpenAIEmbedder`.
    """

    def __init__(self, dimension: int = 256) -> None:
        self.dimension = dimension

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self._embed(text) for text in texts]

    def embed_query(self, text: str) -> list[float]:
        return self._embed(text)

    def _embed(self, text: str) -> list[float]:
        vector = [0.0 for _ in range(self.dimension)]
        tokens = _WORD_PATTERN.findall(text.lower())
        if not tokens:
            return vector

        for token in tokens:
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "little") % self.dimension
            sign = -1.0 if digest[4] % 2 else 1.0
            vector[idx] += sign

        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]
