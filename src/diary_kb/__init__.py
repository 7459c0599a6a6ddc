"""Reading diary knowledge base package."""

from .config import ChunkingOptions, KnowledgeSettings, SearchConfig

__all__ = ["ChunkingOptions", "KnowledgeSettings", "SearchConfig"]
