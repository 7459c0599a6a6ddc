"""Centralized logging configuration.

Usage:
    from diary_kb.logging_config import setup_logging
    setup_logging("INFO")   # once at startup
"""

from __future__ import annotations

import logging
import sys

_NOISY_LOGGERS = ("httpx", "httpcore", "openai", "faiss")


def setup_logging(level: str = "INFO") -> None:
    """Configure the root logger and quiet chatty client libraries."""

    root = logging.getLogger()
    root.setLevel(_parse_level(level))

    # uvicorn installs its own handlers; tests and scripts may not have any.
    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("%(levelname)-8s %(name)s - %(message)s"))
        root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).debug("Logging configured (root=%s)", level.upper())


def _parse_level(raw: str) -> int:
    level = logging.getLevelName(raw.strip().upper())
    if isinstance(level, int):
        return level
    return logging.INFO
