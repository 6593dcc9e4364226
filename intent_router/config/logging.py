"""Logging configuration shared by the chat bot and the pattern-store CLI."""

from __future__ import annotations

import logging
import os


def configure_logging(level: str | None = None) -> None:
    """Configure Python logging for the process.

    Both entry points call this once at start-up; `LOG_LEVEL` picks the level. Resolver and handler
    lines log the tier, confidence and a truncated message, never the LLM API key. The CLI prints its
    own results to stdout, so log lines go to stderr.
    """

    log_level = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    # aiogram logs every polled update at INFO.
    logging.getLogger("aiogram.event").setLevel(logging.WARNING)
