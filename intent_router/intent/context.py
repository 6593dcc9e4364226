"""Detection of messages whose meaning depends on earlier conversation turns.

Such messages ("5", "more", "his", "haan") cannot be answered from the pattern store: the same text
means different things in different conversations, so they always go to the fallback.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence

DEFAULT_CONTEXT_PATTERN_SOURCES: tuple[str, ...] = (
    r"^\d{1,2}$",
    # Pagination.
    r"^more$",
    r"^next$",
    r"^next page$",
    r"^page \d+$",
    r"^aur$",
    r"^aur dikhao$",
    r"^aage$",
    r"^vadhu$",
    r"^aagal$",
    # Pronouns / references.
    r"^his$",
    r"^her$",
    r"^their$",
    r"^same$",
    # Bare affirmatives.
    r"^yes$",
    r"^haan$",
    r"^ha$",
)


def compile_context_patterns(sources: Iterable[str] | None) -> tuple[re.Pattern[str], ...]:
    """Compile pattern sources case-insensitively; an empty or missing list gives the defaults."""

    values = [s for s in (sources or ()) if s]
    if not values:
        values = list(DEFAULT_CONTEXT_PATTERN_SOURCES)
    return tuple(re.compile(source, flags=re.IGNORECASE) for source in values)


DEFAULT_CONTEXT_PATTERNS: tuple[re.Pattern[str], ...] = compile_context_patterns(None)


def is_context_dependent(text: str, patterns: Sequence[re.Pattern[str]] | None = None) -> bool:
    """Whether the trimmed message matches any context pattern."""

    value = (text or "").strip()
    if not value:
        return False
    return any(p.search(value) for p in (patterns or DEFAULT_CONTEXT_PATTERNS))
