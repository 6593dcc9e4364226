"""Correction triggers: messages meaning "your last answer was wrong"."""

from __future__ import annotations

from collections.abc import Iterable

DEFAULT_CORRECTION_TRIGGERS: tuple[str, ...] = ("wrong", "galat", "ghalat", "ખોટું")


def is_correction_trigger(text: str, triggers: Iterable[str] | None = None) -> bool:
    """Whether the trimmed, lowercased message equals one of the trigger words exactly."""

    value = (text or "").strip().lower()
    if not value:
        return False
    candidates = DEFAULT_CORRECTION_TRIGGERS if triggers is None else triggers
    return any(t.strip().lower() == value for t in candidates)
