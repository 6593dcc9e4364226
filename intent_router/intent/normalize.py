"""Text normalization and transliteration for deterministic intent lookup.

The normalized form of a message is the key used by the pattern store, so normalization must be
stable: running it twice gives the same result as running it once.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from pathlib import Path

logger = logging.getLogger(__name__)

_PUNCTUATION_RE = re.compile(r"[.,?!;:\"'()\[\]{}]")
_MULTISPACE_RE = re.compile(r"\s+")
_PARENTHETICAL_RE = re.compile(r"\(.*?\)")
_QUOTED_RE = re.compile(r'"([^"]+)"')

MAX_PHRASE_WORDS = 4


def _clean(text: str) -> str:
    value = _PUNCTUATION_RE.sub("", text.lower())
    return _MULTISPACE_RE.sub(" ", value).strip()


def build_transliteration_map(document: str) -> dict[str, str]:
    """Parse a knowledge document into a token -> English keyword map.

    Recognized lines look like::

        - "khata" / "खाता" = ledger (get_ledger)
        - "TB" = Trial Balance (get_trial_balance)

    The keyword is the right-hand text before any parenthetical or `/` alternative. Every quoted
    left-hand token maps to it, except tokens dropped by `drop_chaining_tokens`.
    """

    mapping: dict[str, str] = {}

    for raw_line in (document or "").splitlines():
        line = raw_line.strip()
        if not line.startswith("-") or "=" not in line:
            continue

        eq_index = line.index("=")
        quote_index = line.find('"')
        if quote_index < 0 or quote_index > eq_index:
            continue

        left = line[quote_index:eq_index]
        right = line[eq_index + 1:]

        keyword = _clean(_PARENTHETICAL_RE.sub("", right).split("/")[0])
        if not keyword:
            continue

        for quoted in _QUOTED_RE.findall(left):
            token = _clean(quoted)
            if token and token != keyword:
                mapping[token] = keyword

    return drop_chaining_tokens(mapping)


def drop_chaining_tokens(transliterations: Mapping[str, str]) -> dict[str, str]:
    """Remove tokens that share a word with any keyword, and keywords that clean to nothing.

    Keyword output can then never take part in another match, so a single transliteration pass
    gives text that transliterates to itself.
    """

    cleaned = {token: _clean(keyword) for token, keyword in transliterations.items()}
    keyword_words = {word for keyword in cleaned.values() for word in keyword.split()}
    return {
        token: keyword
        for token, keyword in cleaned.items()
        if keyword and keyword_words.isdisjoint(token.split())
    }


def load_transliteration_map(path: str | Path) -> dict[str, str]:
    """Read the knowledge document at `path`; a missing or unreadable file gives an empty map."""

    try:
        document = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        logger.warning("knowledge document unavailable path=%s reason=%s", path, exc)
        return {}

    mapping = build_transliteration_map(document)
    logger.info("transliteration map loaded path=%s entries=%d", path, len(mapping))
    return mapping


def _transliterate(words: list[str], transliterations: Mapping[str, str]) -> list[str]:
    out: list[str] = []
    i = 0
    while i < len(words):
        # Greedy longest match over windows of MAX_PHRASE_WORDS down to 2 words.
        for size in range(min(MAX_PHRASE_WORDS, len(words) - i), 1, -1):
            phrase = " ".join(words[i:i + size])
            if phrase in transliterations:
                out.append(transliterations[phrase])
                i += size
                break
        else:
            out.append(transliterations.get(words[i], words[i]))
            i += 1
    return out


def normalize_text(text: str, transliterations: Mapping[str, str] | None = None) -> str:
    """Canonicalize a chat message into a pattern-store key.

    Steps:
        - Lowercase.
        - Drop punctuation (`. , ? ! ; : " ' ( ) [ ] { }`).
        - Transliterate known foreign tokens/phrases into English keywords (longest match first).
          Tokens sharing a word with any keyword are ignored, so the result is stable.
        - Collapse whitespace and trim.
    """

    return _normalize(text, drop_chaining_tokens(transliterations or {}))


def _normalize(text: str, transliterations: Mapping[str, str]) -> str:
    # `transliterations` has already been through `drop_chaining_tokens`.
    value = _clean(text or "")
    if not transliterations or not value:
        return value
    return _clean(" ".join(_transliterate(value.split(" "), transliterations)))


def tokenize(normalized_text: str) -> set[str]:
    """Split normalized text into a set of unique tokens."""

    return set((normalized_text or "").split())


class Normalizer:
    """Normalizer bound to one transliteration map.

    Built once at resolver start-up and held by the resolver, so independent resolvers never share
    transliteration state.
    """

    def __init__(self, transliterations: Mapping[str, str] | None = None) -> None:
        self._transliterations = drop_chaining_tokens(transliterations or {})

    @classmethod
    def from_knowledge_file(cls, path: str | Path) -> Normalizer:
        return cls(load_transliteration_map(path))

    @property
    def transliterations(self) -> Mapping[str, str]:
        return self._transliterations

    def normalize(self, text: str) -> str:
        return _normalize(text, self._transliterations)

    def tokenize(self, normalized_text: str) -> set[str]:
        return tokenize(normalized_text)
