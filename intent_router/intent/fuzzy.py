"""Token-overlap (Jaccard) matching against learned patterns."""

from __future__ import annotations

from collections.abc import Iterable, Set
from dataclasses import dataclass

from intent_router.intent.normalize import tokenize
from intent_router.intent.schema import LearningEntry


@dataclass(frozen=True)
class FuzzyMatch:
    """Best stored pattern for a query and its similarity score."""

    key: str
    entry: LearningEntry
    confidence: float


def jaccard_similarity(a: Set[str], b: Set[str]) -> float:
    """`|A ∩ B| / |A ∪ B|`, with two empty sets scoring 0.0."""

    union = len(a | b)
    if union == 0:
        return 0.0
    return len(a & b) / union


def find_best_match(
        normalized_query: str,
        entries: Iterable[tuple[str, LearningEntry]],
        threshold: float,
) -> FuzzyMatch | None:
    """Return the stored entry most similar to the query, or `None`.

    Scores below `threshold` are discarded, and a zero score never matches. Equal scores are broken
    by the higher `hit_count`, then by iteration order.
    """

    query_tokens = tokenize(normalized_query)
    if not query_tokens:
        return None

    best: FuzzyMatch | None = None
    for key, entry in entries:
        score = jaccard_similarity(query_tokens, tokenize(key))
        if score <= 0.0 or score < threshold:
            continue
        if (
                best is None
                or score > best.confidence
                or (score == best.confidence and entry.hit_count > best.entry.hit_count)
        ):
            best = FuzzyMatch(key=key, entry=entry, confidence=score)
    return best
