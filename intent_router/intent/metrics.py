"""In-process resolution counters."""

from __future__ import annotations

import threading

from intent_router.intent.schema import MetricsSnapshot


class Metrics:
    """Counts resolutions per tier and user corrections.

    `total` always equals the sum of the three tier counters.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.total = 0
        self.tier1_hits = 0
        self.tier2_hits = 0
        self.tier3_hits = 0
        self.corrections = 0

    def record(self, tier: int) -> None:
        """Count one resolution at `tier` (1, 2 or 3).

        Raises:
            ValueError: If `tier` is not 1, 2 or 3.
        """

        if isinstance(tier, bool) or tier not in (1, 2, 3):
            raise ValueError(f"Invalid tier: {tier!r}. Must be 1, 2, or 3.")

        with self._lock:
            if tier == 1:
                self.tier1_hits += 1
            elif tier == 2:
                self.tier2_hits += 1
            else:
                self.tier3_hits += 1
            self.total += 1

    def record_correction(self) -> None:
        with self._lock:
            self.corrections += 1

    def snapshot(self, pattern_count: int = 0) -> MetricsSnapshot:
        with self._lock:
            return MetricsSnapshot(
                total=self.total,
                tier1_hits=self.tier1_hits,
                tier2_hits=self.tier2_hits,
                tier3_hits=self.tier3_hits,
                corrections=self.corrections,
                pattern_count=pattern_count,
            )
