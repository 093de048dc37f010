"""
Cache Usage Statistics

Process-wide hit/miss/invalidation counters for the response cache, the
history cache and the invalidation helpers.

Architectural Decision: Observer kept apart from cache logic
- Counters never influence caching or rate-limiting decisions
- Plain in-memory ints, reset on process restart (never persisted)
- Components receive a tracker instance; get_usage_tracker() supplies the
  process default
"""

import math
from typing import Any

from cachegate.core.logging import get_logger, log_stage

logger = get_logger(__name__)


class UsageStatsTracker:
    """
    Tracks cache hits, misses and invalidations.

    Hit rate is a whole percentage, rounded half up, and 0 before any
    lookup has been observed.
    """

    def __init__(self, logger_instance=None):
        self._logger = logger_instance or logger
        self._hits = 0
        self._misses = 0
        self._invalidations = 0

    @property
    def hits(self) -> int:
        return self._hits

    @property
    def misses(self) -> int:
        return self._misses

    @property
    def invalidations(self) -> int:
        return self._invalidations

    @property
    def hit_rate(self) -> int:
        total = self._hits + self._misses
        if total == 0:
            return 0
        return math.floor(self._hits / total * 100 + 0.5)

    def record_hit(self, key: str | None = None) -> None:
        self._hits += 1
        log_stage(
            self._logger, "2.0", "Cache hit", level="debug",
            cache_key=key, hit_rate=self.hit_rate
        )

    def record_miss(self, key: str | None = None) -> None:
        self._misses += 1
        log_stage(
            self._logger, "2.0", "Cache miss", level="debug",
            cache_key=key, hit_rate=self.hit_rate
        )

    def record_invalidation(self, pattern: str | None = None, count: int = 1) -> None:
        """Count one invalidation call (not the number of keys it removed)."""
        self._invalidations += 1
        log_stage(
            self._logger, "2.2", "Cache invalidated", level="debug",
            pattern=pattern, keys_removed=count
        )

    def get_stats(self) -> dict[str, Any]:
        """
        Get cache usage statistics.

        Returns:
            Dict with hits, misses, invalidations, total_requests and
            hit_rate (formatted as a percentage string, e.g. "67%")
        """
        return {
            "hits": self._hits,
            "misses": self._misses,
            "invalidations": self._invalidations,
            "total_requests": self._hits + self._misses,
            "hit_rate": f"{self.hit_rate}%",
        }

    def reset(self) -> None:
        self._hits = 0
        self._misses = 0
        self._invalidations = 0
        self._logger.info("Cache statistics reset", stage="2.3")

    def log_report(self) -> dict[str, Any]:
        """Log a one-line performance report and return the stats it logged."""
        stats = self.get_stats()
        self._logger.info("Cache performance report", stage="2.3", **stats)
        return stats


# Global tracker instance (singleton pattern)
_usage_tracker: UsageStatsTracker | None = None


def get_usage_tracker() -> UsageStatsTracker:
    """Get the process-wide default tracker."""
    global _usage_tracker

    if _usage_tracker is None:
        _usage_tracker = UsageStatsTracker()

    return _usage_tracker
