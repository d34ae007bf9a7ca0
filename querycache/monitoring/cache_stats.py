"""
Cache Statistics

Hit/miss/set/delete counters owned by a cache manager instance.
Increments are lock-protected so concurrent callers never lose one, and each
increment is mirrored into Prometheus counters on a private registry.
"""

import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional

import structlog
from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CacheStatsSnapshot:
    """Point-in-time copy of the counters."""

    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0

    @property
    def lookups(self) -> int:
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        """Hit percentage, 0.0 without lookups."""
        if self.lookups == 0:
            return 0.0
        return self.hits * 100 / self.lookups

    def as_dict(self) -> Dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "sets": self.sets,
            "deletes": self.deletes,
            "hit_rate": self.hit_rate,
        }


class CacheStats:
    """
    Process-local cache counters.

    Counters start at zero and are never persisted. Prometheus counters are
    monotonic, so ``reset`` clears only the in-process values.
    """

    FIELDS = ("hits", "misses", "sets", "deletes")

    def __init__(
        self,
        registry: Optional[CollectorRegistry] = None,
        metric_prefix: str = "querycache",
    ):
        self._lock = threading.Lock()
        self._counts: Dict[str, int] = {name: 0 for name in self.FIELDS}
        self.registry = registry or CollectorRegistry()
        self._setup_prometheus_metrics(metric_prefix)

    def _setup_prometheus_metrics(self, prefix: str) -> None:
        self.prom_operations_total = Counter(
            f"{prefix}_operations_total",
            "Cache operations by outcome",
            ["outcome"],
            registry=self.registry,
        )
        self.prom_hit_rate = Gauge(
            f"{prefix}_hit_rate_percent",
            "Cache hit rate since the last reset (0-100)",
            registry=self.registry,
        )

    def _increment(self, name: str) -> None:
        # Gauge follows the counters in the order they change
        with self._lock:
            self._counts[name] += 1
            if name in ("hits", "misses"):
                hits, misses = self._counts["hits"], self._counts["misses"]
                self.prom_hit_rate.set(hits * 100 / (hits + misses))

        self.prom_operations_total.labels(outcome=name).inc()

    def record_hit(self) -> None:
        self._increment("hits")

    def record_miss(self) -> None:
        self._increment("misses")

    def record_set(self) -> None:
        self._increment("sets")

    def record_delete(self) -> None:
        self._increment("deletes")

    def snapshot(self) -> CacheStatsSnapshot:
        with self._lock:
            return CacheStatsSnapshot(**self._counts)

    def reset(self) -> None:
        """Zero the counters."""
        with self._lock:
            for name in self.FIELDS:
                self._counts[name] = 0
            self.prom_hit_rate.set(0)

    def export_prometheus(self) -> bytes:
        """Prometheus text exposition of the mirrored counters."""
        return generate_latest(self.registry)

    def log_summary(self) -> Optional[Dict[str, Any]]:
        """Log the counters at INFO if there was any lookup activity."""
        snapshot = self.snapshot()
        if snapshot.lookups == 0:
            return None

        summary = snapshot.as_dict()
        logger.info("Query cache statistics", **summary)
        return summary
