"""Cache accounting and metrics export."""

from .cache_stats import CacheStats, CacheStatsSnapshot

__all__ = ["CacheStats", "CacheStatsSnapshot"]
