"""
Unit tests for cache statistics.
"""

import threading

import pytest
from prometheus_client import CollectorRegistry

from querycache.monitoring.cache_stats import CacheStats, CacheStatsSnapshot


class TestCacheStatsSnapshot:
    """Test derived snapshot values."""

    def test_hit_rate_without_lookups(self):
        assert CacheStatsSnapshot().hit_rate == 0.0

    def test_hit_rate_is_not_rounded(self):
        snapshot = CacheStatsSnapshot(hits=1, misses=2)
        assert snapshot.hit_rate == 100 / 3

    def test_as_dict(self):
        snapshot = CacheStatsSnapshot(hits=2, misses=8, sets=8, deletes=1)

        assert snapshot.as_dict() == {
            "hits": 2,
            "misses": 8,
            "sets": 8,
            "deletes": 1,
            "hit_rate": 20.0,
        }


class TestCacheStats:
    """Test counters and exports."""

    def test_initial_counters(self, cache_stats):
        assert cache_stats.snapshot() == CacheStatsSnapshot()

    def test_record_operations(self, cache_stats):
        cache_stats.record_hit()
        cache_stats.record_miss()
        cache_stats.record_miss()
        cache_stats.record_set()
        cache_stats.record_delete()

        snapshot = cache_stats.snapshot()
        assert (snapshot.hits, snapshot.misses, snapshot.sets, snapshot.deletes) == (
            1,
            2,
            1,
            1,
        )

    def test_concurrent_increments(self, cache_stats):
        def worker():
            for _ in range(500):
                cache_stats.record_hit()

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert cache_stats.snapshot().hits == 4000

    def test_gauge_matches_counters_after_concurrent_lookups(self, cache_stats):
        def worker(record):
            for _ in range(300):
                record()

        threads = [
            threading.Thread(target=worker, args=(record,))
            for record in [cache_stats.record_hit, cache_stats.record_miss] * 4
        ]
        threads.append(threading.Thread(target=worker, args=(cache_stats.record_hit,)))
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        snapshot = cache_stats.snapshot()
        gauge = cache_stats.registry.get_sample_value("querycache_hit_rate_percent")
        assert (snapshot.hits, snapshot.misses) == (1500, 1200)
        assert gauge == snapshot.hit_rate

    def test_reset(self, cache_stats):
        cache_stats.record_hit()
        cache_stats.record_set()

        cache_stats.reset()

        assert cache_stats.snapshot().as_dict()["hits"] == 0
        assert cache_stats.snapshot().hit_rate == 0.0

    def test_prometheus_export(self, cache_stats):
        cache_stats.record_hit()
        cache_stats.record_miss()

        exported = cache_stats.export_prometheus().decode("utf-8")

        assert 'querycache_operations_total{outcome="hits"} 1.0' in exported
        assert "querycache_hit_rate_percent 50.0" in exported

    def test_separate_registries(self):
        first = CacheStats(registry=CollectorRegistry())
        second = CacheStats(registry=CollectorRegistry())

        first.record_hit()

        assert second.snapshot().hits == 0

    def test_log_summary(self, cache_stats):
        assert cache_stats.log_summary() is None

        cache_stats.record_hit()
        summary = cache_stats.log_summary()

        assert summary["hits"] == 1
        assert summary["hit_rate"] == 100.0
