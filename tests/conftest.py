"""
Main pytest configuration for query cache tests.

Fixtures for storage tiers, tag registries, statistics and cache services.
"""

import os

import pytest
from prometheus_client import CollectorRegistry

# Set test environment variables before importing querycache modules
os.environ["ENVIRONMENT"] = "test"
os.environ["LOG_LEVEL"] = "DEBUG"
os.environ["CACHE_KEY_PREFIX"] = "qcache"

from querycache.domain.cache.domain_services import CacheDurationPolicy
from querycache.infrastructure.repositories import (
    InMemoryTagVersionRepository,
    MemoryStorageTier,
)
from querycache.monitoring.cache_stats import CacheStats
from querycache.services.cache.cache_manager import CacheManager
from querycache.services.cache.query_cache import QueryCache


@pytest.fixture
def volatile_tier():
    """In-process volatile tier."""
    return MemoryStorageTier(key_prefix="qcache", maxsize=1000)


@pytest.fixture
def durable_tier():
    """Second in-process tier standing in for Redis."""
    return MemoryStorageTier(key_prefix="qcache", maxsize=1000)


@pytest.fixture
def tag_registry():
    """Process-local tag version registry."""
    return InMemoryTagVersionRepository()


@pytest.fixture
def cache_stats():
    """Cache statistics on a private Prometheus registry."""
    return CacheStats(registry=CollectorRegistry())


@pytest.fixture
def cache_manager(volatile_tier, durable_tier, tag_registry, cache_stats):
    """Cache manager wired to in-memory tiers and registry."""
    return CacheManager(
        volatile_tier=volatile_tier,
        durable_tier=durable_tier,
        tag_registry=tag_registry,
        stats=cache_stats,
        key_prefix="qcache",
        default_ttl=900,
    )


@pytest.fixture
def durations():
    """Default short/medium/long durations."""
    return CacheDurationPolicy(short=300, medium=900, long=1800)


@pytest.fixture
def query_cache(cache_manager, durations):
    """Query cache helpers on top of the in-memory cache manager."""
    return QueryCache(cache_manager, durations=durations)


class ComputeCounter:
    """Callable that returns a fixed value and counts its invocations."""

    def __init__(self, value):
        self.value = value
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return self.value


@pytest.fixture
def compute_counter():
    """Factory for counting compute callables."""
    return ComputeCounter


# Test markers and configuration
def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "redis: marks tests as Redis-related")
    config.addinivalue_line("markers", "unit: marks tests as unit tests")


def pytest_collection_modifyitems(config, items):
    """Add markers based on test file location."""
    for item in items:
        if "redis" in item.nodeid.lower():
            item.add_marker(pytest.mark.redis)
        if "unit" in item.nodeid:
            item.add_marker(pytest.mark.unit)
