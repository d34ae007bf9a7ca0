"""
Query Cache

Two-tier query-result cache with tag-version invalidation.
"""

from .domain.cache.exceptions import (
    CacheException,
    InvalidCacheInputError,
    TagRegistryUnavailableError,
    TagVersionRegressionError,
)
from .domain.cache.value_objects import TTL, CacheNamespace, CacheTag
from .infrastructure.repositories import (
    InMemoryTagVersionRepository,
    MemoryStorageTier,
    RedisStorageTier,
    RedisTagVersionRepository,
)
from .monitoring import CacheStats
from .services.cache import CacheManager, QueryCache, create_cache_manager

__version__ = "0.1.0"

__all__ = [
    "CacheManager",
    "QueryCache",
    "create_cache_manager",
    "CacheStats",
    "MemoryStorageTier",
    "RedisStorageTier",
    "InMemoryTagVersionRepository",
    "RedisTagVersionRepository",
    "CacheNamespace",
    "CacheTag",
    "TTL",
    "CacheException",
    "InvalidCacheInputError",
    "TagRegistryUnavailableError",
    "TagVersionRegressionError",
]
