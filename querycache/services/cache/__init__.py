"""Cache manager and query cache services."""

from .cache_manager import CacheManager, create_cache_manager
from .query_cache import QueryCache

__all__ = ["CacheManager", "create_cache_manager", "QueryCache"]
