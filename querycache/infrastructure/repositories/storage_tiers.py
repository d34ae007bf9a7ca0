"""
Storage Tier Implementations

Volatile in-process tier (cachetools) and durable Redis tier.
Both store JSON-serialized ``CacheEntry`` bytes and absorb every operational
failure: reads degrade to misses, writes to ``False``.
"""

import logging
import threading
import time
from typing import List, Optional, Tuple

from cachetools import TLRUCache
from opentelemetry import trace

from ...domain.cache.entities import CacheEntry
from ...domain.cache.repository_interfaces import StorageTier
from ...domain.cache.value_objects import TTL, CacheKey
from ..redis.connection_factory import RedisConnectionFactory

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def _valid_key(key: str) -> bool:
    return isinstance(key, str) and bool(key) and not any(c.isspace() for c in key)


def _escape_glob(value: str) -> str:
    """Escape Redis MATCH glob metacharacters."""
    for char in ("\\", "*", "?", "[", "]"):
        value = value.replace(char, "\\" + char)
    return value


def _entry_expiry(_key: str, value: Tuple[bytes, int], now: float) -> float:
    return now + value[1]


class MemoryStorageTier(StorageTier):
    """
    Volatile tier backed by an in-process TLRU cache.

    Entries expire after their own TTL and the least recently used entries are
    evicted once ``maxsize`` is reached. Contents are lost on restart.
    """

    name = "volatile"

    def __init__(self, key_prefix: str, maxsize: int = 10000):
        self.key_prefix = key_prefix
        self._cache: TLRUCache = TLRUCache(
            maxsize=maxsize, ttu=_entry_expiry, timer=time.monotonic
        )
        self._lock = threading.Lock()

    async def get(self, key: str) -> Tuple[Optional[CacheEntry], bool]:
        if not _valid_key(key):
            return None, False

        with self._lock:
            stored = self._cache.get(key)

        if stored is None:
            return None, False

        try:
            entry = CacheEntry.from_bytes(stored[0])
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding undecodable volatile entry {key}: {e}")
            await self.delete(key)
            return None, False

        if entry.is_expired():
            return None, False
        return entry, True

    async def set(self, key: str, entry: CacheEntry, ttl: TTL) -> bool:
        if not _valid_key(key) or not isinstance(ttl, TTL):
            return False

        try:
            payload = entry.to_bytes()
        except (TypeError, ValueError) as e:
            logger.warning(f"Failed to serialize volatile entry {key}: {e}")
            return False

        with self._lock:
            self._cache[key] = (payload, ttl.seconds)
        return True

    async def delete(self, key: str) -> bool:
        if not _valid_key(key):
            return False

        with self._lock:
            return self._cache.pop(key, None) is not None

    async def flush_namespace(self, namespace: str) -> bool:
        try:
            prefix = CacheKey.namespace_prefix(self.key_prefix, namespace)
        except ValueError as e:
            logger.warning(f"Refusing volatile flush: {e}")
            return False

        with self._lock:
            doomed = [key for key in list(self._cache.keys()) if key.startswith(prefix)]
            for key in doomed:
                self._cache.pop(key, None)

        logger.info(
            f"Flushed {len(doomed)} volatile entries for namespace {namespace}",
            extra={"namespace": namespace, "count": len(doomed)},
        )
        return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)


class RedisStorageTier(StorageTier):
    """
    Durable tier backed by Redis.

    Every command runs through the connection factory's circuit breaker, which
    bounds it with the configured operation timeout.
    """

    name = "durable"

    def __init__(
        self,
        key_prefix: str,
        connection_factory: Optional[RedisConnectionFactory] = None,
        scan_batch_size: int = 500,
    ):
        self.key_prefix = key_prefix
        self.connections = connection_factory or RedisConnectionFactory()
        self.scan_batch_size = scan_batch_size

    async def get(self, key: str) -> Tuple[Optional[CacheEntry], bool]:
        if not _valid_key(key):
            return None, False

        with tracer.start_as_current_span("cache.durable.get") as span:
            try:
                raw = await self.connections.execute("get", _redis_get, key)
            except Exception as e:
                logger.warning(f"Durable tier get failed for {key}: {e}")
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                return None, False

            if raw is None:
                span.set_attribute("cache_hit", False)
                return None, False

            try:
                entry = CacheEntry.from_bytes(raw)
            except (ValueError, KeyError, TypeError) as e:
                logger.warning(f"Undecodable durable entry {key}: {e}")
                span.set_attribute("cache_hit", False)
                return None, False

            if entry.is_expired():
                span.set_attribute("cache_hit", False)
                return None, False

            span.set_attribute("cache_hit", True)
            return entry, True

    async def set(self, key: str, entry: CacheEntry, ttl: TTL) -> bool:
        if not _valid_key(key) or not isinstance(ttl, TTL):
            return False

        try:
            payload = entry.to_bytes()
        except (TypeError, ValueError) as e:
            logger.warning(f"Failed to serialize durable entry {key}: {e}")
            return False

        with tracer.start_as_current_span("cache.durable.set") as span:
            span.set_attribute("data_size", len(payload))
            try:
                result = await self.connections.execute(
                    "set", _redis_set, key, payload, ttl.seconds
                )
            except Exception as e:
                logger.warning(f"Durable tier set failed for {key}: {e}")
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                return False

            return bool(result)

    async def delete(self, key: str) -> bool:
        if not _valid_key(key):
            return False

        try:
            removed = await self.connections.execute("delete", _redis_delete, key)
        except Exception as e:
            logger.warning(f"Durable tier delete failed for {key}: {e}")
            return False

        return bool(removed)

    async def flush_namespace(self, namespace: str) -> bool:
        """Remove a namespace with cursor-based SCAN and non-blocking UNLINK."""
        try:
            prefix = CacheKey.namespace_prefix(self.key_prefix, namespace)
        except ValueError as e:
            logger.warning(f"Refusing durable flush: {e}")
            return False

        pattern = _escape_glob(prefix) + "*"
        count = 0
        cursor = 0

        try:
            while True:
                cursor, keys = await self.connections.execute(
                    "scan", _redis_scan, cursor, pattern, self.scan_batch_size
                )
                if keys:
                    count += await self.connections.execute("unlink", _redis_unlink, keys)
                if cursor == 0:
                    break
        except Exception as e:
            logger.warning(
                f"Durable flush of namespace {namespace} stopped after {count} keys: {e}"
            )
            return False

        logger.info(
            f"Flushed {count} durable entries for namespace {namespace}",
            extra={"namespace": namespace, "count": count},
        )
        return True

    async def close(self) -> None:
        await self.connections.close()


async def _redis_get(client, key: str) -> Optional[bytes]:
    return await client.get(key)


async def _redis_set(client, key: str, payload: bytes, ttl_seconds: int) -> bool:
    return await client.set(key, payload, ex=ttl_seconds)


async def _redis_delete(client, key: str) -> int:
    return await client.delete(key)


async def _redis_scan(client, cursor: int, pattern: str, count: int):
    return await client.scan(cursor, match=pattern, count=count)


async def _redis_unlink(client, keys: List[bytes]) -> int:
    return await client.unlink(*keys)
