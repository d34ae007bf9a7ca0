"""
Cache Manager Service

Orchestrates the volatile and durable storage tiers, the tag version registry
and the statistics counters.

Tag versions are embedded into every key, so invalidating a tag makes all
entries written under its previous version unreachable without enumerating
or deleting them. Tiers reclaim those entries through their own expiry.
"""

import asyncio
import inspect
import logging
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from opentelemetry import trace

from ...core.config import Settings, settings as default_settings
from ...domain.cache.domain_services import KeyFingerprintService
from ...domain.cache.entities import CacheEntry
from ...domain.cache.exceptions import (
    InvalidCacheInputError,
    TagRegistryUnavailableError,
    TagVersionRegressionError,
)
from ...domain.cache.repository_interfaces import StorageTier, TagVersionRepository
from ...domain.cache.value_objects import TTL, CacheKey, CacheTag, validate_namespace
from ...infrastructure.redis.connection_factory import RedisConnectionFactory
from ...infrastructure.repositories.storage_tiers import (
    MemoryStorageTier,
    RedisStorageTier,
)
from ...infrastructure.repositories.tag_version_repository import (
    RedisTagVersionRepository,
)
from ...monitoring.cache_stats import CacheStats

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

TagsArg = Union[Iterable[Union[str, CacheTag]], str, CacheTag, None]
TTLArg = Union[TTL, int, float, None]


class CacheManager:
    """
    Tiered query-result cache with tag-based invalidation.

    Reads try the volatile tier, then the durable tier (backfilling the
    volatile tier on a durable hit), then fall back to ``compute``. Concurrent
    misses on one key may each run ``compute``; the last write wins.
    """

    def __init__(
        self,
        volatile_tier: StorageTier,
        durable_tier: Optional[StorageTier],
        tag_registry: TagVersionRepository,
        stats: Optional[CacheStats] = None,
        key_prefix: Optional[str] = None,
        volatile_only_namespaces: Optional[Iterable[str]] = None,
        default_ttl: TTLArg = None,
    ):
        self.volatile = volatile_tier
        self.durable = durable_tier
        self.tag_registry = tag_registry
        self.stats = stats or CacheStats()
        self.fingerprinter = KeyFingerprintService(
            key_prefix or default_settings.CACHE_KEY_PREFIX
        )
        self.volatile_only_namespaces = frozenset(volatile_only_namespaces or ())
        self.default_ttl = TTL.coerce(
            default_ttl or default_settings.CACHE_DURATION_MEDIUM
        )

        # Highest version seen per tag, used to detect a registry going backwards
        self._observed_versions: Dict[str, int] = {}
        self._observed_lock = threading.Lock()

    # Lookups

    async def get_cached(
        self,
        namespace: str,
        descriptor: Any,
        tags: TagsArg = (),
        ttl: TTLArg = None,
        compute: Optional[Callable[[], Any]] = None,
        default: Any = None,
    ) -> Any:
        """
        Get a cached query result, computing and storing it on a miss.

        Args:
            namespace: Query namespace
            descriptor: Query arguments the key is derived from
            tags: Invalidation tags of the result
            ttl: Lifetime of a newly computed entry (default TTL if omitted)
            compute: Sync or async callable producing the value on a miss
            default: Returned on a miss when no ``compute`` is supplied

        Returns:
            Cached or computed value, or ``default``

        Raises:
            TagVersionRegressionError: If the tag registry lost invalidations
            Exception: Whatever ``compute`` raises
        """
        with tracer.start_as_current_span("cache_manager.get_cached") as span:
            span.set_attribute("namespace", str(namespace))

            try:
                tag_list = self._normalize_tags(tags)
                cache_ttl = self._resolve_ttl(ttl)
            except InvalidCacheInputError as e:
                logger.warning(f"Rejected cache lookup in {namespace}: {e.message}")
                return default

            try:
                versions = await self._resolve_versions(tag_list)
            except TagRegistryUnavailableError as e:
                # Without current versions no key is provably fresh
                logger.error(f"Bypassing cache for {namespace}: {e.message}")
                span.set_attribute("cache_bypass", True)
                self.stats.record_miss()
                if compute is None:
                    return default
                return await self._invoke(compute)

            try:
                key = self.fingerprinter.fingerprint(namespace, descriptor, versions)
            except InvalidCacheInputError as e:
                logger.warning(f"Rejected cache lookup in {namespace}: {e.message}")
                return default

            entry, found = await self.volatile.get(key.value)
            if found:
                self.stats.record_hit()
                span.set_attribute("cache_hit", "volatile")
                logger.debug("Cache hit", extra={"key": key.value, "tier": "volatile"})
                return entry.value

            if self._uses_durable(namespace):
                entry, found = await self.durable.get(key.value)
                if found:
                    self.stats.record_hit()
                    span.set_attribute("cache_hit", "durable")
                    await self._backfill_volatile(key, entry)
                    logger.debug("Cache hit", extra={"key": key.value, "tier": "durable"})
                    return entry.value

            self.stats.record_miss()
            span.set_attribute("cache_hit", "miss")

            if compute is None:
                return default

            value = await self._invoke(compute)

            if value is None:
                logger.debug(f"Not caching empty result for {key.value}")
                return value

            fresh = CacheEntry.create(value, cache_ttl, versions)
            if await self._write(key, fresh, cache_ttl, namespace):
                self.stats.record_set()

            logger.debug(
                "Cache miss - generated fresh data",
                extra={"key": key.value, "namespace": namespace, "ttl": cache_ttl.seconds},
            )
            return value

    # Direct writes

    async def set_cache(
        self,
        namespace: str,
        descriptor: Any,
        tags: TagsArg,
        value: Any,
        ttl: TTLArg = None,
    ) -> bool:
        """
        Store a value for a query without computing it.

        Returns:
            True if at least one tier accepted the entry
        """
        with tracer.start_as_current_span("cache_manager.set_cache") as span:
            span.set_attribute("namespace", str(namespace))

            try:
                cache_ttl = self._resolve_ttl(ttl)
                versions = await self._resolve_versions(self._normalize_tags(tags))
                key = self.fingerprinter.fingerprint(namespace, descriptor, versions)
            except (InvalidCacheInputError, TagRegistryUnavailableError) as e:
                logger.warning(f"Failed to set cache in {namespace}: {e.message}")
                return False

            entry = CacheEntry.create(value, cache_ttl, versions)
            ok = await self._write(key, entry, cache_ttl, namespace)
            if ok:
                self.stats.record_set()
            return ok

    async def delete_cache(
        self, namespace: str, descriptor: Any, tags: TagsArg = ()
    ) -> bool:
        """
        Delete the entry of one query under the current tag versions.

        Other queries sharing the same tags are not affected.

        Returns:
            True if an entry was removed from any tier
        """
        with tracer.start_as_current_span("cache_manager.delete_cache") as span:
            span.set_attribute("namespace", str(namespace))

            try:
                versions = await self._resolve_versions(self._normalize_tags(tags))
                key = self.fingerprinter.fingerprint(namespace, descriptor, versions)
            except (InvalidCacheInputError, TagRegistryUnavailableError) as e:
                logger.warning(f"Failed to delete cache in {namespace}: {e.message}")
                return False

            tiers = [self.volatile]
            if self._uses_durable(namespace):
                tiers.append(self.durable)

            results = await asyncio.gather(*(tier.delete(key.value) for tier in tiers))
            removed = any(results)
            if removed:
                self.stats.record_delete()
            return removed

    # Invalidation

    async def invalidate_tag(self, tag: Union[str, CacheTag]) -> int:
        """
        Bump a tag, making every entry written under its old version unreachable.

        Returns:
            New tag version, or 0 if the tag was rejected as invalid

        Raises:
            TagRegistryUnavailableError: If the bump could not be recorded
            TagVersionRegressionError: If the registry returned a stale version
        """
        with tracer.start_as_current_span("cache_manager.invalidate_tag") as span:
            try:
                tag_value = self._normalize_tags([tag])[0]
            except InvalidCacheInputError as e:
                logger.warning(f"Rejected invalidation: {e.message}")
                return 0

            span.set_attribute("tag", tag_value)

            with self._observed_lock:
                floor = self._observed_versions.get(tag_value, 0)

            new_version = await self.tag_registry.bump(tag_value)
            if new_version <= floor:
                raise TagVersionRegressionError(tag_value, floor, new_version)
            self._observe({tag_value: new_version})

            logger.info(
                f"Invalidated cache tag {tag_value}",
                extra={"tag": tag_value, "version": new_version},
            )
            return new_version

    async def invalidate_tags(self, tags: TagsArg) -> Dict[str, int]:
        """Bump several tags; returns the new version of each."""
        try:
            tag_list = self._normalize_tags(tags)
        except InvalidCacheInputError as e:
            logger.warning(f"Rejected invalidation: {e.message}")
            return {}

        return {tag: await self.invalidate_tag(tag) for tag in tag_list}

    async def flush_namespace(self, namespace: str) -> bool:
        """
        Remove every entry of a namespace from both tiers.

        Operational last resort; tag invalidation never needs it.
        """
        with tracer.start_as_current_span("cache_manager.flush_namespace") as span:
            span.set_attribute("namespace", str(namespace))
            try:
                namespace = validate_namespace(namespace)
            except ValueError as e:
                logger.warning(f"Rejected namespace flush: {e}")
                return False

            tiers = [self.volatile]
            if self.durable is not None:
                tiers.append(self.durable)

            results = await asyncio.gather(
                *(tier.flush_namespace(namespace) for tier in tiers)
            )
            logger.warning(
                f"Flushed cache namespace {namespace}",
                extra={"namespace": namespace, "results": list(results)},
            )
            return all(results)

    # Statistics

    def get_cache_stats(self) -> Dict[str, Any]:
        """Get hits, misses, sets, deletes and hit_rate (percent)."""
        return self.stats.snapshot().as_dict()

    def reset_stats(self) -> None:
        """Zero the statistics counters."""
        self.stats.reset()

    async def close(self) -> None:
        """Close tiers and registry."""
        await self.volatile.close()
        if self.durable is not None:
            await self.durable.close()
        await self.tag_registry.close()
        logger.info("Cache manager closed")

    # Internals

    def _uses_durable(self, namespace: str) -> bool:
        return self.durable is not None and namespace not in self.volatile_only_namespaces

    def _resolve_ttl(self, ttl: TTLArg) -> TTL:
        if ttl is None:
            return self.default_ttl
        try:
            return TTL.coerce(ttl)
        except (TypeError, ValueError) as e:
            raise InvalidCacheInputError(f"Invalid TTL {ttl!r}: {e}", field="ttl") from e

    @staticmethod
    def _normalize_tags(tags: TagsArg) -> List[str]:
        if tags is None:
            return []
        if isinstance(tags, (str, CacheTag)):
            tags = [tags]
        try:
            return sorted({CacheTag(str(tag)).value for tag in tags})
        except (TypeError, ValueError) as e:
            raise InvalidCacheInputError(f"Invalid cache tags: {e}", field="tags") from e

    async def _resolve_versions(self, tags: List[str]) -> Dict[str, int]:
        if not tags:
            return {}

        # Only versions observed before this read started bound its result
        with self._observed_lock:
            floor = {tag: self._observed_versions.get(tag, 0) for tag in tags}

        try:
            versions = await self.tag_registry.current_versions(tags)
        except ValueError as e:
            raise InvalidCacheInputError(f"Invalid cache tags: {e}", field="tags") from e

        for tag in tags:
            if versions.get(tag, 0) < floor[tag]:
                raise TagVersionRegressionError(tag, floor[tag], versions.get(tag, 0))

        self._observe(versions)
        return {tag: versions.get(tag, 0) for tag in tags}

    def _observe(self, versions: Dict[str, int]) -> None:
        with self._observed_lock:
            for tag, version in versions.items():
                if version > self._observed_versions.get(tag, 0):
                    self._observed_versions[tag] = version

    @staticmethod
    async def _invoke(compute: Callable[[], Any]) -> Any:
        result = compute()
        if inspect.isawaitable(result):
            result = await result
        return result

    async def _write(
        self, key: CacheKey, entry: CacheEntry, ttl: TTL, namespace: str
    ) -> bool:
        writes = [self.volatile.set(key.value, entry, ttl)]
        if self._uses_durable(namespace):
            writes.append(self.durable.set(key.value, entry, ttl))

        results = await asyncio.gather(*writes)
        if not all(results):
            logger.warning(
                f"Partial cache write for {key.value}",
                extra={"key": key.value, "results": list(results)},
            )
        return any(results)

    async def _backfill_volatile(self, key: CacheKey, entry: CacheEntry) -> None:
        remaining = entry.remaining_ttl()
        if remaining <= 0:
            return
        if not await self.volatile.set(key.value, entry, TTL(remaining)):
            logger.debug(f"Volatile backfill skipped for {key.value}")


def create_cache_manager(
    config: Optional[Settings] = None,
    stats: Optional[CacheStats] = None,
) -> CacheManager:
    """
    Build a cache manager with an in-memory volatile tier, a Redis durable
    tier and a Redis tag registry sharing one connection pool.
    """
    config = config or default_settings
    connections = RedisConnectionFactory(config=config)

    return CacheManager(
        volatile_tier=MemoryStorageTier(
            key_prefix=config.CACHE_KEY_PREFIX,
            maxsize=config.CACHE_VOLATILE_MAXSIZE,
        ),
        durable_tier=RedisStorageTier(
            key_prefix=config.CACHE_KEY_PREFIX, connection_factory=connections
        ),
        tag_registry=RedisTagVersionRepository(
            key_prefix=config.CACHE_KEY_PREFIX, connection_factory=connections
        ),
        stats=stats,
        key_prefix=config.CACHE_KEY_PREFIX,
        volatile_only_namespaces=config.volatile_only_namespaces_list,
        default_ttl=config.CACHE_DURATION_MEDIUM,
    )
