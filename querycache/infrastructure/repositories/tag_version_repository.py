"""
Tag Version Repository Implementations

Per-tag generation counters. The Redis implementation relies on INCR, which
is atomic on the server, so concurrent bumps from any number of processes
never lose an increment. Counters are stored without expiry.
"""

import logging
import threading
from typing import Dict, Iterable, List, Optional

from redis.exceptions import (
    ConnectionError as RedisConnectionError,
    RedisError,
    TimeoutError as RedisTimeoutError,
)
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ...domain.cache.exceptions import TagRegistryUnavailableError
from ...domain.cache.repository_interfaces import TagVersionRepository
from ...domain.cache.value_objects import CacheTag
from ..redis.connection_factory import RedisConnectionFactory
from ..redis.exceptions import RedisException, RedisOperationTimeoutException

logger = logging.getLogger(__name__)


def _validate_tag(tag: str) -> str:
    return CacheTag(tag).value


class InMemoryTagVersionRepository(TagVersionRepository):
    """
    Process-local tag registry.

    Versions vanish on restart, so this is only safe when every cache tier
    it guards is process-local too.
    """

    def __init__(self):
        self._versions: Dict[str, int] = {}
        self._lock = threading.Lock()

    async def current_version(self, tag: str) -> int:
        tag = _validate_tag(tag)
        with self._lock:
            return self._versions.get(tag, 0)

    async def bump(self, tag: str) -> int:
        tag = _validate_tag(tag)
        with self._lock:
            version = self._versions.get(tag, 0) + 1
            self._versions[tag] = version
            return version

    async def current_versions(self, tags: Iterable[str]) -> Dict[str, int]:
        unique = sorted({_validate_tag(tag) for tag in tags})
        with self._lock:
            return {tag: self._versions.get(tag, 0) for tag in unique}


class RedisTagVersionRepository(TagVersionRepository):
    """
    Redis-backed tag registry.

    Keys have the shape ``<prefix>::tagver:<tag>``. The empty segment after
    the prefix is one no namespace can produce, so namespace flushes never
    reach the counters.
    """

    def __init__(
        self,
        key_prefix: str,
        connection_factory: Optional[RedisConnectionFactory] = None,
    ):
        self.key_prefix = key_prefix
        self.connections = connection_factory or RedisConnectionFactory()

    def _key(self, tag: str) -> str:
        return f"{self.key_prefix}::tagver:{tag}"

    async def current_version(self, tag: str) -> int:
        versions = await self.current_versions([tag])
        return versions[_validate_tag(tag)]

    async def current_versions(self, tags: Iterable[str]) -> Dict[str, int]:
        unique = sorted({_validate_tag(tag) for tag in tags})
        if not unique:
            return {}

        keys = [self._key(tag) for tag in unique]
        try:
            raw_values = await self.connections.execute("mget", _redis_mget, keys)
        except (RedisError, RedisException, ConnectionError, OSError) as e:
            raise TagRegistryUnavailableError(
                "current_versions", original_error=e
            ) from e

        return {
            tag: int(raw) if raw is not None else 0
            for tag, raw in zip(unique, raw_values)
        }

    async def bump(self, tag: str) -> int:
        tag = _validate_tag(tag)
        try:
            version = await self._incr(tag)
        except (RedisError, RedisException, ConnectionError, OSError) as e:
            logger.error(f"Failed to bump tag {tag}: {e}")
            raise TagRegistryUnavailableError("bump", tag=tag, original_error=e) from e

        logger.debug(f"Bumped tag {tag} to version {version}")
        return int(version)

    # INCR is retried only for connection failures and timeouts. A retry
    # after an INCR that did reach the server bumps twice, which only
    # invalidates more than necessary.
    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.05, min=0.05, max=1),
        retry=retry_if_exception_type(
            (RedisConnectionError, RedisTimeoutError, RedisOperationTimeoutException)
        ),
        reraise=True,
        before_sleep=lambda retry_state: logger.warning(
            f"Retrying tag bump (attempt {retry_state.attempt_number}): "
            f"{retry_state.outcome.exception()}"
        ),
    )
    async def _incr(self, tag: str) -> int:
        return await self.connections.execute("incr", _redis_incr, self._key(tag))

    async def close(self) -> None:
        await self.connections.close()


async def _redis_mget(client, keys: List[str]):
    return await client.mget(keys)


async def _redis_incr(client, key: str) -> int:
    return await client.incr(key)
