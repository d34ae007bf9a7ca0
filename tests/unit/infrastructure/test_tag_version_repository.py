"""
Unit tests for tag version registries.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock

from redis.exceptions import (
    ConnectionError as RedisConnectionError,
    ResponseError,
)

from querycache.domain.cache.exceptions import TagRegistryUnavailableError
from querycache.infrastructure.redis.circuit_breaker import (
    CircuitBreakerConfig,
    RedisCircuitBreaker,
)
from querycache.infrastructure.redis.connection_factory import RedisConnectionFactory
from querycache.infrastructure.repositories.tag_version_repository import (
    InMemoryTagVersionRepository,
    RedisTagVersionRepository,
)


class TestInMemoryTagVersionRepository:
    """Test the process-local registry."""

    @pytest.mark.asyncio
    async def test_unknown_tag_is_zero(self, tag_registry):
        assert await tag_registry.current_version("product:1") == 0

    @pytest.mark.asyncio
    async def test_bump_increments(self, tag_registry):
        assert await tag_registry.bump("product:1") == 1
        assert await tag_registry.bump("product:1") == 2
        assert await tag_registry.current_version("product:1") == 2
        assert await tag_registry.current_version("product:2") == 0

    @pytest.mark.asyncio
    async def test_concurrent_bumps_never_lost(self, tag_registry):
        results = await asyncio.gather(
            *(tag_registry.bump("catalog") for _ in range(50))
        )

        assert sorted(results) == list(range(1, 51))
        assert await tag_registry.current_version("catalog") == 50

    @pytest.mark.asyncio
    async def test_current_versions(self, tag_registry):
        await tag_registry.bump("product:2")

        versions = await tag_registry.current_versions(
            ["product:2", "product:1", "product:2"]
        )

        assert versions == {"product:1": 0, "product:2": 1}

    @pytest.mark.asyncio
    async def test_invalid_tag(self, tag_registry):
        with pytest.raises(ValueError):
            await tag_registry.bump("bad tag")


class TestRedisTagVersionRepository:
    """Test the Redis registry with a mocked client."""

    @pytest.fixture
    def redis_client(self):
        client = AsyncMock()
        client.mget = AsyncMock(return_value=[])
        client.incr = AsyncMock(return_value=1)
        return client

    @pytest.fixture
    def registry(self, redis_client):
        breaker = RedisCircuitBreaker(
            CircuitBreakerConfig(
                failure_threshold=10, failure_exceptions=(RedisConnectionError,)
            )
        )
        factory = RedisConnectionFactory(client=redis_client, circuit_breaker=breaker)
        return RedisTagVersionRepository(key_prefix="qcache", connection_factory=factory)

    @pytest.mark.asyncio
    async def test_current_versions(self, registry, redis_client):
        redis_client.mget.return_value = [b"3", None]

        versions = await registry.current_versions(["product:9", "catalog", "catalog"])

        assert versions == {"catalog": 3, "product:9": 0}
        redis_client.mget.assert_awaited_once_with(
            ["qcache::tagver:catalog", "qcache::tagver:product:9"]
        )

    @pytest.mark.asyncio
    async def test_current_versions_empty(self, registry, redis_client):
        assert await registry.current_versions([]) == {}
        redis_client.mget.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_current_version(self, registry, redis_client):
        redis_client.mget.return_value = [b"5"]
        assert await registry.current_version("product:1") == 5

    @pytest.mark.asyncio
    async def test_bump_uses_incr(self, registry, redis_client):
        redis_client.incr.return_value = 4

        assert await registry.bump("product:42") == 4
        redis_client.incr.assert_awaited_once_with("qcache::tagver:product:42")

    @pytest.mark.asyncio
    async def test_bump_retries_connection_errors(self, registry, redis_client):
        redis_client.incr.side_effect = [RedisConnectionError("reset"), 2]

        assert await registry.bump("product:42") == 2
        assert redis_client.incr.await_count == 2

    @pytest.mark.asyncio
    async def test_bump_failure_raises(self, registry, redis_client):
        redis_client.incr.side_effect = RedisConnectionError("connection refused")

        with pytest.raises(TagRegistryUnavailableError) as exc_info:
            await registry.bump("product:42")

        assert redis_client.incr.await_count == 3
        assert exc_info.value.details["operation"] == "bump"
        assert exc_info.value.details["tag"] == "product:42"

    @pytest.mark.asyncio
    async def test_read_failure_raises(self, registry, redis_client):
        redis_client.mget.side_effect = ResponseError("WRONGTYPE")

        with pytest.raises(TagRegistryUnavailableError) as exc_info:
            await registry.current_versions(["product:1"])

        assert exc_info.value.error_code == "CACHE_TAG_REGISTRY_UNAVAILABLE"
