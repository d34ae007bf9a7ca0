"""
Redis Connection Factory

Connection management for the durable tier and the tag registry.
Provides a shared connection pool and a circuit breaker for every call.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar
from urllib.parse import urlparse

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import (
    ConnectionError as RedisConnectionError,
    TimeoutError as RedisTimeoutError,
)

from ...core.config import Settings, settings as default_settings
from .circuit_breaker import CircuitBreakerConfig, RedisCircuitBreaker
from .exceptions import RedisConfigurationException

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RedisConnectionFactory:
    """
    Factory for a pooled Redis client guarded by a circuit breaker.

    The client is created lazily; ``client`` may be injected for tests.
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        client: Optional[Redis] = None,
        circuit_breaker: Optional[RedisCircuitBreaker] = None,
    ):
        self.settings = config or default_settings
        self._client = client
        self._pool: Optional[ConnectionPool] = None
        self._lock = asyncio.Lock()
        self.circuit_breaker = circuit_breaker or RedisCircuitBreaker(
            CircuitBreakerConfig(
                failure_threshold=self.settings.CIRCUIT_BREAKER_FAILURE_THRESHOLD,
                recovery_timeout=float(self.settings.CIRCUIT_BREAKER_RECOVERY_TIMEOUT),
                operation_timeout=self.settings.REDIS_OPERATION_TIMEOUT,
                failure_exceptions=(
                    RedisConnectionError,
                    RedisTimeoutError,
                    ConnectionError,
                    OSError,
                ),
            )
        )

    async def get_client(self) -> Redis:
        """Get the shared Redis client, creating the pool on first use."""
        if self._client is not None:
            return self._client

        async with self._lock:
            if self._client is not None:
                return self._client

            try:
                parsed_url = urlparse(self.settings.REDIS_URL)
                self._pool = ConnectionPool.from_url(
                    self.settings.REDIS_URL,
                    max_connections=self.settings.REDIS_MAX_CONNECTIONS,
                    socket_connect_timeout=self.settings.REDIS_CONNECTION_TIMEOUT,
                    socket_timeout=self.settings.REDIS_OPERATION_TIMEOUT,
                    decode_responses=False,
                )
                self._client = Redis(connection_pool=self._pool)
            except ValueError as e:
                raise RedisConfigurationException(
                    message=f"Invalid Redis configuration: {e}",
                    config_key="REDIS_URL",
                    original_error=e,
                ) from e

            logger.info(
                "Redis connection pool created",
                extra={
                    "host": parsed_url.hostname,
                    "port": parsed_url.port,
                    "max_connections": self.settings.REDIS_MAX_CONNECTIONS,
                },
            )
            return self._client

    async def execute(
        self,
        operation: str,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """
        Run ``func(client, *args, **kwargs)`` through the circuit breaker.

        Raises:
            RedisCircuitBreakerOpenException: If circuit is open
            RedisOperationTimeoutException: If the call times out
            redis.exceptions.RedisError: If Redis rejects the command
        """
        client = await self.get_client()
        return await self.circuit_breaker.call(operation, func, client, *args, **kwargs)

    def get_metrics(self) -> Dict[str, Any]:
        """Get connection factory metrics."""
        return {
            "initialized": self._client is not None,
            "max_connections": self.settings.REDIS_MAX_CONNECTIONS,
            "circuit_breaker": self.circuit_breaker.get_status(),
        }

    async def close(self) -> None:
        """Close the client and its pool."""
        async with self._lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None
            if self._pool is not None:
                await self._pool.disconnect()
                self._pool = None
            logger.info("Redis connection factory closed")
