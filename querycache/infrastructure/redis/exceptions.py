"""
Redis Infrastructure Exceptions

Raised by the circuit breaker and connection factory. Storage tiers turn them
into misses; the tag registry wraps them in ``TagRegistryUnavailableError``.
"""

from typing import Any, Optional

from ...domain.cache.exceptions import CacheException


class RedisException(CacheException):
    """Base exception for Redis-related errors."""


class RedisOperationTimeoutException(RedisException):
    """A Redis command did not finish within the operation timeout."""

    def __init__(self, operation: str, timeout_seconds: float):
        super().__init__(
            message=f"Redis {operation} exceeded {timeout_seconds}s",
            error_code="REDIS_TIMEOUT_ERROR",
            details={"operation": operation, "timeout_seconds": timeout_seconds},
        )


class RedisCircuitBreakerOpenException(RedisException):
    """The circuit is open and Redis is not being called."""

    def __init__(self, message: str = "Redis circuit breaker is open"):
        super().__init__(
            message=message, error_code="REDIS_CIRCUIT_OPEN", details={}
        )


class RedisConfigurationException(RedisException):
    """The Redis URL or pool options are unusable."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        original_error: Optional[Any] = None,
    ):
        details = {}
        if config_key:
            details["config_key"] = config_key
        if original_error is not None:
            details["original_error"] = str(original_error)

        super().__init__(
            message=message, error_code="REDIS_CONFIGURATION_ERROR", details=details
        )
