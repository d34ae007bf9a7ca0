"""
Redis Infrastructure Module

Pooled Redis access for the durable tier and tag registry, with circuit
breaker protection and bounded operation timeouts.
"""

from .connection_factory import RedisConnectionFactory
from .circuit_breaker import (
    RedisCircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
    CircuitBreakerMetrics,
)
from .exceptions import (
    RedisException,
    RedisOperationTimeoutException,
    RedisCircuitBreakerOpenException,
    RedisConfigurationException,
)

__all__ = [
    # Connection management
    "RedisConnectionFactory",
    # Circuit breaker
    "RedisCircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    "CircuitBreakerMetrics",
    # Exceptions
    "RedisException",
    "RedisOperationTimeoutException",
    "RedisCircuitBreakerOpenException",
    "RedisConfigurationException",
]
