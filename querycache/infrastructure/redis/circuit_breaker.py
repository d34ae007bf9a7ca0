"""
Redis Circuit Breaker

Guards durable tier and tag registry calls. Every call is bounded by
``operation_timeout``; after ``failure_threshold`` consecutive failures the
circuit opens and calls are rejected until ``recovery_timeout`` has passed.
A half-open circuit lets trial calls through and closes again after
``success_threshold`` of them succeed.
"""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Type, TypeVar

from .exceptions import RedisCircuitBreakerOpenException, RedisOperationTimeoutException

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """Thresholds and timeouts of a circuit breaker."""

    failure_threshold: int = 5
    recovery_timeout: float = 30.0
    success_threshold: int = 2
    operation_timeout: float = 1.0
    # Exceptions that count against the circuit; anything else passes through
    failure_exceptions: Tuple[Type[BaseException], ...] = (ConnectionError, OSError)


@dataclass
class CircuitBreakerMetrics:
    """Call counters since creation."""

    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    timeout_calls: int = 0
    rejected_calls: int = 0
    circuit_opens: int = 0

    @property
    def success_rate(self) -> float:
        if self.total_calls == 0:
            return 0.0
        return self.successful_calls / self.total_calls

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["success_rate"] = round(self.success_rate, 4)
        return data


class RedisCircuitBreaker:
    """
    Async circuit breaker shared by every call of one connection factory.
    """

    def __init__(self, config: Optional[CircuitBreakerConfig] = None):
        self.config = config or CircuitBreakerConfig()
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.metrics = CircuitBreakerMetrics()
        self._lock = asyncio.Lock()

    async def call(
        self,
        operation: str,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """
        Await ``func(*args, **kwargs)`` unless the circuit is open.

        Raises:
            RedisCircuitBreakerOpenException: If the circuit rejects the call
            RedisOperationTimeoutException: If the call exceeds operation_timeout
            Exception: Whatever ``func`` raises
        """
        await self._admit(operation)

        try:
            result = await asyncio.wait_for(
                func(*args, **kwargs), timeout=self.config.operation_timeout
            )
        except asyncio.TimeoutError:
            self.metrics.timeout_calls += 1
            await self._on_failure(operation, "timeout")
            raise RedisOperationTimeoutException(operation, self.config.operation_timeout)
        except self.config.failure_exceptions as e:
            await self._on_failure(operation, type(e).__name__)
            raise

        await self._on_success()
        return result

    async def _admit(self, operation: str) -> None:
        async with self._lock:
            self.metrics.total_calls += 1
            if self.state != CircuitState.OPEN:
                return

            elapsed = time.time() - (self.last_failure_time or 0.0)
            if elapsed < self.config.recovery_timeout:
                self.metrics.rejected_calls += 1
                logger.debug(f"Circuit open, rejecting Redis {operation}")
                raise RedisCircuitBreakerOpenException()

            self._transition(CircuitState.HALF_OPEN, f"trial call {operation}")

    async def _on_success(self) -> None:
        async with self._lock:
            self.metrics.successful_calls += 1
            if self.state == CircuitState.HALF_OPEN:
                self.success_count += 1
                if self.success_count >= self.config.success_threshold:
                    self._transition(CircuitState.CLOSED, "backend recovered")
            else:
                self.failure_count = 0

    async def _on_failure(self, operation: str, failure_type: str) -> None:
        async with self._lock:
            self.metrics.failed_calls += 1
            self.last_failure_time = time.time()
            self.failure_count += 1

            logger.warning(
                f"Redis {operation} failed ({failure_type})",
                extra={
                    "operation": operation,
                    "failure_type": failure_type,
                    "failure_count": self.failure_count,
                    "circuit_state": self.state.value,
                },
            )

            if self.state == CircuitState.HALF_OPEN or (
                self.state == CircuitState.CLOSED
                and self.failure_count >= self.config.failure_threshold
            ):
                self.metrics.circuit_opens += 1
                self._transition(CircuitState.OPEN, failure_type)

    def _transition(self, state: CircuitState, reason: str) -> None:
        # Caller holds the lock
        previous, self.state = self.state, state
        self.success_count = 0
        if state == CircuitState.CLOSED:
            self.failure_count = 0

        log = logger.warning if state == CircuitState.OPEN else logger.info
        log(
            f"Circuit breaker {previous.value} -> {state.value}: {reason}",
            extra={"circuit_state": state.value},
        )

    def get_status(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "failure_count": self.failure_count,
            "success_count": self.success_count,
            "last_failure_time": self.last_failure_time,
            "metrics": self.metrics.as_dict(),
        }

    async def reset(self) -> None:
        """Force the circuit closed."""
        async with self._lock:
            self._transition(CircuitState.CLOSED, "manual reset")
            self.last_failure_time = None
