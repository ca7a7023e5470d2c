"""
Circuit Breaker Pattern Implementation for External Roster Resilience.

This module implements the circuit breaker pattern to stop calling the external
roster while it is failing, instead of piling retries onto an unavailable service.

Circuit Breaker States:
- CLOSED: Normal operation, requests pass through
- OPEN: Circuit is tripped, requests fail fast
- HALF_OPEN: Cooldown elapsed, the next request probes the service

A success while CLOSED leaves the failure count unchanged; only a success while
HALF_OPEN resets it.
"""
import asyncio
import logging
import math
import threading
import time
from typing import Any, Awaitable, Callable, Optional, Dict, List
from datetime import datetime
from enum import Enum
from dataclasses import dataclass, field


logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker behavior."""
    failure_threshold: int = 5  # Number of failures before opening
    reset_timeout: float = 60.0  # Seconds before trying half-open
    timeout: Optional[float] = None  # Per-call timeout in seconds


@dataclass
class CircuitBreakerMetrics:
    """Metrics tracking for circuit breaker."""
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    timeout_requests: int = 0
    rejected_requests: int = 0
    state_changes: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def success_rate(self) -> float:
        """Calculate success rate."""
        if self.total_requests == 0:
            return 1.0
        return self.successful_requests / self.total_requests

    def record_state_change(self, from_state: CircuitState, to_state: CircuitState, reason: str):
        """Record a state transition."""
        self.state_changes.append({
            'timestamp': datetime.utcnow().isoformat(),
            'from_state': from_state.value,
            'to_state': to_state.value,
            'reason': reason
        })
        # Keep the transition log bounded
        del self.state_changes[:-50]


@dataclass(frozen=True)
class CircuitBreakerSnapshot:
    """Point-in-time view of the breaker used by status reporting."""
    name: str
    state: CircuitState
    consecutive_failures: int
    last_failure_at: Optional[datetime]
    failure_threshold: int
    reset_timeout: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'state': self.state.value,
            'consecutive_failures': self.consecutive_failures,
            'last_failure_at': self.last_failure_at.isoformat() if self.last_failure_at else None,
            'failure_threshold': self.failure_threshold,
            'reset_timeout': self.reset_timeout,
        }


class CircuitBreakerError(Exception):
    """Base exception for circuit breaker failures."""
    pass


class CircuitBreakerOpenError(CircuitBreakerError):
    """Exception raised when the circuit is open and the call is rejected."""

    def __init__(self, name: str, retry_in: int):
        super().__init__(f"Circuit breaker is OPEN for {name}. Retrying in {retry_in}s")
        self.name = name
        self.retry_in = retry_in


class CircuitBreakerTimeoutError(CircuitBreakerError):
    """Exception raised when a guarded call times out."""
    pass


class CircuitBreaker:
    """
    Circuit Breaker guarding calls to a single external dependency.

    State is mutated inside short critical sections protected by a thread lock,
    never across the awaited call, so ``snapshot()`` and ``get_status()`` can be
    read from a status endpoint while a guarded call is in flight.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        timeout: Optional[float] = None,
        name: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")

        self.config = CircuitBreakerConfig(
            failure_threshold=failure_threshold,
            reset_timeout=reset_timeout,
            timeout=timeout
        )

        self.name = name or f"CircuitBreaker_{id(self)}"
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_time: Optional[datetime] = None
        self.metrics = CircuitBreakerMetrics()
        self._clock = clock
        self._last_failure_clock: Optional[float] = None
        self._lock = threading.Lock()

        logger.info(f"Circuit breaker '{self.name}' initialized with threshold={failure_threshold}")

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """
        Execute a coroutine function through the circuit breaker.

        Args:
            func: The async function to call
            *args: Positional arguments for the function
            **kwargs: Keyword arguments for the function

        Returns:
            Result of the function call

        Raises:
            CircuitBreakerOpenError: When circuit is open and cooling down
            CircuitBreakerTimeoutError: When the call exceeds the configured timeout
            Exception: Any exception from the wrapped function
        """
        self._before_call()

        try:
            if self.config.timeout:
                result = await asyncio.wait_for(func(*args, **kwargs), timeout=self.config.timeout)
            else:
                result = await func(*args, **kwargs)

        except asyncio.TimeoutError:
            with self._lock:
                self.metrics.timeout_requests += 1
            logger.error(f"Circuit breaker '{self.name}' - request timed out after {self.config.timeout}s")
            self._on_failure()
            raise CircuitBreakerTimeoutError(f"Request timed out after {self.config.timeout}s")

        except Exception as e:
            logger.error(f"Circuit breaker '{self.name}' - call failed: {e}")
            self._on_failure()
            raise

        self._on_success()
        return result

    def _before_call(self) -> None:
        """Reject the call while cooling down, or move OPEN to HALF_OPEN lazily."""
        with self._lock:
            self.metrics.total_requests += 1

            if self.state != CircuitState.OPEN:
                return

            elapsed = self._clock() - (self._last_failure_clock or 0.0)
            remaining = self.config.reset_timeout - elapsed
            if remaining > 0:
                self.metrics.rejected_requests += 1
                retry_in = math.ceil(remaining)
                logger.warning(f"Circuit breaker '{self.name}' is OPEN - failing fast ({retry_in}s left)")
                raise CircuitBreakerOpenError(self.name, retry_in)

            self._transition(CircuitState.HALF_OPEN, "Reset timeout elapsed, testing service availability")

    def _on_success(self) -> None:
        """Handle successful request."""
        with self._lock:
            self.metrics.successful_requests += 1

            if self.state == CircuitState.HALF_OPEN:
                self.failure_count = 0
                self._transition(CircuitState.CLOSED, "Service recovered")

    def _on_failure(self) -> None:
        """Handle failed request."""
        with self._lock:
            self.metrics.failed_requests += 1
            self.failure_count += 1
            self.last_failure_time = datetime.utcnow()
            self._last_failure_clock = self._clock()

            if self.state == CircuitState.HALF_OPEN:
                # A failed probe goes straight back to OPEN
                self._transition(CircuitState.OPEN, "Probe request failed while half-open")
            elif (
                self.state == CircuitState.CLOSED
                and self.failure_count >= self.config.failure_threshold
            ):
                self._transition(
                    CircuitState.OPEN,
                    f"Failure threshold reached ({self.failure_count}/{self.config.failure_threshold})"
                )

    def _transition(self, to_state: CircuitState, reason: str) -> None:
        # Caller holds self._lock
        old_state = self.state
        self.state = to_state
        self.metrics.record_state_change(old_state, to_state, reason)

        if to_state == CircuitState.OPEN:
            logger.error(f"Circuit breaker '{self.name}' opened after {self.failure_count} failures")
        else:
            logger.info(f"Circuit breaker '{self.name}' transitioned to {to_state.value}: {reason}")

    def force_open(self, reason: str = "Manual override") -> None:
        """Manually force the circuit breaker to OPEN state."""
        with self._lock:
            self.failure_count = max(self.failure_count, self.config.failure_threshold)
            self.last_failure_time = datetime.utcnow()
            self._last_failure_clock = self._clock()
            self._transition(CircuitState.OPEN, f"Manual: {reason}")

    def force_closed(self, reason: str = "Manual override") -> None:
        """Manually force the circuit breaker to CLOSED state."""
        with self._lock:
            self.failure_count = 0
            self._transition(CircuitState.CLOSED, f"Manual: {reason}")

    def snapshot(self) -> CircuitBreakerSnapshot:
        """Consistent copy of the breaker state."""
        with self._lock:
            return CircuitBreakerSnapshot(
                name=self.name,
                state=self.state,
                consecutive_failures=self.failure_count,
                last_failure_at=self.last_failure_time,
                failure_threshold=self.config.failure_threshold,
                reset_timeout=self.config.reset_timeout,
            )

    def get_status(self) -> Dict[str, Any]:
        """Get current status and metrics."""
        status = self.snapshot().to_dict()
        with self._lock:
            status['metrics'] = {
                'total_requests': self.metrics.total_requests,
                'successful_requests': self.metrics.successful_requests,
                'failed_requests': self.metrics.failed_requests,
                'timeout_requests': self.metrics.timeout_requests,
                'rejected_requests': self.metrics.rejected_requests,
                'success_rate': self.metrics.success_rate,
                'state_changes': list(self.metrics.state_changes[-10:])  # Last 10 state changes
            }
        return status

    def reset_metrics(self):
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self.metrics = CircuitBreakerMetrics()
        logger.info(f"Circuit breaker '{self.name}' metrics reset")
