"""Circuit breaker for collaborator calls (task queue, storage).

Stops hammering a collaborator that keeps failing and lets it recover before
requests pass through again.
"""
from enum import Enum
from time import time
from typing import Callable, TypeVar, Optional
import logging
import threading

T = TypeVar('T')

log = logging.getLogger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"  # Normal operation - requests pass through
    OPEN = "open"      # Failing - reject requests immediately
    HALF_OPEN = "half_open"  # Testing if service recovered


class CircuitOpenError(RuntimeError):
    """Raised instead of calling the collaborator while the circuit is open."""


class CircuitBreaker:
    """Circuit breaker to prevent cascading failures.

    Usage:
        breaker = CircuitBreaker("tasks", failure_threshold=5, recovery_timeout=60)

        breaker.call(enqueue_http_task, path, body)
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
        expected_exception: type = Exception,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception
        self.failure_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = CircuitState.CLOSED
        self._lock = threading.Lock()
        self.log = logging.getLogger(f"{__name__}.{self.name}")

    def _before_call(self) -> None:
        with self._lock:
            if self.state != CircuitState.OPEN:
                return
            if self.last_failure_time is None:
                self.state = CircuitState.CLOSED
                return
            elapsed = time() - self.last_failure_time
            if elapsed > self.recovery_timeout:
                self.state = CircuitState.HALF_OPEN
                self.log.info("[circuit-breaker] %s entering HALF_OPEN state (testing recovery)", self.name)
                return
        raise CircuitOpenError(
            f"Circuit breaker '{self.name}' is OPEN - service unavailable. "
            f"Retry after {self.recovery_timeout - elapsed:.0f}s"
        )

    def call(self, func: Callable[..., T], *args, **kwargs) -> T:
        """Execute function with circuit breaker protection.

        Raises:
            CircuitOpenError: If circuit is OPEN and recovery timeout hasn't elapsed
        """
        self._before_call()
        try:
            result = func(*args, **kwargs)
        except self.expected_exception as e:
            with self._lock:
                self.failure_count += 1
                self.last_failure_time = time()
                if self.state == CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
                    self.state = CircuitState.OPEN
                    self.log.error(
                        "[circuit-breaker] %s OPENED after %d failures: %s",
                        self.name, self.failure_count, e,
                    )
            raise

        with self._lock:
            if self.state == CircuitState.HALF_OPEN:
                self.state = CircuitState.CLOSED
                self.failure_count = 0
                self.log.info("[circuit-breaker] %s CLOSED - service recovered", self.name)
            elif self.failure_count > 0:
                # Gradual recovery
                self.failure_count = max(0, self.failure_count - 1)
        return result

    def reset(self) -> None:
        with self._lock:
            self.state = CircuitState.CLOSED
            self.failure_count = 0
            self.last_failure_time = None


PROCESSING_BREAKER = CircuitBreaker("processing-tasks", failure_threshold=5, recovery_timeout=60)
