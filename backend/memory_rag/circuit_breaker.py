"""Circuit breaker guarding the active retrieval strategy.

The breaker stops the retrieval gateway from calling a failing knowledge store
for a cooldown period, bounding load on the backend and latency for callers.

Circuit breaker states:
- CLOSED: Normal operation, calls pass through
- OPEN: Backend is failing, calls are short-circuited
- HALF_OPEN: Cooldown elapsed, a single trial call decides recovery

Any recorded success closes the circuit and clears the failure count.

Usage:
    breaker = CircuitBreaker(CircuitBreakerConfig(name="rag"))

    if breaker.can_try():
        try:
            result = await strategy.search(query)
            breaker.record_success()
        except Exception as e:
            breaker.record_failure(e)

Every method is synchronous, so within one event loop each state update runs
without an intervening suspension point.
"""

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from memory_rag.metrics import record_circuit_state

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"       # Normal operation
    OPEN = "open"           # Failing fast
    HALF_OPEN = "half_open" # Testing recovery


@dataclass
class CircuitBreakerConfig:
    """Configuration for a circuit breaker.

    Attributes:
        name: Name used in logging and status output
        failure_threshold: Consecutive failures before the circuit opens
        cooldown_seconds: Time the circuit stays open before a trial call
    """
    name: str
    failure_threshold: int = 3
    cooldown_seconds: float = 5.0


@dataclass
class CircuitBreakerStats:
    """Statistics for a circuit breaker."""
    total_checks: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    rejected_calls: int = 0  # Checks refused while open
    current_failures: int = 0
    last_failure_time: Optional[float] = None
    last_success_time: Optional[float] = None
    state_changes: int = 0


class CircuitBreaker:
    """Single-backend circuit breaker.

    Owned by exactly one retrieval gateway and never shared, so its view of
    backend health is local to that gateway instance.

    Args:
        config: CircuitBreakerConfig with breaker settings
        clock: Monotonic time source in seconds, injectable for tests
    """

    def __init__(
        self,
        config: CircuitBreakerConfig,
        clock: Callable[[], float] = time.monotonic,
    ):
        if config.failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        if config.cooldown_seconds < 0:
            raise ValueError("cooldown_seconds must not be negative")
        self.config = config
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._stats = CircuitBreakerStats()
        self._lock = threading.RLock()
        self._next_try_at = 0.0
        # Start of the outstanding half-open trial, None when no trial is out
        self._trial_started_at: Optional[float] = None
        record_circuit_state(config.name, self._state.value)

    @property
    def state(self) -> CircuitState:
        """Current state. Reading it never triggers a transition."""
        with self._lock:
            return self._state

    @property
    def failure_count(self) -> int:
        with self._lock:
            return self._stats.current_failures

    @property
    def next_try_at(self) -> float:
        with self._lock:
            return self._next_try_at

    @property
    def stats(self) -> CircuitBreakerStats:
        """Get a snapshot of the circuit breaker statistics."""
        with self._lock:
            return CircuitBreakerStats(**vars(self._stats))

    def _transition_to(self, new_state: CircuitState) -> None:
        """Transition to a new state with logging."""
        old_state = self._state
        if old_state == new_state:
            return
        self._state = new_state
        self._stats.state_changes += 1
        record_circuit_state(self.config.name, new_state.value)

        logger.warning(
            f"Circuit breaker '{self.config.name}' state changed: "
            f"{old_state.value} -> {new_state.value}"
        )

    def can_try(self) -> bool:
        """Check whether a call may go through right now.

        An open circuit whose cooldown has elapsed moves to HALF_OPEN and
        admits one trial call. While that trial is outstanding further checks
        are refused; a trial that never reports back expires after one
        cooldown so another can be admitted.

        Returns:
            True if the caller may invoke the backend
        """
        with self._lock:
            self._stats.total_checks += 1
            now = self._clock()

            if self._state == CircuitState.CLOSED:
                return True

            if self._state == CircuitState.OPEN:
                if now >= self._next_try_at:
                    self._transition_to(CircuitState.HALF_OPEN)
                    self._trial_started_at = now
                    return True
                self._stats.rejected_calls += 1
                return False

            # HALF_OPEN
            if (
                self._trial_started_at is None
                or now - self._trial_started_at >= self.config.cooldown_seconds
            ):
                self._trial_started_at = now
                return True
            self._stats.rejected_calls += 1
            return False

    def record_success(self) -> None:
        """Record a successful call. Closes the circuit from any state."""
        with self._lock:
            self._stats.successful_calls += 1
            self._stats.last_success_time = self._clock()
            self._stats.current_failures = 0
            self._trial_started_at = None
            self._transition_to(CircuitState.CLOSED)

    def record_failure(self, error: Optional[BaseException] = None) -> None:
        """Record a failed call, opening the circuit at the threshold."""
        with self._lock:
            now = self._clock()
            self._stats.failed_calls += 1
            self._stats.last_failure_time = now
            self._stats.current_failures += 1
            self._trial_started_at = None

            logger.warning(
                f"Circuit breaker '{self.config.name}' recorded failure "
                f"({self._stats.current_failures}/{self.config.failure_threshold})"
                + (f": {error}" if error is not None else "")
            )

            if self._stats.current_failures >= self.config.failure_threshold:
                self._next_try_at = now + self.config.cooldown_seconds
                self._transition_to(CircuitState.OPEN)

    def time_until_retry(self) -> Optional[float]:
        """Seconds until an open circuit admits a trial, None unless open."""
        with self._lock:
            if self._state != CircuitState.OPEN:
                return None
            return max(0.0, self._next_try_at - self._clock())

    def reset(self) -> None:
        """Reset circuit breaker to closed state and clear statistics."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._stats = CircuitBreakerStats()
            self._next_try_at = 0.0
            self._trial_started_at = None
            record_circuit_state(self.config.name, CircuitState.CLOSED.value)
            logger.info(f"Circuit breaker '{self.config.name}' reset to CLOSED")

    def get_status(self) -> Dict[str, Any]:
        """Get detailed status for health checks.

        Returns:
            Dictionary with circuit breaker status and statistics
        """
        stats = self.stats
        return {
            "name": self.config.name,
            "state": self.state.value,
            "config": {
                "failure_threshold": self.config.failure_threshold,
                "cooldown_seconds": self.config.cooldown_seconds,
            },
            "stats": {
                "total_checks": stats.total_checks,
                "successful_calls": stats.successful_calls,
                "failed_calls": stats.failed_calls,
                "rejected_calls": stats.rejected_calls,
                "current_failures": stats.current_failures,
            },
            "time_until_retry": self.time_until_retry(),
            "state_changes": stats.state_changes,
        }
