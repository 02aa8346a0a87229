"""Retry policy engine with per-key circuit breakers.

Wraps an operation with bounded retries and backoff. Errors are classified
first; only retryable kinds are retried. Repeated failures for the same
breaker key open a circuit breaker that rejects further calls until a reset
timeout has passed, after which a single trial call decides whether to close
it again.
"""

import logging
import random
import threading
import time
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Optional, TypeVar

from conductor.core.error_classifier import RETRYABLE_KINDS, classify_error
from conductor.core.exceptions import CircuitOpenError
from conductor.core.models import ErrorKind, utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BackoffStrategy(str, Enum):
    """How the delay grows between attempts."""

    EXPONENTIAL = "exponential"  # 1s, 2s, 4s, 8s, 16s
    LINEAR = "linear"  # 1s, 2s, 3s, 4s, 5s
    FIXED = "fixed"  # 1s, 1s, 1s, 1s, 1s
    FIBONACCI = "fibonacci"  # 1s, 1s, 2s, 3s, 5s


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class RetryPolicy:
    """Configuration for retry behavior."""

    max_attempts: int = 5
    """Maximum number of attempts, including the first"""

    strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    """Backoff strategy between attempts"""

    base_delay: float = 1.0
    """Delay in seconds before the first retry"""

    max_delay: float = 16.0
    """Upper bound for any single delay, in seconds"""

    retryable_kinds: Optional[FrozenSet[ErrorKind]] = field(
        default_factory=lambda: RETRYABLE_KINDS
    )
    """Error kinds that may be retried (None retries everything)"""

    circuit_breaker_threshold: int = 10
    """Consecutive failed calls that open the breaker"""

    reset_timeout: float = 300.0
    """Seconds an open breaker waits before allowing a trial call"""

    jitter: float = 0.0
    """Random spread applied to each delay, as a fraction of it"""

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("Delays must not be negative")
        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError("jitter must be between 0 and 1")

    def calculate_delay(self, attempt: int, rng: Optional[random.Random] = None) -> float:
        """Calculate the delay after the given failed attempt (1-based).

        Args:
            attempt: Number of the attempt that just failed

        Returns:
            Delay in seconds, capped at ``max_delay``
        """
        attempt = max(1, attempt)
        if self.strategy == BackoffStrategy.EXPONENTIAL:
            delay = self.base_delay * (2 ** (attempt - 1))
        elif self.strategy == BackoffStrategy.LINEAR:
            delay = self.base_delay * attempt
        elif self.strategy == BackoffStrategy.FIBONACCI:
            delay = self.base_delay * _fibonacci(attempt)
        else:
            delay = self.base_delay

        delay = min(delay, self.max_delay)
        if self.jitter:
            spread = delay * self.jitter
            delay += (rng or random).uniform(-spread, spread)
            delay = min(max(delay, 0.0), self.max_delay)
        return delay

    def is_retryable(self, kind: ErrorKind) -> bool:
        return self.retryable_kinds is None or kind in self.retryable_kinds


def _fibonacci(n: int) -> int:
    a, b = 1, 1
    for _ in range(n - 1):
        a, b = b, a + b
    return a


@dataclass
class RetryAttempt:
    """One attempt of an operation."""

    attempt_number: int
    timestamp: datetime
    success: bool
    delay: float = 0.0
    """Delay applied before the next attempt"""

    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None


@dataclass
class RetryHistory:
    """All attempts made for one operation key."""

    operation_key: str
    created_at: datetime
    attempts: List[RetryAttempt] = field(default_factory=list)
    final_success: bool = False
    total_duration: float = 0.0
    completed_at: Optional[datetime] = None
    context: Dict[str, Any] = field(default_factory=dict)

    @property
    def total_attempts(self) -> int:
        return len(self.attempts)

    @property
    def retries(self) -> int:
        return max(0, self.total_attempts - 1)


@dataclass
class CircuitBreakerState:
    """State of one circuit breaker."""

    key: str
    threshold: int
    reset_timeout: float
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    opened_at: Optional[float] = None
    last_failure_at: Optional[datetime] = None
    trial_in_flight: bool = False


@dataclass
class RetryStatistics:
    """Aggregate retry statistics."""

    total_operations: int = 0
    successful_operations: int = 0
    failed_operations: int = 0
    average_retries: float = 0.0
    average_duration: float = 0.0
    open_circuit_breakers: List[str] = field(default_factory=list)


class RetryPolicyEngine:
    """Executes operations with retries, backoff and circuit breaking."""

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], datetime] = utcnow,
        rng: Optional[random.Random] = None,
    ):
        """Initialize the engine.

        Args:
            policy: Default retry policy (uses defaults if None)
            sleep: Sleep function, replaceable in tests
            clock: Monotonic clock used for durations and breaker timeouts
            wall_clock: Clock used for attempt timestamps
            rng: Random source for jitter
        """
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._clock = clock
        self._wall_clock = wall_clock
        self._rng = rng or random.Random()
        self._lock = threading.Lock()
        self._histories: Dict[str, RetryHistory] = {}
        self._breakers: Dict[str, CircuitBreakerState] = {}

    def execute_with_retry(
        self,
        key: str,
        operation: Callable[[], T],
        policy: Optional[RetryPolicy] = None,
        context: Optional[Dict[str, Any]] = None,
        breaker_key: Optional[str] = None,
    ) -> T:
        """Run an operation, retrying retryable failures.

        Args:
            key: Operation key the retry history is recorded under
            operation: Zero-argument callable to run
            policy: Policy override for this call
            context: Extra context passed to error classification
            breaker_key: Circuit breaker key (default: ``key``)

        Returns:
            The operation's return value

        Raises:
            CircuitOpenError: If the breaker is open; the operation is not called
            Exception: The last error once retries are exhausted, or the first
                non-retryable error
        """
        policy = policy or self.policy
        breaker_key = breaker_key or key
        is_trial = self._acquire_breaker(breaker_key, policy)

        history = RetryHistory(
            operation_key=key, created_at=self._wall_clock(), context=dict(context or {})
        )
        with self._lock:
            self._histories[key] = history

        started = self._clock()
        settled = False
        attempt = 0
        try:
            while True:
                attempt += 1
                try:
                    result = operation()
                except Exception as e:
                    classification = classify_error(e, context)
                    retryable = policy.is_retryable(classification.kind) and (
                        policy.retryable_kinds is None or classification.retryable
                    )

                    if not retryable or attempt >= policy.max_attempts:
                        self._record_attempt(history, attempt, False, error=e, kind=classification.kind)
                        self._finish(history, started, success=False)
                        self._record_breaker_failure(breaker_key, is_trial)
                        settled = True
                        if retryable:
                            logger.warning(
                                "Operation %s failed after %d attempts: %s",
                                key,
                                attempt,
                                e,
                            )
                        else:
                            logger.warning(
                                "Operation %s failed with non-retryable %s error: %s",
                                key,
                                classification.kind.value,
                                e,
                            )
                        raise

                    delay = policy.calculate_delay(attempt, self._rng)
                    self._record_attempt(
                        history, attempt, False, error=e, kind=classification.kind, delay=delay
                    )
                    logger.info(
                        "Operation %s attempt %d/%d failed (%s), retrying in %.1fs",
                        key,
                        attempt,
                        policy.max_attempts,
                        classification.kind.value,
                        delay,
                    )
                    self._sleep(delay)
                    continue

                self._record_attempt(history, attempt, True)
                self._finish(history, started, success=True)
                self._record_breaker_success(breaker_key)
                settled = True
                return result
        finally:
            if not settled and is_trial:
                # Interrupted trial: let the next call try again
                with self._lock:
                    self._breakers[breaker_key].trial_in_flight = False

    def _record_attempt(
        self,
        history: RetryHistory,
        attempt: int,
        success: bool,
        error: Optional[BaseException] = None,
        kind: Optional[ErrorKind] = None,
        delay: float = 0.0,
    ) -> None:
        with self._lock:
            history.attempts.append(
                RetryAttempt(
                    attempt_number=attempt,
                    timestamp=self._wall_clock(),
                    success=success,
                    delay=delay,
                    error=str(error) if error is not None else None,
                    error_kind=kind,
                )
            )

    def _finish(self, history: RetryHistory, started: float, success: bool) -> None:
        with self._lock:
            history.final_success = success
            history.total_duration = self._clock() - started
            history.completed_at = self._wall_clock()

    # ------------------------------------------------------------------
    # Circuit breakers
    # ------------------------------------------------------------------

    def _get_breaker(self, key: str, policy: RetryPolicy) -> CircuitBreakerState:
        breaker = self._breakers.get(key)
        if breaker is None:
            breaker = CircuitBreakerState(
                key=key,
                threshold=policy.circuit_breaker_threshold,
                reset_timeout=policy.reset_timeout,
            )
            self._breakers[key] = breaker
        return breaker

    def _acquire_breaker(self, key: str, policy: RetryPolicy) -> bool:
        """Check the breaker before a call. Returns True for a half-open trial."""
        with self._lock:
            breaker = self._get_breaker(key, policy)

            if breaker.state == CircuitState.OPEN:
                elapsed = self._clock() - (breaker.opened_at or 0.0)
                if elapsed < breaker.reset_timeout:
                    raise CircuitOpenError(key, retry_after=breaker.reset_timeout - elapsed)
                breaker.state = CircuitState.HALF_OPEN
                breaker.trial_in_flight = False
                logger.info("Circuit breaker %s half-open, allowing a trial call", key)

            if breaker.state == CircuitState.HALF_OPEN:
                if breaker.trial_in_flight:
                    raise CircuitOpenError(key)
                breaker.trial_in_flight = True
                return True

            return False

    def _record_breaker_success(self, key: str) -> None:
        with self._lock:
            breaker = self._breakers[key]
            if breaker.state != CircuitState.CLOSED:
                logger.info("Circuit breaker %s closed", key)
            breaker.state = CircuitState.CLOSED
            breaker.failure_count = 0
            breaker.opened_at = None
            breaker.trial_in_flight = False

    def _record_breaker_failure(self, key: str, was_trial: bool) -> None:
        with self._lock:
            breaker = self._breakers[key]
            breaker.failure_count += 1
            breaker.last_failure_at = self._wall_clock()
            breaker.trial_in_flight = False
            if was_trial or breaker.failure_count >= breaker.threshold:
                breaker.state = CircuitState.OPEN
                breaker.opened_at = self._clock()
                logger.warning(
                    "Circuit breaker %s opened after %d consecutive failures",
                    key,
                    breaker.failure_count,
                )

    def get_circuit_breaker_state(self, key: str) -> Optional[CircuitBreakerState]:
        """Get a copy of a breaker's state, or None if it was never used."""
        with self._lock:
            breaker = self._breakers.get(key)
            return replace(breaker) if breaker else None

    def get_all_circuit_breakers(self) -> Dict[str, CircuitBreakerState]:
        with self._lock:
            return {k: replace(b) for k, b in self._breakers.items()}

    def get_open_circuit_breakers(self) -> List[str]:
        with self._lock:
            return sorted(
                k for k, b in self._breakers.items() if b.state != CircuitState.CLOSED
            )

    def reset_circuit_breaker(self, key: Optional[str] = None) -> int:
        """Close one breaker, or all of them when ``key`` is None.

        Returns:
            Number of breakers reset
        """
        with self._lock:
            keys = list(self._breakers) if key is None else [key]
            reset = 0
            for k in keys:
                breaker = self._breakers.get(k)
                if breaker is None:
                    continue
                breaker.state = CircuitState.CLOSED
                breaker.failure_count = 0
                breaker.opened_at = None
                breaker.trial_in_flight = False
                reset += 1
        logger.info("Reset %d circuit breaker(s)", reset)
        return reset

    # ------------------------------------------------------------------
    # History and statistics
    # ------------------------------------------------------------------

    def get_retry_history(self, key: str) -> Optional[RetryHistory]:
        with self._lock:
            return self._histories.get(key)

    def get_all_retry_histories(self) -> Dict[str, RetryHistory]:
        with self._lock:
            return dict(self._histories)

    def clear_history(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._histories.clear()
            else:
                self._histories.pop(key, None)

    def get_statistics(self) -> RetryStatistics:
        """Aggregate statistics over all finished operations."""
        with self._lock:
            finished = [h for h in self._histories.values() if h.completed_at is not None]
            open_breakers = sorted(
                k for k, b in self._breakers.items() if b.state != CircuitState.CLOSED
            )

        if not finished:
            return RetryStatistics(open_circuit_breakers=open_breakers)

        successful = sum(1 for h in finished if h.final_success)
        return RetryStatistics(
            total_operations=len(finished),
            successful_operations=successful,
            failed_operations=len(finished) - successful,
            average_retries=sum(h.retries for h in finished) / len(finished),
            average_duration=sum(h.total_duration for h in finished) / len(finished),
            open_circuit_breakers=open_breakers,
        )
