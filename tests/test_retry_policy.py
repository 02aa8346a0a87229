"""Tests for the retry policy engine and circuit breakers."""

import random

import pytest

from conductor.core import AgentError, CircuitOpenError, ErrorKind
from conductor.orchestrator.retry_policy import (
    BackoffStrategy,
    CircuitState,
    RetryPolicy,
    RetryPolicyEngine,
)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def _failing(message, times=None):
    """Operation that raises ``times`` times (forever if None), then returns 'ok'."""
    calls = {"count": 0}

    def operation():
        calls["count"] += 1
        if times is None or calls["count"] <= times:
            raise RuntimeError(message)
        return "ok"

    operation.calls = calls
    return operation


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine(sleeps, clock):
    return RetryPolicyEngine(policy=RetryPolicy(), sleep=sleeps.append, clock=clock)


class TestRetryPolicy:
    """Test delay calculation."""

    @pytest.mark.parametrize(
        "strategy,expected",
        [
            (BackoffStrategy.EXPONENTIAL, [1, 2, 4, 8, 16, 16]),
            (BackoffStrategy.LINEAR, [1, 2, 3, 4, 5, 6]),
            (BackoffStrategy.FIXED, [1, 1, 1, 1, 1, 1]),
            (BackoffStrategy.FIBONACCI, [1, 1, 2, 3, 5, 8]),
        ],
    )
    def test_strategies(self, strategy, expected):
        policy = RetryPolicy(strategy=strategy)
        assert [policy.calculate_delay(n) for n in range(1, 7)] == expected

    def test_jitter_stays_within_bounds(self):
        policy = RetryPolicy(base_delay=4.0, max_delay=16.0, jitter=0.5)
        rng = random.Random(7)
        for attempt in range(1, 6):
            delay = policy.calculate_delay(attempt, rng)
            nominal = min(4.0 * 2 ** (attempt - 1), 16.0)
            assert nominal * 0.5 <= delay <= min(nominal * 1.5, 16.0)

    @pytest.mark.parametrize(
        "kwargs",
        [{"max_attempts": 0}, {"base_delay": -1}, {"jitter": 1.5}],
    )
    def test_invalid_policy(self, kwargs):
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)

    def test_default_retryable_kinds(self):
        policy = RetryPolicy()
        assert policy.is_retryable(ErrorKind.TRANSIENT)
        assert policy.is_retryable(ErrorKind.RETRIABLE)
        assert not policy.is_retryable(ErrorKind.FATAL)
        assert not policy.is_retryable(ErrorKind.CONFLICT)
        assert RetryPolicy(retryable_kinds=None).is_retryable(ErrorKind.FATAL)


class TestExecuteWithRetry:
    """Test retries and history."""

    def test_success_on_first_attempt(self, engine, sleeps):
        assert engine.execute_with_retry("op", lambda: 42) == 42

        history = engine.get_retry_history("op")
        assert history.total_attempts == 1
        assert history.final_success
        assert sleeps == []

    def test_transient_errors_are_retried_with_backoff(self, engine, sleeps):
        operation = _failing("connection timeout", times=2)

        assert engine.execute_with_retry("op", operation) == "ok"
        assert operation.calls["count"] == 3
        assert sleeps == [1.0, 2.0]

        history = engine.get_retry_history("op")
        assert history.retries == 2
        assert [a.success for a in history.attempts] == [False, False, True]
        assert history.attempts[0].error_kind == ErrorKind.TRANSIENT

    def test_gives_up_after_max_attempts(self, engine, sleeps):
        operation = _failing("service unavailable")
        policy = RetryPolicy(max_attempts=3)

        with pytest.raises(RuntimeError, match="service unavailable"):
            engine.execute_with_retry("op", operation, policy=policy)

        assert operation.calls["count"] == 3
        assert sleeps == [1.0, 2.0]
        assert not engine.get_retry_history("op").final_success

    @pytest.mark.parametrize(
        "message", ["permission denied", "security vulnerability found", "checksum mismatch"]
    )
    def test_non_retryable_errors_raise_immediately(self, engine, sleeps, message):
        operation = _failing(message)

        with pytest.raises(RuntimeError):
            engine.execute_with_retry("op", operation)

        assert operation.calls["count"] == 1
        assert sleeps == []

    def test_agent_error_can_opt_out_of_retry(self, engine):
        calls = []

        def operation():
            calls.append(1)
            raise AgentError("flaky", kind=ErrorKind.RETRIABLE, retryable=False)

        with pytest.raises(AgentError):
            engine.execute_with_retry("op", operation)
        assert len(calls) == 1

    def test_statistics(self, engine):
        engine.execute_with_retry("a", lambda: 1)
        engine.execute_with_retry("b", _failing("try again", times=1))
        with pytest.raises(RuntimeError):
            engine.execute_with_retry("c", _failing("not found"))

        stats = engine.get_statistics()
        assert stats.total_operations == 3
        assert stats.successful_operations == 2
        assert stats.failed_operations == 1
        assert stats.average_retries == pytest.approx(1 / 3)

    def test_clear_history(self, engine):
        engine.execute_with_retry("a", lambda: 1)
        engine.clear_history("a")
        assert engine.get_retry_history("a") is None


class TestCircuitBreaker:
    """Test breaker opening, half-open trials and reset."""

    @pytest.fixture
    def policy(self):
        return RetryPolicy(max_attempts=1, circuit_breaker_threshold=2, reset_timeout=60.0)

    def _fail(self, engine, policy, key="op", breaker_key="role"):
        with pytest.raises(RuntimeError):
            engine.execute_with_retry(key, _failing("boom"), policy=policy, breaker_key=breaker_key)

    def test_opens_at_threshold(self, engine, policy):
        self._fail(engine, policy)
        assert engine.get_circuit_breaker_state("role").state == CircuitState.CLOSED

        self._fail(engine, policy)
        assert engine.get_circuit_breaker_state("role").state == CircuitState.OPEN
        assert engine.get_open_circuit_breakers() == ["role"]

    def test_open_breaker_rejects_without_calling(self, engine, policy):
        self._fail(engine, policy)
        self._fail(engine, policy)
        calls = []

        with pytest.raises(CircuitOpenError) as exc_info:
            engine.execute_with_retry("other", lambda: calls.append(1), policy=policy, breaker_key="role")

        assert calls == []
        assert exc_info.value.key == "role"
        assert exc_info.value.retry_after == pytest.approx(60.0)

    def test_half_open_trial_success_closes(self, engine, policy, clock):
        self._fail(engine, policy)
        self._fail(engine, policy)
        clock.advance(61)

        assert engine.execute_with_retry("op", lambda: "ok", policy=policy, breaker_key="role") == "ok"
        breaker = engine.get_circuit_breaker_state("role")
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0

    def test_half_open_trial_failure_reopens(self, engine, policy, clock):
        self._fail(engine, policy)
        self._fail(engine, policy)
        clock.advance(61)

        self._fail(engine, policy)
        assert engine.get_circuit_breaker_state("role").state == CircuitState.OPEN
        with pytest.raises(CircuitOpenError):
            engine.execute_with_retry("op", lambda: 1, policy=policy, breaker_key="role")

    def test_success_resets_failure_count(self, engine, policy):
        self._fail(engine, policy)
        engine.execute_with_retry("op", lambda: 1, policy=policy, breaker_key="role")
        self._fail(engine, policy)

        assert engine.get_circuit_breaker_state("role").state == CircuitState.CLOSED

    def test_manual_reset(self, engine, policy):
        self._fail(engine, policy, breaker_key="a")
        self._fail(engine, policy, breaker_key="a")
        self._fail(engine, policy, breaker_key="b")

        assert engine.reset_circuit_breaker("a") == 1
        assert engine.get_open_circuit_breakers() == []
        assert engine.reset_circuit_breaker("missing") == 0
        assert engine.reset_circuit_breaker() == 2

    def test_breaker_defaults_to_operation_key(self, engine, policy):
        with pytest.raises(RuntimeError):
            engine.execute_with_retry("task-1", _failing("boom"), policy=policy)
        assert engine.get_circuit_breaker_state("task-1").failure_count == 1
