"""Tests for error classification."""

import pytest

from conductor.core import (
    AgentError,
    CircuitOpenError,
    ErrorCategory,
    ErrorKind,
    RecoveryAction,
    Severity,
    classify_error,
)


class TestPatternClassification:
    """Test message-based classification."""

    @pytest.mark.parametrize(
        "message,kind,category",
        [
            ("Request timed out after 30s", ErrorKind.TRANSIENT, ErrorCategory.NETWORK_TIMEOUT),
            ("HTTP 429 Too Many Requests", ErrorKind.TRANSIENT, ErrorCategory.RATE_LIMIT),
            ("connection refused by host", ErrorKind.TRANSIENT, ErrorCategory.CONNECTION_RESET),
            ("upstream returned 503", ErrorKind.TRANSIENT, ErrorCategory.SERVICE_UNAVAILABLE),
            ("database is locked", ErrorKind.RETRIABLE, ErrorCategory.RESOURCE_LOCKED),
            ("missing dependency pg", ErrorKind.RETRIABLE, ErrorCategory.DEPENDENCY_MISSING),
            ("schema validation failed", ErrorKind.RETRIABLE, ErrorCategory.VALIDATION_ERROR),
            ("temporary failure, try again", ErrorKind.RETRIABLE, ErrorCategory.TEMPORARY_FAILURE),
            ("workspace corrupted", ErrorKind.ROLLBACK, ErrorCategory.STATE_CORRUPTION),
            ("permission denied: /etc", ErrorKind.FATAL, ErrorCategory.PERMISSION_DENIED),
            ("invalid config key", ErrorKind.FATAL, ErrorCategory.INVALID_CONFIGURATION),
            ("file not found", ErrorKind.FATAL, ErrorCategory.RESOURCE_NOT_FOUND),
            ("syntax error near line 3", ErrorKind.FATAL, ErrorCategory.SYNTAX_ERROR),
            ("SQL injection vulnerability", ErrorKind.CONFLICT, ErrorCategory.SECURITY_VULNERABILITY),
            ("violates retention policy", ErrorKind.CONFLICT, ErrorCategory.BUSINESS_RULE_VIOLATION),
            ("unique constraint violation", ErrorKind.CONFLICT, ErrorCategory.DATA_INTEGRITY_ISSUE),
        ],
    )
    def test_classification_table(self, message, kind, category):
        classification = classify_error(RuntimeError(message))
        assert classification.kind == kind
        assert classification.category == category
        assert classification.message == message

    def test_conflict_wins_over_timeout(self):
        classification = classify_error(RuntimeError("security scan timed out"))
        assert classification.kind == ErrorKind.CONFLICT
        assert classification.action == RecoveryAction.PAUSE_WORKFLOW
        assert classification.requires_human_intervention

    def test_out_of_memory_breaks_circuit(self):
        classification = classify_error(MemoryError("out of memory"))
        assert classification.kind == ErrorKind.FATAL
        assert classification.action == RecoveryAction.CIRCUIT_BREAK

    def test_retryable_flag(self):
        assert classify_error(RuntimeError("ECONNRESET")).retryable
        assert not classify_error(RuntimeError("403 forbidden")).retryable

    def test_unknown_error_is_retried_with_backoff(self):
        classification = classify_error(ValueError("something odd"))
        assert classification.kind == ErrorKind.RETRIABLE
        assert classification.category == ErrorCategory.UNKNOWN
        assert classification.action == RecoveryAction.RETRY_WITH_BACKOFF
        assert classification.severity == Severity.MEDIUM

    def test_empty_message_uses_class_name(self):
        assert classify_error(KeyError()).message == "KeyError"

    def test_builtin_timeout_error(self):
        classification = classify_error(TimeoutError())
        assert classification.kind == ErrorKind.TRANSIENT

    def test_context_is_copied(self):
        context = {"task_id": "t1"}
        classification = classify_error(RuntimeError("x"), context)
        classification.context["extra"] = True
        assert context == {"task_id": "t1"}


class TestTypedErrors:
    """Test errors that carry their own classification."""

    def test_circuit_open_error(self):
        classification = classify_error(CircuitOpenError("agent-api", retry_after=12.0))
        assert classification.category == ErrorCategory.CIRCUIT_OPEN
        assert classification.action == RecoveryAction.CIRCUIT_BREAK
        assert not classification.retryable
        assert "retry in 12.0s" in classification.message

    def test_agent_error_kind_overrides_message(self):
        error = AgentError(
            "permission denied",
            kind=ErrorKind.TRANSIENT,
            category="rate_limit",
            metadata={"host": "api"},
        )
        classification = classify_error(error, {"task_id": "t1"})

        assert classification.kind == ErrorKind.TRANSIENT
        assert classification.category == ErrorCategory.RATE_LIMIT
        assert classification.action == RecoveryAction.RETRY_WITH_BACKOFF
        assert classification.retryable
        assert classification.context == {"task_id": "t1", "host": "api"}

    def test_agent_error_unknown_category(self):
        error = AgentError("odd", kind=ErrorKind.ROLLBACK, category="weird")
        classification = classify_error(error)
        assert classification.category == ErrorCategory.UNKNOWN
        assert classification.action == RecoveryAction.ROLLBACK

    def test_agent_error_without_kind_falls_back_to_patterns(self):
        classification = classify_error(AgentError("resource busy"))
        assert classification.category == ErrorCategory.RESOURCE_LOCKED
