"""Error classification for retry and recovery decisions.

Errors raised by agents are sorted into an :class:`ErrorKind` and a finer
category. An :class:`AgentError` carries its own kind; anything else is
matched against an ordered table of message patterns, first match wins.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Pattern

from .exceptions import AgentError, CircuitOpenError
from .models import ErrorKind, Severity


class ErrorCategory(str, Enum):
    """Detailed error category."""

    # Transient errors
    NETWORK_TIMEOUT = "network_timeout"
    RATE_LIMIT = "rate_limit"
    CONNECTION_RESET = "connection_reset"
    SERVICE_UNAVAILABLE = "service_unavailable"

    # Retriable errors
    RESOURCE_LOCKED = "resource_locked"
    DEPENDENCY_MISSING = "dependency_missing"
    TEMPORARY_FAILURE = "temporary_failure"
    VALIDATION_ERROR = "validation_error"

    # Rollback errors
    STATE_CORRUPTION = "state_corruption"

    # Fatal errors
    INVALID_CONFIGURATION = "invalid_configuration"
    PERMISSION_DENIED = "permission_denied"
    RESOURCE_NOT_FOUND = "resource_not_found"
    SYNTAX_ERROR = "syntax_error"
    OUT_OF_MEMORY = "out_of_memory"
    CIRCUIT_OPEN = "circuit_open"

    # Conflict errors
    SECURITY_VULNERABILITY = "security_vulnerability"
    BUSINESS_RULE_VIOLATION = "business_rule_violation"
    DATA_INTEGRITY_ISSUE = "data_integrity_issue"

    UNKNOWN = "unknown"


class RecoveryAction(str, Enum):
    """Action the recovery layer takes for a classified error."""

    RETRY = "retry"
    RETRY_WITH_BACKOFF = "retry_with_backoff"
    ROLLBACK = "rollback"  # Restore the newest restorable checkpoint
    PAUSE_WORKFLOW = "pause_workflow"  # Stop dispatching, wait for a human
    FAIL_IMMEDIATELY = "fail_immediately"
    CIRCUIT_BREAK = "circuit_break"  # System unhealthy, manual reset needed


@dataclass(frozen=True)
class ClassificationRule:
    """One row of the classification table."""

    pattern: Pattern[str]
    kind: ErrorKind
    category: ErrorCategory
    severity: Severity
    action: RecoveryAction


@dataclass
class ErrorClassification:
    """Result of classifying an error."""

    kind: ErrorKind
    category: ErrorCategory
    severity: Severity
    action: RecoveryAction
    message: str
    retryable: bool
    requires_human_intervention: bool = False
    context: Dict[str, Any] = field(default_factory=dict)


def _rule(
    pattern: str,
    kind: ErrorKind,
    category: ErrorCategory,
    severity: Severity,
    action: RecoveryAction,
) -> ClassificationRule:
    return ClassificationRule(
        pattern=re.compile(pattern, re.IGNORECASE),
        kind=kind,
        category=category,
        severity=severity,
        action=action,
    )


# Conflicts and corruption are checked first so that, for example, a
# "security scan timed out" message is not mistaken for a plain timeout.
CLASSIFICATION_RULES: List[ClassificationRule] = [
    # Conflict
    _rule(
        r"security|vulnerabilit|\bCVE\b|exploit",
        ErrorKind.CONFLICT,
        ErrorCategory.SECURITY_VULNERABILITY,
        Severity.CRITICAL,
        RecoveryAction.PAUSE_WORKFLOW,
    ),
    _rule(
        r"business rule|policy|compliance",
        ErrorKind.CONFLICT,
        ErrorCategory.BUSINESS_RULE_VIOLATION,
        Severity.HIGH,
        RecoveryAction.PAUSE_WORKFLOW,
    ),
    _rule(
        r"integrity|constraint violation|conflict",
        ErrorKind.CONFLICT,
        ErrorCategory.DATA_INTEGRITY_ISSUE,
        Severity.HIGH,
        RecoveryAction.PAUSE_WORKFLOW,
    ),
    # Rollback
    _rule(
        r"corrupt|inconsistent state|state mismatch|checksum",
        ErrorKind.ROLLBACK,
        ErrorCategory.STATE_CORRUPTION,
        Severity.HIGH,
        RecoveryAction.ROLLBACK,
    ),
    # Fatal
    _rule(
        r"out of memory|ENOMEM|heap|memory limit",
        ErrorKind.FATAL,
        ErrorCategory.OUT_OF_MEMORY,
        Severity.CRITICAL,
        RecoveryAction.CIRCUIT_BREAK,
    ),
    _rule(
        r"permission denied|EACCES|unauthorized|forbidden|\b40[13]\b",
        ErrorKind.FATAL,
        ErrorCategory.PERMISSION_DENIED,
        Severity.CRITICAL,
        RecoveryAction.FAIL_IMMEDIATELY,
    ),
    _rule(
        r"invalid config|configuration error|EINVAL",
        ErrorKind.FATAL,
        ErrorCategory.INVALID_CONFIGURATION,
        Severity.CRITICAL,
        RecoveryAction.FAIL_IMMEDIATELY,
    ),
    _rule(
        r"not found|ENOENT|\b404\b",
        ErrorKind.FATAL,
        ErrorCategory.RESOURCE_NOT_FOUND,
        Severity.HIGH,
        RecoveryAction.FAIL_IMMEDIATELY,
    ),
    _rule(
        r"syntax error|parse error|malformed",
        ErrorKind.FATAL,
        ErrorCategory.SYNTAX_ERROR,
        Severity.HIGH,
        RecoveryAction.FAIL_IMMEDIATELY,
    ),
    # Transient
    _rule(
        r"timeout|timed out|ETIMEDOUT|ECONNRESET",
        ErrorKind.TRANSIENT,
        ErrorCategory.NETWORK_TIMEOUT,
        Severity.LOW,
        RecoveryAction.RETRY_WITH_BACKOFF,
    ),
    _rule(
        r"rate limit|too many requests|\b429\b",
        ErrorKind.TRANSIENT,
        ErrorCategory.RATE_LIMIT,
        Severity.LOW,
        RecoveryAction.RETRY_WITH_BACKOFF,
    ),
    _rule(
        r"connection reset|connection refused|ECONNREFUSED|ENOTFOUND",
        ErrorKind.TRANSIENT,
        ErrorCategory.CONNECTION_RESET,
        Severity.MEDIUM,
        RecoveryAction.RETRY_WITH_BACKOFF,
    ),
    _rule(
        r"service unavailable|bad gateway|\b50[234]\b",
        ErrorKind.TRANSIENT,
        ErrorCategory.SERVICE_UNAVAILABLE,
        Severity.MEDIUM,
        RecoveryAction.RETRY_WITH_BACKOFF,
    ),
    # Retriable
    _rule(
        r"locked|EBUSY|resource busy",
        ErrorKind.RETRIABLE,
        ErrorCategory.RESOURCE_LOCKED,
        Severity.MEDIUM,
        RecoveryAction.RETRY_WITH_BACKOFF,
    ),
    _rule(
        r"dependency|prerequisite",
        ErrorKind.RETRIABLE,
        ErrorCategory.DEPENDENCY_MISSING,
        Severity.MEDIUM,
        RecoveryAction.RETRY,
    ),
    _rule(
        r"validation failed|invalid input",
        ErrorKind.RETRIABLE,
        ErrorCategory.VALIDATION_ERROR,
        Severity.MEDIUM,
        RecoveryAction.RETRY,
    ),
    _rule(
        r"temporary failure|try again",
        ErrorKind.RETRIABLE,
        ErrorCategory.TEMPORARY_FAILURE,
        Severity.LOW,
        RecoveryAction.RETRY,
    ),
]

_DEFAULT_ACTIONS = {
    ErrorKind.TRANSIENT: RecoveryAction.RETRY_WITH_BACKOFF,
    ErrorKind.RETRIABLE: RecoveryAction.RETRY,
    ErrorKind.CONFLICT: RecoveryAction.PAUSE_WORKFLOW,
    ErrorKind.ROLLBACK: RecoveryAction.ROLLBACK,
    ErrorKind.FATAL: RecoveryAction.FAIL_IMMEDIATELY,
}

_DEFAULT_SEVERITIES = {
    ErrorKind.TRANSIENT: Severity.LOW,
    ErrorKind.RETRIABLE: Severity.MEDIUM,
    ErrorKind.CONFLICT: Severity.HIGH,
    ErrorKind.ROLLBACK: Severity.HIGH,
    ErrorKind.FATAL: Severity.CRITICAL,
}

RETRYABLE_KINDS = frozenset({ErrorKind.TRANSIENT, ErrorKind.RETRIABLE})


def classify_error(
    error: BaseException, context: Optional[Dict[str, Any]] = None
) -> ErrorClassification:
    """
    Classify an error.

    Args:
        error: The exception to classify
        context: Extra context copied into the classification

    Returns:
        Classification with kind, category, severity and recovery action
    """
    message = str(error) or error.__class__.__name__
    context = dict(context or {})

    if isinstance(error, CircuitOpenError):
        return ErrorClassification(
            kind=ErrorKind.FATAL,
            category=ErrorCategory.CIRCUIT_OPEN,
            severity=Severity.CRITICAL,
            action=RecoveryAction.CIRCUIT_BREAK,
            message=message,
            retryable=False,
            requires_human_intervention=True,
            context=context,
        )

    if isinstance(error, AgentError) and error.kind is not None:
        return _from_agent_error(error, message, context)

    for rule in CLASSIFICATION_RULES:
        if rule.pattern.search(message):
            return ErrorClassification(
                kind=rule.kind,
                category=rule.category,
                severity=rule.severity,
                action=rule.action,
                message=message,
                retryable=rule.kind in RETRYABLE_KINDS,
                requires_human_intervention=rule.kind == ErrorKind.CONFLICT,
                context=context,
            )

    if isinstance(error, TimeoutError):
        return ErrorClassification(
            kind=ErrorKind.TRANSIENT,
            category=ErrorCategory.NETWORK_TIMEOUT,
            severity=Severity.LOW,
            action=RecoveryAction.RETRY_WITH_BACKOFF,
            message=message,
            retryable=True,
            context=context,
        )

    # Unknown errors are retried with backoff
    return ErrorClassification(
        kind=ErrorKind.RETRIABLE,
        category=ErrorCategory.UNKNOWN,
        severity=Severity.MEDIUM,
        action=RecoveryAction.RETRY_WITH_BACKOFF,
        message=message,
        retryable=True,
        context=context,
    )


def _from_agent_error(
    error: AgentError, message: str, context: Dict[str, Any]
) -> ErrorClassification:
    kind = error.kind
    assert kind is not None
    try:
        category = ErrorCategory(error.category) if error.category else ErrorCategory.UNKNOWN
    except ValueError:
        category = ErrorCategory.UNKNOWN
    retryable = error.retryable if error.retryable is not None else kind in RETRYABLE_KINDS
    context.update(error.metadata)
    return ErrorClassification(
        kind=kind,
        category=category,
        severity=_DEFAULT_SEVERITIES[kind],
        action=_DEFAULT_ACTIONS[kind],
        message=message,
        retryable=retryable,
        requires_human_intervention=kind == ErrorKind.CONFLICT,
        context=context,
    )
