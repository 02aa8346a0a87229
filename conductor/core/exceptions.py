"""Conductor exception classes."""

from typing import Any, Dict, Optional

from .models import ErrorKind


class ConductorError(Exception):
    """Base exception for all Conductor errors."""

    pass


class ConfigurationError(ConductorError):
    """Raised when configuration is invalid."""

    pass


class ExecutionError(ConductorError):
    """Raised when task execution fails."""

    pass


class StateStoreError(ConductorError):
    """Raised when the persistence store cannot read or write state."""

    pass


class StateTransitionError(ExecutionError):
    """Raised when a task or milestone status transition is not allowed."""

    pass


class MilestoneNotFoundError(ConductorError, KeyError):
    """Raised when a milestone id is unknown."""

    def __str__(self) -> str:
        return Exception.__str__(self)


class CheckpointError(ExecutionError):
    """Raised when a checkpoint cannot be created or restored."""

    pass


class AgentError(ExecutionError):
    """Raised by agents for failures they can classify themselves.

    An agent that knows what went wrong (a locked resource, a corrupt
    workspace, a policy violation) raises this instead of a bare exception so
    the recovery layer does not have to guess from the message text.
    """

    def __init__(
        self,
        message: str,
        kind: Optional[ErrorKind] = None,
        category: Optional[str] = None,
        retryable: Optional[bool] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.category = category
        self.retryable = retryable
        self.metadata = metadata or {}


class AgentBusyError(ExecutionError):
    """Raised when an agent is asked to run a second task concurrently."""

    pass


class CircuitOpenError(ExecutionError):
    """Raised when a call is rejected because its circuit breaker is open."""

    def __init__(self, key: str, retry_after: Optional[float] = None):
        message = f"Circuit breaker open for '{key}'"
        if retry_after is not None:
            message += f" (retry in {retry_after:.1f}s)"
        super().__init__(message)
        self.key = key
        self.retry_after = retry_after


class CommandExecutionError(ExecutionError):
    """Raised when an external command cannot be run."""

    pass


class CommandTimeoutError(CommandExecutionError):
    """Raised when an external command exceeds its timeout."""

    pass
