"""Typed notification events and a publish/subscribe bus.

Subscribers register for an event class and receive every published event
that is an instance of it, so subscribing to :class:`OrchestratorEvent`
receives everything. Publishing is fire-and-forget: a failing subscriber is
logged and never affects the publisher or other subscribers.
"""

import logging
import threading
from datetime import datetime
from typing import Callable, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from conductor.core.models import (
    AgentRole,
    ConflictFinding,
    ProgressSnapshot,
    Severity,
    utcnow,
)

logger = logging.getLogger(__name__)


class OrchestratorEvent(BaseModel):
    """Base class for all notifications."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=utcnow)

    @property
    def event_name(self) -> str:
        return type(self).__name__

    def summary(self) -> str:
        """One-line description used by the activity log."""
        return self.event_name


class EngineStarted(OrchestratorEvent):
    phase: int

    def summary(self) -> str:
        return f"Engine started at phase {self.phase}"


class EngineStopped(OrchestratorEvent):
    phase: int

    def summary(self) -> str:
        return f"Engine stopped at phase {self.phase}"


class TaskStarted(OrchestratorEvent):
    task_id: str
    role: AgentRole
    phase: int
    milestone: str

    def summary(self) -> str:
        return f"Task {self.task_id} started on {self.role.short_name}"


class TaskCompleted(OrchestratorEvent):
    task_id: str
    role: AgentRole
    phase: int
    milestone: str
    duration_seconds: float = 0.0

    def summary(self) -> str:
        return f"Task {self.task_id} completed in {self.duration_seconds:.1f}s"


class TaskFailed(OrchestratorEvent):
    task_id: str
    role: AgentRole
    phase: int
    milestone: str
    error: str
    severity: Severity = Severity.MEDIUM

    def summary(self) -> str:
        return f"Task {self.task_id} failed: {self.error}"


class ConflictDetected(OrchestratorEvent):
    task_id: str
    role: AgentRole
    phase: int
    conflict_type: str
    severity: Severity
    findings: List[ConflictFinding] = Field(default_factory=list)

    def summary(self) -> str:
        return (
            f"{self.severity.value.upper()} {self.conflict_type} conflict in task "
            f"{self.task_id} ({len(self.findings)} findings)"
        )


class WorkflowPaused(OrchestratorEvent):
    reason: str
    task_id: Optional[str] = None

    def summary(self) -> str:
        return f"Workflow paused: {self.reason}"


class WorkflowResumed(OrchestratorEvent):
    def summary(self) -> str:
        return "Workflow resumed"


class CircuitBreakTriggered(OrchestratorEvent):
    key: str
    message: str
    role: Optional[AgentRole] = None
    task_id: Optional[str] = None

    def summary(self) -> str:
        return f"Circuit breaker open for {self.key}: {self.message}"


class MilestoneCompleted(OrchestratorEvent):
    milestone_id: str
    phase: int

    def summary(self) -> str:
        return f"Milestone {self.milestone_id} completed"


class PhaseAdvanced(OrchestratorEvent):
    from_phase: int
    to_phase: int

    def summary(self) -> str:
        return f"Advanced from phase {self.from_phase} to phase {self.to_phase}"


class PhaseRolledBack(OrchestratorEvent):
    from_phase: int
    to_phase: int
    checkpoint_id: Optional[str] = None

    def summary(self) -> str:
        return f"Rolled back from phase {self.from_phase} to phase {self.to_phase}"


class DashboardUpdate(OrchestratorEvent):
    snapshot: ProgressSnapshot

    def summary(self) -> str:
        return (
            f"Phase {self.snapshot.phase}: {self.snapshot.phase_progress:.0%} "
            f"(overall {self.snapshot.overall_progress:.0%})"
        )


class OrchestratorError(OrchestratorEvent):
    message: str
    severity: Severity = Severity.HIGH

    def summary(self) -> str:
        return f"Orchestrator error: {self.message}"


E = TypeVar("E", bound=OrchestratorEvent)
Handler = Callable[[E], None]


class EventBus:
    """Synchronous typed publish/subscribe bus."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: Dict[Type[OrchestratorEvent], List[Callable]] = {}

    def subscribe(self, event_type: Type[E], handler: Callable[[E], None]) -> Callable[[], None]:
        """
        Register a handler for an event class and its subclasses.

        Returns:
            A function that removes the subscription
        """
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)

        def unsubscribe() -> None:
            with self._lock:
                handlers = self._handlers.get(event_type, [])
                if handler in handlers:
                    handlers.remove(handler)

        return unsubscribe

    def subscribe_all(self, handler: Callable[[OrchestratorEvent], None]) -> Callable[[], None]:
        return self.subscribe(OrchestratorEvent, handler)

    def publish(self, event: OrchestratorEvent) -> None:
        """Deliver an event to every matching subscriber."""
        with self._lock:
            targets = [
                handler
                for event_type, handlers in self._handlers.items()
                if isinstance(event, event_type)
                for handler in handlers
            ]

        for handler in targets:
            try:
                handler(event)
            except Exception as e:
                logger.error(
                    "Subscriber %r failed handling %s: %s",
                    handler,
                    event.event_name,
                    e,
                )

    def subscriber_count(self, event_type: Optional[Type[OrchestratorEvent]] = None) -> int:
        with self._lock:
            if event_type is None:
                return sum(len(h) for h in self._handlers.values())
            return len(self._handlers.get(event_type, []))
