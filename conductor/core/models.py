"""Core data model for the orchestrator.

Everything the orchestrator persists or hands across a component boundary is
defined here as a pydantic model. Immutable definitions (phases and their
milestones) are frozen; state records are mutable and owned by the store.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class AgentRole(str, Enum):
    """Closed set of executor roles."""

    API = "agent-api"
    MODELS = "agent-models"
    TEST = "agent-test"
    REALTIME = "agent-realtime"
    QUALITY = "agent-quality"
    INTEGRATION = "agent-integration"
    SECURITY = "agent-security"

    @property
    def short_name(self) -> str:
        """Role name without the ``agent-`` prefix."""
        return self.value.split("-", 1)[1]

    @classmethod
    def parse(cls, value: str) -> "AgentRole":
        """Parse a role from either ``api`` or ``agent-api`` form."""
        normalized = value.strip().lower()
        if not normalized.startswith("agent-"):
            normalized = f"agent-{normalized}"
        try:
            return cls(normalized)
        except ValueError:
            valid = ", ".join(role.short_name for role in cls)
            raise ValueError(f"Unknown agent role '{value}' (valid: {valid})")


class TaskStatus(str, Enum):
    """Agent task lifecycle states."""

    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class MilestoneStatus(str, Enum):
    """Milestone lifecycle states."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class PhaseStatus(str, Enum):
    """Per-phase status tracked alongside the current phase."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class Severity(str, Enum):
    """Error and conflict severity, ordered from least to most severe."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)


_SEVERITY_ORDER = [Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL]


def highest_severity(
    severities: Iterable[Severity], default: Severity = Severity.HIGH
) -> Severity:
    """Return the most severe value in ``severities`` (``default`` if empty)."""
    ranked = sorted(severities, key=lambda s: s.rank)
    return ranked[-1] if ranked else default


class LessonCategory(str, Enum):
    """Categories of recorded lessons."""

    SUCCESS = "success"
    FAILURE = "failure"
    OPTIMIZATION = "optimization"
    PATTERN = "pattern"


class ErrorKind(str, Enum):
    """Error taxonomy used by retry and recovery."""

    TRANSIENT = "transient"  # Safe to retry immediately
    RETRIABLE = "retriable"  # Safe to retry with backoff
    CONFLICT = "conflict"  # Needs human adjudication
    ROLLBACK = "rollback"  # State suspected inconsistent
    FATAL = "fatal"  # No retry, no rollback


# ============================================================================
# Phase definitions (immutable)
# ============================================================================


class MilestoneDefinition(BaseModel):
    """Static description of a milestone within a phase."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Unique milestone identifier")
    name: str = Field(..., description="Human-readable name")
    description: str = Field(..., description="What the milestone delivers")
    required_roles: Tuple[AgentRole, ...] = Field(
        default=(), description="Roles that must complete a task for this milestone"
    )
    validation_check: Optional[str] = Field(
        None, description="Name of a registered custom validation check"
    )


class PhaseDefinition(BaseModel):
    """Static description of a phase."""

    model_config = ConfigDict(frozen=True)

    number: int = Field(..., ge=0, description="Phase number")
    name: str = Field(..., description="Phase name")
    description: str = Field(..., description="Phase goal")
    milestones: Tuple[MilestoneDefinition, ...] = Field(default=())
    test_command: str = Field(..., description="Exit-test command for the phase")
    exit_criteria: Tuple[str, ...] = Field(
        default=(), description="Human-readable exit criteria"
    )
    dependencies: Tuple[int, ...] = Field(
        default=(), description="Phases that must be completed first"
    )

    @property
    def required_roles(self) -> List[AgentRole]:
        """Union of milestone roles, in first-seen order."""
        roles: List[AgentRole] = []
        for milestone in self.milestones:
            for role in milestone.required_roles:
                if role not in roles:
                    roles.append(role)
        return roles

    def get_milestone(self, milestone_id: str) -> Optional[MilestoneDefinition]:
        for milestone in self.milestones:
            if milestone.id == milestone_id:
                return milestone
        return None


# ============================================================================
# Mutable state records
# ============================================================================


class Milestone(BaseModel):
    """Runtime state of a milestone."""

    id: str
    phase: int
    name: str
    description: str
    required_roles: List[AgentRole] = Field(default_factory=list)
    validation_check: Optional[str] = None
    status: MilestoneStatus = MilestoneStatus.PENDING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None

    @classmethod
    def from_definition(
        cls, definition: MilestoneDefinition, phase: int
    ) -> "Milestone":
        return cls(
            id=definition.id,
            phase=phase,
            name=definition.name,
            description=definition.description,
            required_roles=list(definition.required_roles),
            validation_check=definition.validation_check,
        )


class ConflictFinding(BaseModel):
    """A single finding attached to a conflict marker."""

    id: str
    severity: Severity
    title: str
    description: str = ""
    recommendation: str = ""
    category: str = "general"
    affected_module: Optional[str] = None
    requires_human_input: bool = False


class ConflictMarker(BaseModel):
    """Marks a business failure that needs human adjudication."""

    conflict_type: str = Field(..., description="Kind of conflict detected")
    severity: Severity = Severity.HIGH
    findings: List[ConflictFinding] = Field(default_factory=list)
    requires_resolution: bool = True

    @property
    def highest_severity(self) -> Severity:
        return highest_severity([self.severity] + [f.severity for f in self.findings])


class AgentTaskResult(BaseModel):
    """Outcome reported by an agent for a single task."""

    success: bool
    output: str = ""
    error: Optional[str] = None
    files_created: List[str] = Field(default_factory=list)
    files_modified: List[str] = Field(default_factory=list)
    tests_run: int = 0
    tests_passed: int = 0
    tests_failed: int = 0
    duration_seconds: float = 0.0
    metadata: Dict[str, Any] = Field(default_factory=dict)
    conflict: Optional[ConflictMarker] = None


class AgentTask(BaseModel):
    """A unit of work bound to one phase, one milestone and one role."""

    id: str
    phase: int
    milestone: str
    role: AgentRole
    description: str
    priority: int = 0
    status: TaskStatus = TaskStatus.WAITING
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    result: Optional[AgentTaskResult] = None
    error: Optional[str] = None
    superseded: bool = False  # Replaced when its phase was initialized again


class AgentMetrics(BaseModel):
    """Running statistics for one agent role."""

    role: AgentRole
    tasks_completed: int = 0
    tasks_failed: int = 0
    average_completion_time: float = 0.0
    success_rate: float = 0.0
    last_active_at: Optional[datetime] = None

    def record_completion(self, duration_seconds: float, at: datetime) -> None:
        total = self.average_completion_time * self.tasks_completed
        self.tasks_completed += 1
        self.average_completion_time = (total + duration_seconds) / self.tasks_completed
        self._refresh(at)

    def record_failure(self, at: datetime) -> None:
        self.tasks_failed += 1
        self._refresh(at)

    def _refresh(self, at: datetime) -> None:
        finished = self.tasks_completed + self.tasks_failed
        self.success_rate = self.tasks_completed / finished if finished else 0.0
        self.last_active_at = at


class ErrorLogEntry(BaseModel):
    """A persisted error record."""

    timestamp: datetime = Field(default_factory=utcnow)
    phase: int
    role: Optional[AgentRole] = None
    milestone: Optional[str] = None
    task_id: Optional[str] = None
    message: str
    stack: Optional[str] = None
    severity: Severity = Severity.MEDIUM


class Lesson(BaseModel):
    """A narrative record of something learned during a run."""

    id: str = Field(default_factory=lambda: uuid4().hex[:12])
    timestamp: datetime = Field(default_factory=utcnow)
    phase: int
    role: Optional[AgentRole] = None
    category: LessonCategory
    description: str
    impact: str = ""
    action_taken: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ProgressSnapshot(BaseModel):
    """Point-in-time progress record taken after each tick."""

    timestamp: datetime = Field(default_factory=utcnow)
    phase: int
    phase_progress: float = Field(..., ge=0.0, le=1.0)
    overall_progress: float = Field(..., ge=0.0, le=1.0)
    active_tasks: int = 0
    completed_tasks: int = 0
    failed_tasks: int = 0
    estimated_completion: Optional[datetime] = None


class OrchestratorState(BaseModel):
    """The aggregate state document."""

    current_phase: int = 0
    completed_phases: List[int] = Field(default_factory=list)
    phase_statuses: Dict[int, PhaseStatus] = Field(default_factory=dict)
    active_roles: List[AgentRole] = Field(default_factory=list)
    milestones: Dict[str, Milestone] = Field(default_factory=dict)
    tasks: List[AgentTask] = Field(default_factory=list)
    metrics: Dict[AgentRole, AgentMetrics] = Field(default_factory=dict)
    errors: List[ErrorLogEntry] = Field(default_factory=list)
    progress: List[ProgressSnapshot] = Field(default_factory=list)
    auto_advance: bool = True
    started_at: datetime = Field(default_factory=utcnow)
    last_updated: datetime = Field(default_factory=utcnow)

    @classmethod
    def initial(cls, phase_numbers: Iterable[int], auto_advance: bool = True):
        """Fresh state: phase 0, nothing started, metrics for every role."""
        return cls(
            phase_statuses={n: PhaseStatus.NOT_STARTED for n in phase_numbers},
            metrics={role: AgentMetrics(role=role) for role in AgentRole},
            auto_advance=auto_advance,
        )

    def get_task(self, task_id: str) -> Optional[AgentTask]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def tasks_for_phase(
        self,
        phase: int,
        status: Optional[TaskStatus] = None,
        include_superseded: bool = False,
    ) -> List[AgentTask]:
        return [
            t
            for t in self.tasks
            if t.phase == phase
            and (status is None or t.status == status)
            and (include_superseded or not t.superseded)
        ]

    def tasks_for_milestone(
        self, milestone_id: str, include_superseded: bool = False
    ) -> List[AgentTask]:
        return [
            t
            for t in self.tasks
            if t.milestone == milestone_id and (include_superseded or not t.superseded)
        ]

    def milestones_for_phase(self, phase: int) -> List[Milestone]:
        return [m for m in self.milestones.values() if m.phase == phase]


# ============================================================================
# Control surface envelopes
# ============================================================================


class CommandResult(BaseModel):
    """Uniform result envelope returned by every control operation."""

    success: bool
    message: str
    data: Optional[Any] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, message: str, data: Any = None) -> "CommandResult":
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(cls, message: str, error: Optional[str] = None) -> "CommandResult":
        return cls(success=False, message=message, error=error or message)


class SystemHealth(BaseModel):
    """Coarse health summary for the dashboard."""

    status: str = Field(..., description="healthy, degraded or critical")
    running: bool = False
    paused: bool = False
    uptime_seconds: float = 0.0
    open_circuit_breakers: List[str] = Field(default_factory=list)
    recent_error_count: int = 0


class DashboardData(BaseModel):
    """Everything a dashboard view needs in one document."""

    current_phase: int
    phase_name: str
    phase_progress: float
    overall_progress: float
    latest_progress: Optional[ProgressSnapshot] = None
    metrics: Dict[AgentRole, AgentMetrics] = Field(default_factory=dict)
    recent_milestones: List[Milestone] = Field(default_factory=list)
    recent_errors: List[ErrorLogEntry] = Field(default_factory=list)
    recent_lessons: List[Lesson] = Field(default_factory=list)
    system_health: SystemHealth
