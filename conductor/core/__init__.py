"""Core Conductor functionality."""

from .checkpoint import Checkpoint, CheckpointStats, CheckpointTrigger, RecoveryResult
from .command import CommandRunner, ShellResult
from .error_classifier import (
    ErrorCategory,
    ErrorClassification,
    RecoveryAction,
    classify_error,
)
from .exceptions import (
    AgentBusyError,
    AgentError,
    CheckpointError,
    CircuitOpenError,
    CommandExecutionError,
    CommandTimeoutError,
    ConductorError,
    ConfigurationError,
    ExecutionError,
    MilestoneNotFoundError,
    StateStoreError,
    StateTransitionError,
)
from .milestone_validator import (
    CallableProbe,
    CommandProbe,
    HttpProbe,
    MilestoneValidator,
    TestSuiteProbe,
    build_default_probes,
)
from .models import (
    AgentMetrics,
    AgentRole,
    AgentTask,
    AgentTaskResult,
    CommandResult,
    ConflictFinding,
    ConflictMarker,
    DashboardData,
    ErrorKind,
    ErrorLogEntry,
    Lesson,
    LessonCategory,
    Milestone,
    MilestoneDefinition,
    MilestoneStatus,
    OrchestratorState,
    PhaseDefinition,
    PhaseStatus,
    ProgressSnapshot,
    Severity,
    SystemHealth,
    TaskStatus,
)
from .phase_registry import DEFAULT_PHASES, PhaseRegistry
from .recovery import RecoveryManager
from .state_codec import SCHEMA_VERSION, decode_state, encode_state
from .state_store import StateStore
from .task_state import get_valid_next_states, is_terminal_state, is_valid_transition

__all__ = [
    # Exceptions
    "ConductorError",
    "ConfigurationError",
    "ExecutionError",
    "StateStoreError",
    "StateTransitionError",
    "MilestoneNotFoundError",
    "CheckpointError",
    "AgentError",
    "AgentBusyError",
    "CircuitOpenError",
    "CommandExecutionError",
    "CommandTimeoutError",
    # Data model
    "AgentRole",
    "TaskStatus",
    "MilestoneStatus",
    "PhaseStatus",
    "Severity",
    "LessonCategory",
    "ErrorKind",
    "MilestoneDefinition",
    "PhaseDefinition",
    "Milestone",
    "AgentTask",
    "AgentTaskResult",
    "ConflictFinding",
    "ConflictMarker",
    "AgentMetrics",
    "ErrorLogEntry",
    "Lesson",
    "ProgressSnapshot",
    "OrchestratorState",
    "CommandResult",
    "SystemHealth",
    "DashboardData",
    # Phases
    "PhaseRegistry",
    "DEFAULT_PHASES",
    # State management
    "StateStore",
    "SCHEMA_VERSION",
    "encode_state",
    "decode_state",
    "is_valid_transition",
    "get_valid_next_states",
    "is_terminal_state",
    # Validation
    "MilestoneValidator",
    "CommandProbe",
    "HttpProbe",
    "TestSuiteProbe",
    "CallableProbe",
    "build_default_probes",
    # Errors and recovery
    "ErrorCategory",
    "ErrorClassification",
    "RecoveryAction",
    "classify_error",
    "Checkpoint",
    "CheckpointStats",
    "CheckpointTrigger",
    "RecoveryResult",
    "RecoveryManager",
    # Commands
    "CommandRunner",
    "ShellResult",
]
