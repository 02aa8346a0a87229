"""Orchestration: the control loop, phase management, retries and notifications."""

from .control import ControlSurface
from .dashboard import DashboardGenerator, collect_dashboard_data
from .engine import OrchestratorEngine
from .events import (
    CircuitBreakTriggered,
    ConflictDetected,
    DashboardUpdate,
    EngineStarted,
    EngineStopped,
    EventBus,
    MilestoneCompleted,
    OrchestratorError,
    OrchestratorEvent,
    PhaseAdvanced,
    PhaseRolledBack,
    TaskCompleted,
    TaskFailed,
    TaskStarted,
    WorkflowPaused,
    WorkflowResumed,
)
from .exit_tests import ExitTestResult, ExitTestRunner, ShellExitTestRunner
from .phase_manager import PhaseManager
from .retry_policy import (
    BackoffStrategy,
    CircuitBreakerState,
    CircuitState,
    RetryPolicy,
    RetryPolicyEngine,
    RetryStatistics,
)

__all__ = [
    "OrchestratorEngine",
    "ControlSurface",
    "PhaseManager",
    "DashboardGenerator",
    "collect_dashboard_data",
    "ExitTestResult",
    "ExitTestRunner",
    "ShellExitTestRunner",
    "RetryPolicy",
    "RetryPolicyEngine",
    "RetryStatistics",
    "BackoffStrategy",
    "CircuitState",
    "CircuitBreakerState",
    "EventBus",
    "OrchestratorEvent",
    "EngineStarted",
    "EngineStopped",
    "TaskStarted",
    "TaskCompleted",
    "TaskFailed",
    "ConflictDetected",
    "WorkflowPaused",
    "WorkflowResumed",
    "CircuitBreakTriggered",
    "MilestoneCompleted",
    "PhaseAdvanced",
    "PhaseRolledBack",
    "DashboardUpdate",
    "OrchestratorError",
]
