"""Control surface.

The operations a human (or the CLI) uses to drive the orchestrator. Every
operation returns a :class:`CommandResult`; failures are reported in the
result and never raised.
"""

import functools
import logging
from dataclasses import asdict
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union

from conductor.agents.base import Agent
from conductor.core.models import (
    AgentRole,
    CommandResult,
    MilestoneStatus,
    TaskStatus,
    utcnow,
)
from conductor.core.recovery import RecoveryManager

from .engine import OrchestratorEngine
from .phase_manager import PhaseManager
from .retry_policy import RetryPolicyEngine

logger = logging.getLogger(__name__)

RECENT_REPORT_ERRORS = 10


def _reported(action: str) -> Callable[[Callable[..., CommandResult]], Callable[..., CommandResult]]:
    """Turn any exception raised by an operation into a failed result."""

    def decorator(fn: Callable[..., CommandResult]) -> Callable[..., CommandResult]:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> CommandResult:
            try:
                return fn(*args, **kwargs)
            except Exception as e:
                logger.exception("Failed to %s", action)
                return CommandResult.fail(f"Failed to {action}", error=str(e))

        return wrapper

    return decorator


def _json(value: Any) -> Any:
    """Plain JSON-compatible rendering of models, enums and datetimes."""
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    if isinstance(value, dict):
        return {str(_json(k)): _json(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class ControlSurface:
    """Human-facing operations over a composed orchestrator."""

    def __init__(
        self,
        engine: OrchestratorEngine,
        phases: PhaseManager,
        retry: RetryPolicyEngine,
        recovery: RecoveryManager,
    ):
        self.engine = engine
        self.phases = phases
        self.retry = retry
        self.recovery = recovery
        self.store = engine.store

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @_reported("start orchestrator")
    def start(self) -> CommandResult:
        if self.engine.running:
            return CommandResult.fail("Orchestrator is already running")
        self.engine.start()
        phase = self.store.snapshot().current_phase
        return CommandResult.ok(f"Orchestrator started at Phase {phase}", {"current_phase": phase})

    @_reported("stop orchestrator")
    def stop(self) -> CommandResult:
        if not self.engine.running:
            return CommandResult.fail("Orchestrator is not running")
        self.engine.stop()
        return CommandResult.ok("Orchestrator stopped")

    @_reported("resume workflow")
    def resume(self) -> CommandResult:
        if not self.engine.resume():
            return CommandResult.fail("Workflow is not paused")
        return CommandResult.ok("Workflow resumed")

    # ------------------------------------------------------------------
    # Status and reporting
    # ------------------------------------------------------------------

    @_reported("get status")
    def status(self) -> CommandResult:
        state = self.store.snapshot()
        phase = self.phases.get_phase(state.current_phase)
        tasks = [t for t in state.tasks if not t.superseded]
        data = {
            "running": self.engine.running,
            "paused": self.engine.paused,
            "current_phase": {
                "number": phase.number,
                "name": phase.name,
                "progress": self.phases.get_phase_progress(phase.number, state),
            },
            "overall_progress": self.phases.get_overall_progress(state),
            "completed_phases": list(state.completed_phases),
            "active_roles": [r.value for r in state.active_roles],
            "active_tasks": sum(1 for t in tasks if t.status == TaskStatus.ACTIVE),
            "completed_tasks": sum(1 for t in tasks if t.status == TaskStatus.COMPLETED),
            "failed_tasks": sum(1 for t in tasks if t.status == TaskStatus.FAILED),
            "waiting_tasks": sum(1 for t in tasks if t.status == TaskStatus.WAITING),
        }
        return CommandResult.ok("Orchestrator status retrieved", data)

    @_reported("generate report")
    def generate_report(self) -> CommandResult:
        state = self.store.snapshot()
        phase = self.phases.get_phase(state.current_phase)
        milestones = list(state.milestones.values())
        tasks = [t for t in state.tasks if not t.superseded]
        estimated = self.phases.get_estimated_completion(state)

        def count_milestones(status: MilestoneStatus) -> int:
            return sum(1 for m in milestones if m.status == status)

        def count_tasks(status: TaskStatus) -> int:
            return sum(1 for t in tasks if t.status == status)

        report = {
            "generated_at": utcnow().isoformat(),
            "orchestrator": {
                "running": self.engine.running,
                "paused": self.engine.paused,
                "started_at": state.started_at.isoformat(),
                "last_updated": state.last_updated.isoformat(),
            },
            "current_phase": {
                "number": phase.number,
                "name": phase.name,
                "description": phase.description,
                "progress": self.phases.get_phase_progress(phase.number, state),
            },
            "overall_progress": self.phases.get_overall_progress(state),
            "completed_phases": list(state.completed_phases),
            "milestones": {
                "total": len(milestones),
                "completed": count_milestones(MilestoneStatus.COMPLETED),
                "in_progress": count_milestones(MilestoneStatus.IN_PROGRESS),
                "pending": count_milestones(MilestoneStatus.PENDING),
            },
            "tasks": {
                "total": len(tasks),
                "completed": count_tasks(TaskStatus.COMPLETED),
                "active": count_tasks(TaskStatus.ACTIVE),
                "waiting": count_tasks(TaskStatus.WAITING),
                "failed": count_tasks(TaskStatus.FAILED),
                "superseded": len(state.tasks) - len(tasks),
            },
            "agents": [
                {
                    "role": agent.role.value,
                    "name": agent.name,
                    "active": agent.is_active(),
                    "metrics": _json(state.metrics.get(agent.role)),
                }
                for agent in self.engine.agents
            ],
            "recent_errors": [_json(e) for e in state.errors[-RECENT_REPORT_ERRORS:]],
            "estimated_completion": estimated.isoformat() if estimated else None,
            "retry_statistics": _json(asdict(self.retry.get_statistics())),
            "checkpoint_statistics": _json(self.recovery.get_statistics()),
        }
        return CommandResult.ok("Report generated", report)

    @_reported("get dashboard data")
    def get_dashboard_data(self) -> CommandResult:
        return CommandResult.ok("Dashboard data retrieved", self.engine.get_dashboard_data())

    # ------------------------------------------------------------------
    # Phase control
    # ------------------------------------------------------------------

    @_reported("advance phase")
    def advance(self) -> CommandResult:
        if not self.phases.advance_phase():
            return CommandResult.fail(
                "Cannot advance: current phase not complete, prerequisites missing "
                "or already at final phase"
            )
        phase = self.store.snapshot().current_phase
        return CommandResult.ok(f"Advanced to Phase {phase}", {"current_phase": phase})

    @_reported("rollback phase")
    def rollback(self) -> CommandResult:
        if not self.phases.rollback_phase():
            return CommandResult.fail("Cannot rollback: already at Phase 0")
        phase = self.store.snapshot().current_phase
        return CommandResult.ok(f"Rolled back to Phase {phase}", {"current_phase": phase})

    @_reported("run tests")
    def run_tests(self) -> CommandResult:
        result = self.phases.run_exit_test()
        data = _json(asdict(result))
        if not result.passed:
            return CommandResult(
                success=False,
                message=f"Tests failed for Phase {result.phase}",
                data=data,
                error=result.error or "exit test failed",
            )
        return CommandResult.ok(f"Tests passed for Phase {result.phase}", data)

    @_reported("deploy agent")
    def deploy(self, role: Union[AgentRole, str]) -> CommandResult:
        """Run the next waiting task of one role in the current phase now.

        Upstream dependencies are not checked; this is a manual override.
        Runs under the engine's tick lock, so a background tick cannot
        dispatch to the same agent meanwhile.
        """
        role = role if isinstance(role, AgentRole) else AgentRole.parse(role)
        agent = self.engine.agents.get(role)
        if agent is None:
            return CommandResult.fail(f"Agent {role.value} not found")
        return self.engine.run_exclusive(lambda: self._deploy(role, agent))

    def _deploy(self, role: AgentRole, agent: Agent) -> CommandResult:
        if agent.is_active():
            return CommandResult.fail(f"Agent {role.value} is busy")

        state = self.store.snapshot()
        waiting = [
            t
            for t in state.tasks_for_phase(state.current_phase, status=TaskStatus.WAITING)
            if t.role == role
        ]
        if not waiting:
            return CommandResult.fail(f"No pending tasks for {role.value} in current phase")

        task = self.engine.dispatch(waiting[0], agent)
        finished = self.engine.run_task(task, agent)
        status = finished.status.value if finished is not None else "unknown"
        return CommandResult.ok(
            f"Deployed {role.value} for task {task.id}",
            {"task_id": task.id, "description": task.description, "status": status},
        )

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    @_reported("reset circuit breaker")
    def reset_circuit_breaker(self, key: Optional[str] = None) -> CommandResult:
        count = self.retry.reset_circuit_breaker(key)
        target = key or "all"
        if key is not None and count == 0:
            return CommandResult.fail(f"No circuit breaker named '{key}'")
        return CommandResult.ok(f"Reset {count} circuit breaker(s) ({target})", {"reset": count})

    @_reported("clear checkpoints")
    def clear_checkpoints(self) -> CommandResult:
        removed = self.recovery.clear_checkpoints()
        return CommandResult.ok(f"Cleared {removed} checkpoints", {"removed": removed})

    @_reported("get retry statistics")
    def get_retry_statistics(self) -> CommandResult:
        return CommandResult.ok(
            "Retry statistics retrieved", _json(asdict(self.retry.get_statistics()))
        )

    @_reported("get checkpoint statistics")
    def get_checkpoint_statistics(self) -> CommandResult:
        stats = self.recovery.get_statistics()
        data: Dict[str, Any] = _json(stats)
        data["checkpoints"] = [c.to_summary() for c in self.recovery.list_checkpoints()]
        return CommandResult.ok("Checkpoint statistics retrieved", data)
