"""Orchestrator engine.

The control loop: every tick it claims waiting tasks of the current phase,
runs them on their agents through the retry engine, applies the outcomes to
the state store and records a progress snapshot.
"""

import logging
import threading
import time
import traceback
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from conductor.agents.base import Agent, AgentRegistry
from conductor.core.checkpoint import CheckpointTrigger
from conductor.core.error_classifier import ErrorCategory, RecoveryAction
from conductor.core.exceptions import ConfigurationError
from conductor.core.models import (
    AgentRole,
    AgentTask,
    AgentTaskResult,
    ConflictMarker,
    DashboardData,
    ErrorKind,
    ErrorLogEntry,
    Lesson,
    LessonCategory,
    MilestoneStatus,
    OrchestratorState,
    ProgressSnapshot,
    Severity,
    TaskStatus,
    utcnow,
)
from conductor.core.recovery import RecoveryManager
from conductor.core.state_store import StateStore

from .dashboard import DashboardGenerator, collect_dashboard_data
from .events import (
    CircuitBreakTriggered,
    ConflictDetected,
    DashboardUpdate,
    EngineStarted,
    EngineStopped,
    EventBus,
    OrchestratorError,
    OrchestratorEvent,
    TaskCompleted,
    TaskFailed,
    TaskStarted,
    WorkflowPaused,
    WorkflowResumed,
)
from .phase_manager import PhaseManager
from .retry_policy import RetryPolicyEngine

logger = logging.getLogger(__name__)

DISPATCH_ORDERS = ("priority", "list")
BREAKER_SCOPES = ("role", "task")
MAX_PARALLEL_TASKS = 16


class OrchestratorEngine:
    """Runs the dispatch loop over the current phase's tasks."""

    def __init__(
        self,
        store: StateStore,
        phases: PhaseManager,
        agents: AgentRegistry,
        retry: RetryPolicyEngine,
        recovery: RecoveryManager,
        bus: EventBus,
        tick_interval: float = 5.0,
        max_parallel_tasks: int = 1,
        dispatch_order: str = "priority",
        breaker_scope: str = "role",
        dashboard: Optional[DashboardGenerator] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the engine.

        Args:
            store: State store
            phases: Phase manager
            agents: Agents indexed by role
            retry: Retry policy engine wrapping every agent call
            recovery: Recovery manager for checkpoints and raised errors
            bus: Event bus for notifications
            tick_interval: Seconds between ticks of the background loop
            max_parallel_tasks: Tasks dispatched and run together per tick
            dispatch_order: ``priority`` (highest first) or ``list``
                (creation order)
            breaker_scope: Circuit breaker per ``role`` or per ``task``
            dashboard: Writes dashboard.md after each tick when given
            clock: Time source

        Raises:
            ConfigurationError: If a setting is out of range
        """
        if tick_interval <= 0:
            raise ConfigurationError("tick_interval must be positive")
        if not 1 <= max_parallel_tasks <= MAX_PARALLEL_TASKS:
            raise ConfigurationError(
                f"max_parallel_tasks must be between 1 and {MAX_PARALLEL_TASKS}"
            )
        if dispatch_order not in DISPATCH_ORDERS:
            raise ConfigurationError(f"Unknown dispatch order: {dispatch_order}")
        if breaker_scope not in BREAKER_SCOPES:
            raise ConfigurationError(f"Unknown breaker scope: {breaker_scope}")

        self.store = store
        self.phases = phases
        self.agents = agents
        self.retry = retry
        self.recovery = recovery
        self.bus = bus
        self.tick_interval = tick_interval
        self.max_parallel_tasks = max_parallel_tasks
        self.dispatch_order = dispatch_order
        self.breaker_scope = breaker_scope
        self.dashboard = dashboard
        self._clock = clock

        self._tick_lock = threading.Lock()
        self._flag_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._paused = False
        self._started_at: Optional[float] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return (
            self._thread is not None
            and self._thread.is_alive()
            and not self._stop_event.is_set()
        )

    @property
    def paused(self) -> bool:
        with self._flag_lock:
            return self._paused

    @property
    def uptime_seconds(self) -> float:
        if self._started_at is None or not self.running:
            return 0.0
        return time.monotonic() - self._started_at

    def start(self) -> None:
        """Start the background loop. Does nothing if already running."""
        if self.running:
            logger.warning("Engine is already running")
            return

        if not self.store.is_loaded():
            self.store.load()
        self.phases.ensure_current_phase_initialized()

        # Per-loop event: a stopped loop still inside a tick must exit afterwards
        self._stop_event = threading.Event()
        self._started_at = time.monotonic()
        self._thread = threading.Thread(
            target=self._run_loop,
            args=(self._stop_event,),
            name="conductor-engine",
            daemon=True,
        )
        self._thread.start()

        phase = self.store.snapshot().current_phase
        logger.info("Engine started at phase %d (tick every %.1fs)", phase, self.tick_interval)
        self._publish(EngineStarted(phase=phase))

    def stop(self) -> None:
        """Stop scheduling ticks. A tick already running is not interrupted."""
        if not self.running:
            logger.info("Engine is not running")
            return

        self._stop_event.set()
        self.store.save()
        phase = self.store.snapshot().current_phase
        logger.info("Engine stopped at phase %d", phase)
        self._publish(EngineStopped(phase=phase))

    def wait(self, timeout: Optional[float] = None) -> None:
        """Block until the background loop has exited."""
        if self._thread is not None:
            self._thread.join(timeout)

    def _run_loop(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("Unhandled error in engine loop")
            stop_event.wait(self.tick_interval)

    def resume(self) -> bool:
        """
        Resume dispatching after a conflict was resolved.

        Returns:
            False if the workflow was not paused
        """
        with self._flag_lock:
            if not self._paused:
                return False
            self._paused = False
        logger.info("Workflow resumed")
        self._publish(WorkflowResumed())
        return True

    def _pause(self, reason: str, task_id: Optional[str] = None) -> None:
        with self._flag_lock:
            self._paused = True
        logger.warning("Workflow paused: %s", reason)
        self._publish(WorkflowPaused(reason=reason, task_id=task_id))

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def run_exclusive(self, operation: Callable[[], Any]) -> Any:
        """Run an operation while holding the tick lock.

        Ticks that start meanwhile are skipped, so nothing is dispatched
        next to a manual run.
        """
        with self._tick_lock:
            return operation()

    def tick(self) -> bool:
        """
        Run one dispatch pass.

        Returns:
            False if skipped because another tick is still running
        """
        if not self._tick_lock.acquire(blocking=False):
            logger.debug("Previous tick still running, skipping")
            return False

        try:
            if not self.store.is_loaded():
                self.store.load()
            self.phases.ensure_current_phase_initialized()

            if self.paused:
                logger.info("Workflow paused, nothing dispatched")
            else:
                self._run_batch(self._claim_tasks())

            self.phases.evaluate_milestones()
            self._record_progress()
        except Exception as e:
            logger.exception("Tick failed")
            self._report_error(f"Tick failed: {e}", stack=traceback.format_exc())
        finally:
            self._tick_lock.release()
        return True

    def _claim_tasks(self) -> List[Tuple[AgentTask, Agent]]:
        state = self.store.snapshot()
        waiting = state.tasks_for_phase(state.current_phase, status=TaskStatus.WAITING)
        if self.dispatch_order == "priority":
            waiting.sort(key=lambda t: t.priority, reverse=True)

        claimed_roles: Set[AgentRole] = set()
        batch: List[Tuple[AgentTask, Agent]] = []
        for task in waiting:
            if len(batch) >= self.max_parallel_tasks:
                break

            agent = self.agents.get(task.role)
            if agent is None:
                logger.debug("No agent registered for %s, skipping %s", task.role.value, task.id)
                continue
            if agent.is_active() or task.role in claimed_roles:
                continue
            blocking = self._blocking_roles(agent, state, task.phase)
            if blocking:
                logger.debug(
                    "Task %s waits for %s",
                    task.id,
                    ", ".join(r.short_name for r in blocking),
                )
                continue

            claimed_roles.add(task.role)
            batch.append((self.dispatch(task, agent), agent))

        return batch

    @staticmethod
    def _blocking_roles(
        agent: Agent, state: OrchestratorState, phase: int
    ) -> List[AgentRole]:
        """Upstream roles that still have unfinished tasks in the phase."""
        tasks = state.tasks_for_phase(phase)
        return [
            role
            for role in agent.dependencies
            if any(t.role == role and t.status != TaskStatus.COMPLETED for t in tasks)
        ]

    def _run_batch(self, batch: List[Tuple[AgentTask, Agent]]) -> None:
        if not batch:
            return

        with ThreadPoolExecutor(
            max_workers=min(self.max_parallel_tasks, len(batch)),
            thread_name_prefix="conductor-agent",
        ) as pool:
            futures = {pool.submit(self.run_task, task, agent): task for task, agent in batch}
            for future in as_completed(futures):
                task = futures[future]
                try:
                    future.result()
                except Exception as e:
                    logger.exception("Could not settle task %s", task.id)
                    self._report_error(
                        f"Could not settle task {task.id}: {e}",
                        task=task,
                        stack=traceback.format_exc(),
                    )

    # ------------------------------------------------------------------
    # Dispatch and execution
    # ------------------------------------------------------------------

    def dispatch(self, task: AgentTask, agent: Agent) -> AgentTask:
        """
        Claim a waiting task for an agent.

        Takes a checkpoint, marks the task active and starts its milestone.

        Returns:
            The task as it is now active
        """
        self.recovery.create_checkpoint(
            label=f"Before dispatching {task.id}",
            role=task.role,
            task_id=task.id,
            trigger=CheckpointTrigger.PRE_DISPATCH,
        )
        active = self.store.transition_task(task.id, TaskStatus.ACTIVE)

        milestone = self.store.snapshot().milestones.get(task.milestone)
        if milestone is not None and milestone.status == MilestoneStatus.PENDING:
            self.store.set_milestone_status(task.milestone, MilestoneStatus.IN_PROGRESS)

        logger.info("Dispatched %s to %s", task.id, agent.name)
        self._publish(
            TaskStarted(
                task_id=task.id, role=task.role, phase=task.phase, milestone=task.milestone
            )
        )
        return active

    def run_task(self, task: AgentTask, agent: Agent) -> Optional[AgentTask]:
        """
        Execute an active task and apply the outcome.

        Returns:
            The task as stored afterwards
        """
        breaker_key = task.role.value if self.breaker_scope == "role" else task.id
        context: Dict[str, Any] = {
            "task_id": task.id,
            "role": task.role.value,
            "phase": task.phase,
            "milestone": task.milestone,
        }

        try:
            result = self.retry.execute_with_retry(
                task.id,
                lambda: agent.execute(task),
                context=context,
                breaker_key=breaker_key,
            )
        except Exception as e:
            self._handle_exception(task, e, context, breaker_key, traceback.format_exc())
        else:
            marker = self._conflict_of(result)
            if result.success:
                self._handle_success(task, result)
            elif marker is not None:
                self._handle_conflict(task, result, marker)
            else:
                self._handle_failure(task, result)

        return self.store.snapshot().get_task(task.id)

    @staticmethod
    def _conflict_of(result: AgentTaskResult) -> Optional[ConflictMarker]:
        if result.conflict is not None:
            return result.conflict
        conflict_type = result.metadata.get("conflict_type")
        if not conflict_type:
            return None
        try:
            severity = Severity(result.metadata.get("severity", Severity.HIGH.value))
        except ValueError:
            severity = Severity.HIGH
        return ConflictMarker(conflict_type=str(conflict_type), severity=severity)

    def _handle_success(self, task: AgentTask, result: AgentTaskResult) -> None:
        self.store.transition_task(task.id, TaskStatus.COMPLETED, result=result)
        logger.info("Task %s completed", task.id)
        self._publish(
            TaskCompleted(
                task_id=task.id,
                role=task.role,
                phase=task.phase,
                milestone=task.milestone,
                duration_seconds=result.duration_seconds,
            )
        )

        milestone = self.store.snapshot().milestones.get(task.milestone)
        if milestone is None or milestone.status == MilestoneStatus.COMPLETED:
            return
        if self.phases.validate_milestone(task.milestone):
            self.store.add_lesson(
                Lesson(
                    timestamp=self._clock(),
                    phase=task.phase,
                    role=task.role,
                    category=LessonCategory.SUCCESS,
                    description=f"Milestone {milestone.name} completed",
                    impact=f"Task {task.id} finished the milestone",
                )
            )

    def _handle_conflict(
        self, task: AgentTask, result: AgentTaskResult, marker: ConflictMarker
    ) -> None:
        severity = marker.highest_severity
        reason = result.error or marker.conflict_type
        self.store.transition_task(task.id, TaskStatus.FAILED, result=result, error=reason)
        self._log_error(
            f"Conflict detected ({marker.conflict_type}): {result.output or reason}",
            Severity.CRITICAL if severity == Severity.CRITICAL else Severity.HIGH,
            task=task,
        )
        self._publish(
            ConflictDetected(
                task_id=task.id,
                role=task.role,
                phase=task.phase,
                conflict_type=marker.conflict_type,
                severity=severity,
                findings=marker.findings,
            )
        )
        self._pause(f"{marker.conflict_type} requires human resolution", task_id=task.id)

    def _handle_failure(self, task: AgentTask, result: AgentTaskResult) -> None:
        error = result.error or "Task reported failure"
        self.store.transition_task(task.id, TaskStatus.FAILED, result=result, error=error)
        logger.warning("Task %s failed: %s", task.id, error)
        self._log_error(error, Severity.MEDIUM, task=task)
        self._publish(
            TaskFailed(
                task_id=task.id,
                role=task.role,
                phase=task.phase,
                milestone=task.milestone,
                error=error,
                severity=Severity.MEDIUM,
            )
        )

    def _handle_exception(
        self,
        task: AgentTask,
        error: Exception,
        context: Dict[str, Any],
        breaker_key: str,
        stack: str,
    ) -> None:
        recovery = self.recovery.handle_error(error, {**context, "operation_key": task.id})
        message = recovery.message
        self._fail_task(task, message)

        if recovery.action == RecoveryAction.PAUSE_WORKFLOW:
            self._log_error(message, Severity.HIGH, task=task)
            self._publish(
                ConflictDetected(
                    task_id=task.id,
                    role=task.role,
                    phase=task.phase,
                    conflict_type=recovery.category,
                    severity=Severity.HIGH,
                )
            )
            self._pause(message, task_id=task.id)
            return

        if recovery.action == RecoveryAction.CIRCUIT_BREAK:
            # A call refused by an open breaker is high; an unhealthy system is critical
            if recovery.category == ErrorCategory.CIRCUIT_OPEN.value:
                self._log_error(message, Severity.HIGH, task=task)
            else:
                self._log_error(message, Severity.CRITICAL, task=task)
            self._publish(
                CircuitBreakTriggered(
                    key=breaker_key, message=message, role=task.role, task_id=task.id
                )
            )
            return

        if recovery.action == RecoveryAction.ROLLBACK:
            severity = Severity.HIGH
            self._log_error(message, severity, task=task)
        else:
            fatal = recovery.kind == ErrorKind.FATAL
            severity = Severity.CRITICAL if fatal else Severity.HIGH
            self._log_error(message, severity, task=task, stack=stack if fatal else None)

        self._publish(
            TaskFailed(
                task_id=task.id,
                role=task.role,
                phase=task.phase,
                milestone=task.milestone,
                error=message,
                severity=severity,
            )
        )

    def _fail_task(self, task: AgentTask, error: str) -> None:
        # A restored checkpoint may already have failed the task
        current = self.store.snapshot().get_task(task.id)
        if current is not None and current.status == TaskStatus.ACTIVE:
            self.store.transition_task(task.id, TaskStatus.FAILED, error=error)

    # ------------------------------------------------------------------
    # Progress and dashboard
    # ------------------------------------------------------------------

    def _record_progress(self) -> ProgressSnapshot:
        state = self.store.snapshot()
        tasks = [t for t in state.tasks if not t.superseded]
        snapshot = ProgressSnapshot(
            timestamp=self._clock(),
            phase=state.current_phase,
            phase_progress=self.phases.get_phase_progress(state.current_phase, state),
            overall_progress=self.phases.get_overall_progress(state),
            active_tasks=sum(1 for t in tasks if t.status == TaskStatus.ACTIVE),
            completed_tasks=sum(1 for t in tasks if t.status == TaskStatus.COMPLETED),
            failed_tasks=sum(1 for t in tasks if t.status == TaskStatus.FAILED),
            estimated_completion=self.phases.get_estimated_completion(state),
        )
        self.store.record_progress(snapshot)
        self._publish(DashboardUpdate(snapshot=snapshot))

        if self.dashboard is not None:
            self.dashboard.generate(self.get_dashboard_data(), self.store.snapshot())
        return snapshot

    def get_dashboard_data(self) -> DashboardData:
        return collect_dashboard_data(
            self.store,
            self.phases,
            retry=self.retry,
            running=self.running,
            paused=self.paused,
            now=self._clock(),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _log_error(
        self,
        message: str,
        severity: Severity,
        task: Optional[AgentTask] = None,
        stack: Optional[str] = None,
    ) -> None:
        phase = task.phase if task is not None else self.store.snapshot().current_phase
        self.store.log_error(
            ErrorLogEntry(
                timestamp=self._clock(),
                phase=phase,
                role=task.role if task is not None else None,
                milestone=task.milestone if task is not None else None,
                task_id=task.id if task is not None else None,
                message=message,
                stack=stack,
                severity=severity,
            )
        )

    def _report_error(
        self, message: str, task: Optional[AgentTask] = None, stack: Optional[str] = None
    ) -> None:
        try:
            self._log_error(message, Severity.HIGH, task=task, stack=stack)
        except Exception as e:
            logger.error("Could not record error entry: %s", e)
        self._publish(OrchestratorError(message=message, severity=Severity.HIGH))

    def _publish(self, event: OrchestratorEvent) -> None:
        self.bus.publish(event)
