"""Phase and milestone management.

Owns phase initialization, milestone completion, phase advance and rollback,
and progress calculation. All decisions are made against the latest store
snapshot.
"""

import logging
import threading
from datetime import datetime
from typing import Callable, Dict, List, Optional

from conductor.core.checkpoint import CheckpointTrigger
from conductor.core.exceptions import MilestoneNotFoundError
from conductor.core.milestone_validator import MilestoneValidator
from conductor.core.models import (
    AgentRole,
    AgentTask,
    Lesson,
    LessonCategory,
    Milestone,
    MilestoneStatus,
    OrchestratorState,
    PhaseDefinition,
    PhaseStatus,
    TaskStatus,
    utcnow,
)
from conductor.core.phase_registry import PhaseRegistry
from conductor.core.recovery import RecoveryManager
from conductor.core.state_store import StateStore

from .events import EventBus, MilestoneCompleted, PhaseAdvanced, PhaseRolledBack
from .exit_tests import ExitTestResult, ExitTestRunner, ShellExitTestRunner

logger = logging.getLogger(__name__)

# Added to the phase weight; earlier roles unblock more downstream work
ROLE_PRIORITY: Dict[AgentRole, int] = {
    AgentRole.MODELS: 10,
    AgentRole.API: 8,
    AgentRole.REALTIME: 7,
    AgentRole.QUALITY: 6,
    AgentRole.SECURITY: 6,
    AgentRole.TEST: 5,
    AgentRole.INTEGRATION: 4,
}


class PhaseManager:
    """Manages phase transitions and milestone tracking."""

    def __init__(
        self,
        store: StateStore,
        registry: Optional[PhaseRegistry] = None,
        validator: Optional[MilestoneValidator] = None,
        exit_tests: Optional[ExitTestRunner] = None,
        recovery: Optional[RecoveryManager] = None,
        bus: Optional[EventBus] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the phase manager.

        Args:
            store: State store
            registry: Phase definitions (default: built-in phases)
            validator: Milestone validator (default: no probes)
            exit_tests: Exit-test runner (default: run phase test commands)
            recovery: Recovery manager used for checkpoints before rollback
            bus: Event bus for phase and milestone notifications
            clock: Time source
        """
        self.store = store
        self.registry = registry or PhaseRegistry()
        self.validator = validator or MilestoneValidator()
        self.exit_tests = exit_tests or ShellExitTestRunner()
        self.recovery = recovery
        self.bus = bus
        self._clock = clock
        self._lock = threading.RLock()
        self.last_exit_test: Optional[ExitTestResult] = None

    # ------------------------------------------------------------------
    # Phase lookup
    # ------------------------------------------------------------------

    def get_current_phase(self) -> PhaseDefinition:
        return self.registry.get(self.store.snapshot().current_phase)

    def get_phase(self, number: int) -> PhaseDefinition:
        return self.registry.get(number)

    def get_all_phases(self) -> List[PhaseDefinition]:
        return self.registry.all()

    @staticmethod
    def calculate_task_priority(phase: int, role: AgentRole) -> int:
        """Earlier phases first, then by role weight."""
        return (6 - phase) * 100 + ROLE_PRIORITY.get(role, 0)

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    def initialize_phase(self, number: int) -> List[AgentTask]:
        """
        Reset a phase's milestones and create its tasks.

        One task is created per (milestone, required role) pair. Tasks left
        over from an earlier initialization of the same phase are marked
        superseded, never deleted.

        Args:
            number: Phase to initialize

        Returns:
            The created tasks
        """
        phase = self.registry.get(number)
        now = self._clock()

        def mutate(state: OrchestratorState) -> List[AgentTask]:
            existing_ids = {t.id for t in state.tasks}
            for task in state.tasks_for_phase(number):
                task.superseded = True

            created: List[AgentTask] = []
            for definition in phase.milestones:
                state.milestones[definition.id] = Milestone.from_definition(definition, number)
                for role in definition.required_roles:
                    base_id = f"{number}-{definition.id}-{role.value}"
                    task_id = base_id
                    generation = 1
                    while task_id in existing_ids:
                        generation += 1
                        task_id = f"{base_id}-r{generation}"
                    existing_ids.add(task_id)
                    task = AgentTask(
                        id=task_id,
                        phase=number,
                        milestone=definition.id,
                        role=role,
                        description=f"{definition.description} [{role.value}]",
                        priority=self.calculate_task_priority(number, role),
                        created_at=now,
                    )
                    state.tasks.append(task)
                    created.append(task)

            state.phase_statuses[number] = PhaseStatus.IN_PROGRESS
            return created

        with self._lock:
            created = self.store.update(mutate)

        logger.info(
            "Initialized phase %d (%s): %d milestones, %d tasks",
            number,
            phase.name,
            len(phase.milestones),
            len(created),
        )
        return created

    def ensure_current_phase_initialized(self) -> bool:
        """Initialize the current phase if its milestones are missing.

        Returns:
            True if the phase was initialized now
        """
        with self._lock:
            state = self.store.snapshot()
            phase = self.registry.get(state.current_phase)
            if all(m.id in state.milestones for m in phase.milestones):
                return False
            self.initialize_phase(phase.number)
            return True

    # ------------------------------------------------------------------
    # Milestones
    # ------------------------------------------------------------------

    def update_milestone_status(self, milestone_id: str, status: MilestoneStatus) -> Milestone:
        """
        Update a milestone's status.

        When the update completes the last milestone of the current phase and
        auto-advance is on, the phase is advanced right away.

        Raises:
            MilestoneNotFoundError: If the milestone does not exist
        """
        with self._lock:
            state = self.store.snapshot()
            if milestone_id not in state.milestones:
                raise MilestoneNotFoundError(f"Milestone {milestone_id} not found")

            milestone = self.store.set_milestone_status(milestone_id, status)
            logger.info("Milestone %s status updated to %s", milestone_id, status.value)

            if status == MilestoneStatus.COMPLETED:
                self._publish(MilestoneCompleted(milestone_id=milestone_id, phase=milestone.phase))
                if state.auto_advance and milestone.phase == state.current_phase:
                    if self.is_current_phase_complete():
                        logger.info("Phase complete - auto-advancing")
                        self.advance_phase()

            return milestone

    def validate_milestone(self, milestone_id: str) -> bool:
        """
        Completion gate for a milestone.

        The milestone is marked completed only if every task bound to it is
        completed and the validator passes at this moment.

        Raises:
            MilestoneNotFoundError: If the milestone does not exist
        """
        with self._lock:
            state = self.store.snapshot()
            milestone = state.milestones.get(milestone_id)
            if milestone is None:
                raise MilestoneNotFoundError(f"Milestone {milestone_id} not found")
            if milestone.status == MilestoneStatus.COMPLETED:
                return True

            tasks = state.tasks_for_milestone(milestone_id)
            incomplete = [t.id for t in tasks if t.status != TaskStatus.COMPLETED]
            if incomplete:
                logger.debug("Milestone %s has incomplete tasks: %s", milestone_id, incomplete)
                return False

            if not self.validator.validate(milestone, milestone.phase):
                return False

            self.update_milestone_status(milestone_id, MilestoneStatus.COMPLETED)
            return True

    def evaluate_milestones(self) -> List[str]:
        """
        Re-check every open milestone of the current phase.

        Milestones without required roles have no tasks; they are started
        here so the validator's probes decide them. Milestones whose tasks
        are all done are validated again, so a probe that failed earlier gets
        another chance.

        Returns:
            Ids of milestones completed by this call
        """
        completed: List[str] = []
        with self._lock:
            state = self.store.snapshot()
            for milestone in state.milestones_for_phase(state.current_phase):
                if milestone.status == MilestoneStatus.COMPLETED:
                    continue
                tasks = state.tasks_for_milestone(milestone.id)
                if any(t.status != TaskStatus.COMPLETED for t in tasks):
                    continue
                if milestone.status == MilestoneStatus.PENDING:
                    self.store.set_milestone_status(milestone.id, MilestoneStatus.IN_PROGRESS)
                if self.validate_milestone(milestone.id):
                    completed.append(milestone.id)
                if self.store.snapshot().current_phase != state.current_phase:
                    break
        return completed

    # ------------------------------------------------------------------
    # Phase transitions
    # ------------------------------------------------------------------

    def is_current_phase_complete(self) -> bool:
        """All milestones completed and the exit test passes."""
        state = self.store.snapshot()
        phase = self.registry.get(state.current_phase)

        for definition in phase.milestones:
            milestone = state.milestones.get(definition.id)
            if milestone is None or milestone.status != MilestoneStatus.COMPLETED:
                logger.debug("Milestone %s not completed", definition.id)
                return False

        self.last_exit_test = self.exit_tests.run(phase)
        if not self.last_exit_test.passed:
            logger.info("Exit test for phase %d did not pass", phase.number)
            return False

        logger.info("Phase %d is complete", phase.number)
        return True

    def run_exit_test(self) -> ExitTestResult:
        """Run the current phase's exit test without changing state."""
        self.last_exit_test = self.exit_tests.run(self.get_current_phase())
        return self.last_exit_test

    def advance_phase(self) -> bool:
        """
        Advance to the next phase.

        Returns:
            False, with state unchanged, if the current phase is incomplete,
            it is the last phase, or the next phase's prerequisites are not
            all completed
        """
        with self._lock:
            state = self.store.snapshot()
            current = state.current_phase

            if not self.is_current_phase_complete():
                logger.warning("Cannot advance: phase %d not complete", current)
                return False

            next_phase = current + 1
            if next_phase > self.registry.max_phase:
                if current not in state.completed_phases:
                    self._mark_completed(current)
                    self._add_lesson(
                        current,
                        LessonCategory.SUCCESS,
                        f"Completed final phase {current}: {self.registry.get(current).name}",
                        "All phases completed",
                    )
                logger.info("All phases completed")
                return False

            definition = self.registry.get(next_phase)
            completed_after = set(state.completed_phases) | {current}
            missing = [d for d in definition.dependencies if d not in completed_after]
            if missing:
                logger.warning(
                    "Cannot advance to phase %d: prerequisites %s not completed",
                    next_phase,
                    missing,
                )
                return False

            def mutate(s: OrchestratorState) -> None:
                if current not in s.completed_phases:
                    s.completed_phases.append(current)
                s.phase_statuses[current] = PhaseStatus.COMPLETED
                s.current_phase = next_phase

            self.store.update(mutate)
            self.initialize_phase(next_phase)
            self._add_lesson(
                current,
                LessonCategory.SUCCESS,
                f"Successfully completed Phase {current}: {self.registry.get(current).name}",
                "Phase progression",
            )

        logger.info("Advanced from phase %d to phase %d", current, next_phase)
        self._publish(PhaseAdvanced(from_phase=current, to_phase=next_phase))
        return True

    def _mark_completed(self, number: int) -> None:
        def mutate(s: OrchestratorState) -> None:
            if number not in s.completed_phases:
                s.completed_phases.append(number)
            s.phase_statuses[number] = PhaseStatus.COMPLETED

        self.store.update(mutate)

    def rollback_phase(self) -> bool:
        """
        Roll back to the previous phase.

        Takes a checkpoint and an on-disk backup first. The phase being left
        and the phase returned to are both removed from the completed set, and
        the returned-to phase is initialized again so its work is redone.

        Returns:
            False, with state unchanged, at phase 0
        """
        with self._lock:
            state = self.store.snapshot()
            current = state.current_phase
            if current == 0:
                logger.warning("Cannot rollback: already at phase 0")
                return False

            previous = current - 1
            checkpoint_id = None
            if self.recovery is not None:
                checkpoint = self.recovery.create_checkpoint(
                    state,
                    label=f"Before rollback from phase {current}",
                    trigger=CheckpointTrigger.PRE_ROLLBACK,
                )
                checkpoint_id = checkpoint.checkpoint_id
            self.store.create_backup()

            def mutate(s: OrchestratorState) -> None:
                s.current_phase = previous
                s.completed_phases = [p for p in s.completed_phases if p not in (current, previous)]
                s.phase_statuses[current] = PhaseStatus.NOT_STARTED

            self.store.update(mutate)
            self.initialize_phase(previous)
            self._add_lesson(
                current,
                LessonCategory.FAILURE,
                f"Rolled back from Phase {current} to Phase {previous}",
                "Phase regression",
            )

        logger.warning("Rolled back from phase %d to phase %d", current, previous)
        self._publish(
            PhaseRolledBack(from_phase=current, to_phase=previous, checkpoint_id=checkpoint_id)
        )
        return True

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    def get_phase_progress(self, number: int, state: Optional[OrchestratorState] = None) -> float:
        """Fraction of a phase's milestones done, counting partial progress."""
        state = state or self.store.snapshot()
        phase = self.registry.get(number)
        if not phase.milestones:
            return 1.0

        total = 0.0
        for definition in phase.milestones:
            milestone = state.milestones.get(definition.id)
            if milestone is None:
                continue
            total += self.validator.estimated_progress(
                milestone, state.tasks_for_milestone(milestone.id)
            )
        return total / len(phase.milestones)

    def get_overall_progress(self, state: Optional[OrchestratorState] = None) -> float:
        state = state or self.store.snapshot()
        phases = self.registry.all()
        return sum(self.get_phase_progress(p.number, state) for p in phases) / len(phases)

    def get_estimated_completion(
        self, state: Optional[OrchestratorState] = None
    ) -> Optional[datetime]:
        """Linear extrapolation from the run's start time, or None at zero progress."""
        state = state or self.store.snapshot()
        overall = self.get_overall_progress(state)
        if overall <= 0:
            return None
        elapsed = self._clock() - state.started_at
        return state.started_at + elapsed / overall

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _add_lesson(
        self, phase: int, category: LessonCategory, description: str, impact: str
    ) -> None:
        self.store.add_lesson(
            Lesson(
                phase=phase,
                category=category,
                description=description,
                impact=impact,
                timestamp=self._clock(),
            )
        )

    def _publish(self, event) -> None:
        if self.bus is not None:
            self.bus.publish(event)
