"""Persistence store for the orchestrator state document.

The store owns the in-memory state and saves it after every mutation. All
mutations run under a re-entrant lock against a private copy which is only
swapped in once the mutation and the save succeed, so readers never see a
half-applied change.
"""

import json
import logging
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar

from .exceptions import StateStoreError, StateTransitionError
from .models import (
    AgentMetrics,
    AgentRole,
    AgentTask,
    AgentTaskResult,
    ErrorLogEntry,
    Lesson,
    LessonCategory,
    Milestone,
    MilestoneStatus,
    OrchestratorState,
    ProgressSnapshot,
    TaskStatus,
    utcnow,
)
from .state_codec import decode_model, decode_state, encode_model, encode_state
from .task_state import is_valid_milestone_transition, is_valid_transition

logger = logging.getLogger(__name__)

T = TypeVar("T")

STATE_FILE = "state.json"
PROGRESS_FILE = "progress.md"
ERRORS_FILE = "errors.log"
LESSONS_FILE = "lessons.json"
BACKUP_PREFIX = "state-backup-"


class StateStore:
    """
    Durable home of the orchestrator state.

    Files kept in the state directory:

    - ``state.json``: the versioned aggregate document
    - ``errors.log``: append-only text log of every error entry
    - ``lessons.json``: recorded lessons
    - ``progress.md``: append-only narrative of progress snapshots
    - ``state-backup-<timestamp>.json``: full-state backups
    """

    def __init__(
        self,
        state_dir: Optional[Path] = None,
        phase_numbers: Optional[Iterable[int]] = None,
        error_log_cap: int = 100,
        progress_history_cap: int = 1000,
        auto_advance: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the store.

        Args:
            state_dir: Directory for state files (default: .conductor)
            phase_numbers: Phases tracked in the per-phase status map
            error_log_cap: Maximum error entries kept in the state document
            progress_history_cap: Maximum progress snapshots kept
            auto_advance: Auto-advance flag for a freshly created state
            clock: Time source
        """
        if state_dir is None:
            state_dir = Path.cwd() / ".conductor"

        self.state_dir = Path(state_dir)
        self.phase_numbers = list(phase_numbers) if phase_numbers is not None else list(range(6))
        self.error_log_cap = error_log_cap
        self.progress_history_cap = progress_history_cap
        self.auto_advance = auto_advance
        self._clock = clock
        self._lock = threading.RLock()
        self._state: Optional[OrchestratorState] = None
        self._lessons: List[Lesson] = []
        self._ensure_state_dir()

    @property
    def state_file(self) -> Path:
        return self.state_dir / STATE_FILE

    @property
    def progress_file(self) -> Path:
        return self.state_dir / PROGRESS_FILE

    @property
    def errors_file(self) -> Path:
        return self.state_dir / ERRORS_FILE

    @property
    def lessons_file(self) -> Path:
        return self.state_dir / LESSONS_FILE

    def _ensure_state_dir(self) -> None:
        """Ensure the state directory exists."""
        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
        except Exception as e:
            raise StateStoreError(
                f"Failed to create state directory {self.state_dir}: {e}"
            ) from e

    # ------------------------------------------------------------------
    # Loading and saving
    # ------------------------------------------------------------------

    def load(self) -> OrchestratorState:
        """
        Load state from disk, creating a fresh state if none exists.

        Returns:
            A copy of the loaded state

        Raises:
            StateStoreError: If the state file exists but cannot be read
        """
        with self._lock:
            if self.state_file.exists():
                self._state = self._read_document(self.state_file)
                logger.info("Loaded orchestrator state from %s", self.state_file)
            else:
                self._state = OrchestratorState.initial(
                    self.phase_numbers, auto_advance=self.auto_advance
                )
                self._write_state(self._state)
                logger.info("Initialized new orchestrator state in %s", self.state_dir)

            self._lessons = self._read_lessons()
            return self._state.model_copy(deep=True)

    def is_loaded(self) -> bool:
        return self._state is not None

    def snapshot(self) -> OrchestratorState:
        """Return a deep copy of the current state, loading it if needed."""
        with self._lock:
            return self._current().model_copy(deep=True)

    def save(self) -> None:
        """Write the current state to disk."""
        with self._lock:
            self._write_state(self._current())

    def update(self, mutator: Callable[[OrchestratorState], T]) -> T:
        """
        Apply a mutation and persist the result.

        The mutator receives a working copy. If it raises, or the save fails,
        the in-memory state is left exactly as it was.

        Args:
            mutator: Function that mutates the state in place

        Returns:
            Whatever the mutator returns
        """
        with self._lock:
            working = self._current().model_copy(deep=True)
            result = mutator(working)
            working.last_updated = self._clock()
            self._write_state(working)
            self._state = working
            return result

    def replace_state(self, state: OrchestratorState) -> None:
        """Replace the whole state document (used by restore operations)."""
        with self._lock:
            restored = state.model_copy(deep=True)
            restored.last_updated = self._clock()
            self._write_state(restored)
            self._state = restored

    def _current(self) -> OrchestratorState:
        if self._state is None:
            self.load()
        assert self._state is not None
        return self._state

    def _write_state(self, state: OrchestratorState) -> None:
        self._write_json(self.state_file, encode_state(state))

    def _write_json(self, path: Path, document: Any) -> None:
        try:
            # Write atomically by writing to temp file first
            temp_file = path.with_suffix(".tmp")
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2)

            # Rename to final location (atomic on POSIX systems)
            temp_file.replace(path)
        except Exception as e:
            raise StateStoreError(f"Failed to write {path}: {e}") from e

    def _read_document(self, path: Path) -> OrchestratorState:
        try:
            with open(path, "r", encoding="utf-8") as f:
                document = json.load(f)
        except json.JSONDecodeError as e:
            raise StateStoreError(f"Invalid JSON in state file {path}: {e}") from e
        except OSError as e:
            raise StateStoreError(f"Failed to read state file {path}: {e}") from e
        return decode_state(document)

    # ------------------------------------------------------------------
    # Tasks and milestones
    # ------------------------------------------------------------------

    def add_tasks(self, tasks: Iterable[AgentTask]) -> None:
        """Append tasks. Task ids must be unique across the whole history."""
        new_tasks = list(tasks)

        def mutate(state: OrchestratorState) -> None:
            existing = {t.id for t in state.tasks}
            for task in new_tasks:
                if task.id in existing:
                    raise StateStoreError(f"Task {task.id} already exists")
                existing.add(task.id)
                state.tasks.append(task)

        self.update(mutate)

    def transition_task(
        self,
        task_id: str,
        to_status: TaskStatus,
        result: Optional[AgentTaskResult] = None,
        error: Optional[str] = None,
    ) -> AgentTask:
        """
        Move a task to a new status.

        Stamps ``started_at`` on activation and ``completed_at`` on either
        terminal status, and updates the role's metrics.

        Raises:
            StateStoreError: If the task does not exist
            StateTransitionError: If the transition is not allowed
        """

        def mutate(state: OrchestratorState) -> AgentTask:
            task = state.get_task(task_id)
            if task is None:
                raise StateStoreError(f"Task {task_id} not found")
            if not is_valid_transition(task.status, to_status):
                raise StateTransitionError(
                    f"Invalid transition for task {task_id}: "
                    f"{task.status.value} -> {to_status.value}"
                )

            now = self._clock()
            task.status = to_status
            if result is not None:
                task.result = result
            if error is not None:
                task.error = error

            if to_status == TaskStatus.ACTIVE:
                task.started_at = now
                if task.role not in state.active_roles:
                    state.active_roles.append(task.role)
            else:
                task.completed_at = now
                self._update_metrics(state, task, now)
                still_active = any(
                    t.role == task.role and t.status == TaskStatus.ACTIVE
                    for t in state.tasks
                )
                if not still_active and task.role in state.active_roles:
                    state.active_roles.remove(task.role)

            return task.model_copy(deep=True)

        return self.update(mutate)

    def _update_metrics(
        self, state: OrchestratorState, task: AgentTask, now: datetime
    ) -> None:
        metrics = state.metrics.setdefault(task.role, AgentMetrics(role=task.role))
        if task.status == TaskStatus.COMPLETED:
            started = task.started_at or now
            metrics.record_completion((now - started).total_seconds(), now)
        elif task.status == TaskStatus.FAILED:
            metrics.record_failure(now)

    def set_milestone_status(
        self,
        milestone_id: str,
        status: MilestoneStatus,
        error: Optional[str] = None,
    ) -> Milestone:
        """
        Set a milestone's status, stamping start and completion times.

        Raises:
            StateStoreError: If the milestone does not exist
            StateTransitionError: If the transition is not allowed
        """

        def mutate(state: OrchestratorState) -> Milestone:
            milestone = state.milestones.get(milestone_id)
            if milestone is None:
                raise StateStoreError(f"Milestone {milestone_id} not found")
            if not is_valid_milestone_transition(milestone.status, status):
                raise StateTransitionError(
                    f"Invalid transition for milestone {milestone_id}: "
                    f"{milestone.status.value} -> {status.value}"
                )

            now = self._clock()
            if status == MilestoneStatus.IN_PROGRESS and milestone.started_at is None:
                milestone.started_at = now
            if status == MilestoneStatus.COMPLETED and milestone.status != status:
                milestone.completed_at = now
                if milestone.started_at is None:
                    milestone.started_at = now
            if status == MilestoneStatus.PENDING:
                milestone.started_at = None
                milestone.completed_at = None
            milestone.status = status
            if error is not None:
                milestone.error = error
            return milestone.model_copy(deep=True)

        return self.update(mutate)

    # ------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------

    def log_error(self, entry: ErrorLogEntry) -> None:
        """Record an error in the state document and the append-only log."""

        def mutate(state: OrchestratorState) -> None:
            state.errors.append(entry)
            if len(state.errors) > self.error_log_cap:
                del state.errors[: len(state.errors) - self.error_log_cap]

        with self._lock:
            self.update(mutate)
            self._append_text(self.errors_file, self._format_error(entry))

    @staticmethod
    def _format_error(entry: ErrorLogEntry) -> str:
        role = entry.role.value if entry.role else "system"
        line = (
            f"[{entry.timestamp.isoformat()}] [{entry.severity.value.upper()}] "
            f"Phase {entry.phase} - {role}: {entry.message}\n"
        )
        if entry.stack:
            line += f"{entry.stack}\n"
        return line + "\n"

    def get_errors(self, limit: Optional[int] = None) -> List[ErrorLogEntry]:
        errors = self.snapshot().errors
        return errors[-limit:] if limit else errors

    # ------------------------------------------------------------------
    # Lessons
    # ------------------------------------------------------------------

    def add_lesson(self, lesson: Lesson) -> None:
        with self._lock:
            lessons = self._lessons + [lesson]
            self._write_json(self.lessons_file, [encode_model(l) for l in lessons])
            self._lessons = lessons

    def get_lessons(
        self,
        phase: Optional[int] = None,
        role: Optional[AgentRole] = None,
        category: Optional[LessonCategory] = None,
    ) -> List[Lesson]:
        """Get recorded lessons, optionally filtered."""
        with self._lock:
            lessons = list(self._lessons)
        if phase is not None:
            lessons = [l for l in lessons if l.phase == phase]
        if role is not None:
            lessons = [l for l in lessons if l.role == role]
        if category is not None:
            lessons = [l for l in lessons if l.category == category]
        return [l.model_copy(deep=True) for l in lessons]

    def _read_lessons(self) -> List[Lesson]:
        if not self.lessons_file.exists():
            return []
        try:
            with open(self.lessons_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StateStoreError(f"Failed to read lessons: {e}") from e
        return [decode_model(Lesson, item) for item in data]

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    def record_progress(self, snapshot: ProgressSnapshot) -> None:
        """Append a progress snapshot to the history and to progress.md."""

        def mutate(state: OrchestratorState) -> None:
            state.progress.append(snapshot)
            if len(state.progress) > self.progress_history_cap:
                del state.progress[: len(state.progress) - self.progress_history_cap]

        with self._lock:
            self.update(mutate)
            self._append_text(self.progress_file, self._format_progress(snapshot))

    def get_progress_history(self, limit: Optional[int] = None) -> List[ProgressSnapshot]:
        history = self.snapshot().progress
        return history[-limit:] if limit else history

    @staticmethod
    def _format_progress(snapshot: ProgressSnapshot) -> str:
        lines = [
            "",
            f"## {snapshot.timestamp.isoformat()}",
            f"- **Phase**: {snapshot.phase}",
            f"- **Phase Progress**: {snapshot.phase_progress * 100:.1f}%",
            f"- **Overall Progress**: {snapshot.overall_progress * 100:.1f}%",
            f"- **Active Tasks**: {snapshot.active_tasks}",
            f"- **Completed Tasks**: {snapshot.completed_tasks}",
            f"- **Failed Tasks**: {snapshot.failed_tasks}",
        ]
        if snapshot.estimated_completion:
            lines.append(
                f"- **Estimated Completion**: {snapshot.estimated_completion.isoformat()}"
            )
        return "\n".join(lines) + "\n"

    def _append_text(self, path: Path, text: str) -> None:
        try:
            with open(path, "a", encoding="utf-8") as f:
                f.write(text)
        except OSError as e:
            raise StateStoreError(f"Failed to append to {path}: {e}") from e

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def cleanup(self, keep_error_days: int = 30, keep_progress_days: int = 7) -> Dict[str, int]:
        """
        Drop old error entries and progress snapshots from the state document.

        Returns:
            Number of removed errors and snapshots
        """
        now = self._clock()
        error_cutoff = now - timedelta(days=keep_error_days)
        progress_cutoff = now - timedelta(days=keep_progress_days)

        def mutate(state: OrchestratorState) -> Dict[str, int]:
            errors_before = len(state.errors)
            progress_before = len(state.progress)
            state.errors = [e for e in state.errors if e.timestamp > error_cutoff]
            state.progress = [p for p in state.progress if p.timestamp > progress_cutoff]
            return {
                "errors_removed": errors_before - len(state.errors),
                "progress_removed": progress_before - len(state.progress),
            }

        removed = self.update(mutate)
        logger.info("Cleanup completed: %s", removed)
        return removed

    def create_backup(self) -> Path:
        """Write a timestamped copy of the current state."""
        with self._lock:
            stamp = self._clock().strftime("%Y%m%dT%H%M%S%fZ")
            backup_file = self.state_dir / f"{BACKUP_PREFIX}{stamp}.json"
            counter = 1
            while backup_file.exists():
                backup_file = self.state_dir / f"{BACKUP_PREFIX}{stamp}-{counter}.json"
                counter += 1
            self._write_json(backup_file, encode_state(self._current()))
            logger.info("State backup created: %s", backup_file)
            return backup_file

    def list_backups(self) -> List[Path]:
        """List backups, oldest first."""
        return sorted(self.state_dir.glob(f"{BACKUP_PREFIX}*.json"))

    def restore_backup(self, backup_file: Path) -> OrchestratorState:
        """
        Restore state from a backup file.

        Raises:
            StateStoreError: If the backup cannot be read
        """
        backup_file = Path(backup_file)
        if not backup_file.exists():
            raise StateStoreError(f"Backup not found: {backup_file}")
        state = self._read_document(backup_file)
        self.replace_state(state)
        logger.info("State restored from backup %s", backup_file)
        return self.snapshot()
