"""Tests for the state store."""

import json
from datetime import datetime, timedelta, timezone

import pytest

from conductor.core import (
    AgentRole,
    AgentTask,
    AgentTaskResult,
    ErrorLogEntry,
    Lesson,
    LessonCategory,
    Milestone,
    MilestoneStatus,
    PhaseStatus,
    ProgressSnapshot,
    Severity,
    StateStore,
    StateStoreError,
    StateTransitionError,
    TaskStatus,
)


def _task(task_id: str = "0-m1-agent-models", role: AgentRole = AgentRole.MODELS) -> AgentTask:
    return AgentTask(id=task_id, phase=0, milestone="m1", role=role, description="build it")


def _add_milestone(store: StateStore, milestone_id: str = "m1") -> None:
    def mutate(state):
        state.milestones[milestone_id] = Milestone(
            id=milestone_id, phase=0, name="Milestone", description="Deliver"
        )

    store.update(mutate)


class TestStateStoreLoading:
    """Test loading, saving and atomic updates."""

    def test_load_creates_fresh_state(self, state_dir):
        """A missing state file yields a fresh phase-0 state on disk."""
        store = StateStore(state_dir=state_dir)
        state = store.load()

        assert state.current_phase == 0
        assert state.completed_phases == []
        assert state.phase_statuses == {n: PhaseStatus.NOT_STARTED for n in range(6)}
        assert set(state.metrics) == set(AgentRole)
        assert store.state_file.exists()

        document = json.loads(store.state_file.read_text())
        assert document["schema_version"] == 1
        assert document["state"]["current_phase"] == 0

    def test_state_survives_restart(self, state_dir):
        """A second store over the same directory sees earlier updates."""
        store = StateStore(state_dir=state_dir)
        store.load()
        store.update(lambda s: setattr(s, "current_phase", 2))
        store.add_tasks([_task()])

        reloaded = StateStore(state_dir=state_dir).load()
        assert reloaded.current_phase == 2
        assert reloaded.get_task("0-m1-agent-models") is not None
        assert isinstance(reloaded.started_at, datetime)

    def test_load_rejects_invalid_json(self, state_dir):
        store = StateStore(state_dir=state_dir)
        store.state_file.write_text("{not json", encoding="utf-8")

        with pytest.raises(StateStoreError, match="Invalid JSON"):
            store.load()

    def test_load_rejects_newer_schema(self, state_dir):
        store = StateStore(state_dir=state_dir)
        store.state_file.write_text(
            json.dumps({"schema_version": 99, "state": {}}), encoding="utf-8"
        )

        with pytest.raises(StateStoreError, match="newer"):
            store.load()

    def test_failed_mutation_leaves_state_unchanged(self, store):
        """A mutator that raises changes neither memory nor disk."""
        before = store.state_file.read_text()

        def mutate(state):
            state.current_phase = 3
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            store.update(mutate)

        assert store.snapshot().current_phase == 0
        assert store.state_file.read_text() == before

    def test_snapshot_is_a_copy(self, store):
        snapshot = store.snapshot()
        snapshot.current_phase = 4
        snapshot.completed_phases.append(0)

        assert store.snapshot().current_phase == 0
        assert store.snapshot().completed_phases == []

    def test_update_returns_mutator_result(self, store):
        assert store.update(lambda s: s.current_phase + 10) == 10


class TestTaskTransitions:
    """Test task status changes and role metrics."""

    def test_activate_then_complete(self, store):
        store.add_tasks([_task()])

        active = store.transition_task("0-m1-agent-models", TaskStatus.ACTIVE)
        assert active.status == TaskStatus.ACTIVE
        assert active.started_at is not None
        assert store.snapshot().active_roles == [AgentRole.MODELS]

        result = AgentTaskResult(success=True, output="done")
        done = store.transition_task("0-m1-agent-models", TaskStatus.COMPLETED, result=result)
        assert done.completed_at is not None
        assert done.result.output == "done"

        state = store.snapshot()
        assert state.active_roles == []
        metrics = state.metrics[AgentRole.MODELS]
        assert metrics.tasks_completed == 1
        assert metrics.success_rate == 1.0
        assert metrics.last_active_at is not None

    def test_failure_updates_metrics(self, store):
        store.add_tasks([_task()])
        store.transition_task("0-m1-agent-models", TaskStatus.ACTIVE)
        failed = store.transition_task(
            "0-m1-agent-models", TaskStatus.FAILED, error="compile error"
        )

        assert failed.error == "compile error"
        metrics = store.snapshot().metrics[AgentRole.MODELS]
        assert metrics.tasks_failed == 1
        assert metrics.success_rate == 0.0

    def test_role_stays_active_while_another_task_runs(self, store):
        store.add_tasks([_task("a"), _task("b")])
        store.transition_task("a", TaskStatus.ACTIVE)
        store.transition_task("b", TaskStatus.ACTIVE)
        store.transition_task("a", TaskStatus.COMPLETED)

        assert store.snapshot().active_roles == [AgentRole.MODELS]

    @pytest.mark.parametrize(
        "path",
        [
            [TaskStatus.COMPLETED],
            [TaskStatus.ACTIVE, TaskStatus.WAITING],
            [TaskStatus.ACTIVE, TaskStatus.COMPLETED, TaskStatus.ACTIVE],
            [TaskStatus.ACTIVE, TaskStatus.FAILED, TaskStatus.COMPLETED],
        ],
    )
    def test_invalid_transitions_raise(self, store, path):
        store.add_tasks([_task()])
        *allowed, forbidden = path
        for status in allowed:
            store.transition_task("0-m1-agent-models", status)

        with pytest.raises(StateTransitionError):
            store.transition_task("0-m1-agent-models", forbidden)

    def test_unknown_task_raises(self, store):
        with pytest.raises(StateStoreError, match="not found"):
            store.transition_task("missing", TaskStatus.ACTIVE)

    def test_duplicate_task_id_rejected(self, store):
        store.add_tasks([_task()])

        with pytest.raises(StateStoreError, match="already exists"):
            store.add_tasks([_task()])
        assert len(store.snapshot().tasks) == 1


class TestMilestoneStatus:
    """Test milestone status changes."""

    def test_start_and_complete_stamp_times(self, store):
        _add_milestone(store)

        started = store.set_milestone_status("m1", MilestoneStatus.IN_PROGRESS)
        assert started.started_at is not None
        assert started.completed_at is None

        completed = store.set_milestone_status("m1", MilestoneStatus.COMPLETED)
        assert completed.completed_at is not None
        assert completed.started_at == started.started_at

    def test_completing_pending_milestone_sets_start(self, store):
        _add_milestone(store)
        completed = store.set_milestone_status("m1", MilestoneStatus.COMPLETED)
        assert completed.started_at is not None

    def test_reset_to_pending_clears_times(self, store):
        _add_milestone(store)
        store.set_milestone_status("m1", MilestoneStatus.COMPLETED)

        reset = store.set_milestone_status("m1", MilestoneStatus.PENDING)
        assert reset.started_at is None
        assert reset.completed_at is None

    def test_completed_cannot_go_back_to_in_progress(self, store):
        _add_milestone(store)
        store.set_milestone_status("m1", MilestoneStatus.COMPLETED)

        with pytest.raises(StateTransitionError):
            store.set_milestone_status("m1", MilestoneStatus.IN_PROGRESS)

    def test_same_status_is_allowed(self, store):
        _add_milestone(store)
        store.set_milestone_status("m1", MilestoneStatus.IN_PROGRESS)
        again = store.set_milestone_status("m1", MilestoneStatus.IN_PROGRESS, error="retry")
        assert again.status == MilestoneStatus.IN_PROGRESS
        assert again.error == "retry"

    def test_unknown_milestone_raises(self, store):
        with pytest.raises(StateStoreError):
            store.set_milestone_status("nope", MilestoneStatus.COMPLETED)


class TestErrorsAndProgress:
    """Test the error log and progress history."""

    def test_error_log_is_capped_in_state_but_not_on_disk(self, state_dir):
        store = StateStore(state_dir=state_dir, error_log_cap=3)
        store.load()
        for i in range(5):
            store.log_error(ErrorLogEntry(phase=0, message=f"error {i}"))

        errors = store.get_errors()
        assert [e.message for e in errors] == ["error 2", "error 3", "error 4"]
        assert [e.message for e in store.get_errors(limit=1)] == ["error 4"]

        text = store.errors_file.read_text()
        assert text.count("[MEDIUM]") == 5
        assert "Phase 0 - system: error 0" in text

    def test_error_log_includes_role_and_stack(self, store):
        store.log_error(
            ErrorLogEntry(
                phase=1,
                role=AgentRole.API,
                message="crashed",
                stack="Traceback: line 1",
                severity=Severity.CRITICAL,
            )
        )

        text = store.errors_file.read_text()
        assert "[CRITICAL] Phase 1 - agent-api: crashed" in text
        assert "Traceback: line 1" in text

    def test_progress_history_is_capped(self, state_dir):
        store = StateStore(state_dir=state_dir, progress_history_cap=2)
        store.load()
        for fraction in (0.1, 0.2, 0.5):
            store.record_progress(
                ProgressSnapshot(phase=0, phase_progress=fraction, overall_progress=fraction / 6)
            )

        history = store.get_progress_history()
        assert [p.phase_progress for p in history] == [0.2, 0.5]

        narrative = store.progress_file.read_text()
        assert narrative.count("## ") == 3
        assert "**Phase Progress**: 50.0%" in narrative


class TestLessons:
    """Test lesson recording and filtering."""

    def test_lessons_are_filtered(self, store):
        store.add_lesson(
            Lesson(phase=0, role=AgentRole.API, category=LessonCategory.SUCCESS, description="a")
        )
        store.add_lesson(Lesson(phase=1, category=LessonCategory.FAILURE, description="b"))
        store.add_lesson(
            Lesson(phase=1, role=AgentRole.API, category=LessonCategory.PATTERN, description="c")
        )

        assert [l.description for l in store.get_lessons()] == ["a", "b", "c"]
        assert [l.description for l in store.get_lessons(phase=1)] == ["b", "c"]
        assert [l.description for l in store.get_lessons(role=AgentRole.API)] == ["a", "c"]
        assert [
            l.description for l in store.get_lessons(category=LessonCategory.FAILURE)
        ] == ["b"]

    def test_lessons_are_persisted(self, state_dir, store):
        store.add_lesson(Lesson(phase=0, category=LessonCategory.OPTIMIZATION, description="x"))

        reloaded = StateStore(state_dir=state_dir)
        reloaded.load()
        lessons = reloaded.get_lessons()
        assert len(lessons) == 1
        assert lessons[0].category == LessonCategory.OPTIMIZATION
        assert isinstance(lessons[0].timestamp, datetime)


class TestMaintenance:
    """Test cleanup, backups and restore."""

    def test_cleanup_drops_old_entries(self, state_dir):
        now = datetime(2024, 6, 1, tzinfo=timezone.utc)
        store = StateStore(state_dir=state_dir, clock=lambda: now)
        store.load()
        store.log_error(ErrorLogEntry(phase=0, message="old", timestamp=now - timedelta(days=40)))
        store.log_error(ErrorLogEntry(phase=0, message="new", timestamp=now - timedelta(days=1)))
        store.record_progress(
            ProgressSnapshot(
                phase=0,
                phase_progress=0.1,
                overall_progress=0.0,
                timestamp=now - timedelta(days=8),
            )
        )

        removed = store.cleanup()

        assert removed == {"errors_removed": 1, "progress_removed": 1}
        assert [e.message for e in store.get_errors()] == ["new"]
        assert store.get_progress_history() == []

    def test_backup_and_restore(self, store):
        backup = store.create_backup()
        store.update(lambda s: setattr(s, "current_phase", 3))

        assert store.list_backups() == [backup]
        restored = store.restore_backup(backup)

        assert restored.current_phase == 0
        assert store.snapshot().current_phase == 0

    def test_backups_do_not_overwrite_each_other(self, store):
        first = store.create_backup()
        second = store.create_backup()
        assert first != second
        assert len(store.list_backups()) == 2

    def test_restore_missing_backup_raises(self, store, tmp_path):
        with pytest.raises(StateStoreError, match="Backup not found"):
            store.restore_backup(tmp_path / "nope.json")
