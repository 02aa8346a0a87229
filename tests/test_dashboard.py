"""Tests for dashboard data collection and rendering."""

from datetime import timedelta

import pytest

from conductor.core import (
    AgentRole,
    ErrorLogEntry,
    Lesson,
    LessonCategory,
    MilestoneStatus,
    Severity,
)
from conductor.orchestrator.dashboard import (
    DASHBOARD_FILE,
    DashboardGenerator,
    assess_health,
    collect_dashboard_data,
    progress_bar,
)
from conductor.orchestrator.retry_policy import RetryPolicy, RetryPolicyEngine


def _error(severity):
    return ErrorLogEntry(phase=0, message="boom", severity=severity)


class TestHealth:
    """Test the coarse health status."""

    @pytest.mark.parametrize(
        "severities,breakers,paused,expected",
        [
            ([], [], False, "healthy"),
            ([Severity.LOW, Severity.MEDIUM], [], False, "healthy"),
            ([], [], True, "degraded"),
            ([Severity.HIGH], [], False, "degraded"),
            ([Severity.CRITICAL], [], False, "critical"),
            ([], ["agent-api"], True, "critical"),
        ],
    )
    def test_assess_health(self, severities, breakers, paused, expected):
        errors = [_error(s) for s in severities]
        assert assess_health(errors, breakers, paused) == expected

    @pytest.mark.parametrize(
        "fraction,expected",
        [
            (0.0, "[" + "-" * 20 + "]"),
            (0.5, "[" + "#" * 10 + "-" * 10 + "]"),
            (1.0, "[" + "#" * 20 + "]"),
            (1.7, "[" + "#" * 20 + "]"),
            (-0.2, "[" + "-" * 20 + "]"),
        ],
    )
    def test_progress_bar(self, fraction, expected):
        assert progress_bar(fraction) == expected

    def test_progress_bar_width(self):
        assert progress_bar(0.25, width=4) == "[#---]"


class TestCollectDashboardData:
    """Test gathering dashboard data from state."""

    def test_fresh_state(self, store, phase_manager):
        data = collect_dashboard_data(store, phase_manager)

        assert data.current_phase == 0
        assert data.phase_name == "Initialization"
        assert data.phase_progress == 0.0
        assert data.latest_progress is None
        assert data.recent_milestones == []
        assert data.system_health.status == "healthy"
        assert data.system_health.running is False

    def test_errors_and_lessons_are_recent(self, store, phase_manager):
        for i in range(7):
            store.log_error(ErrorLogEntry(phase=0, message=f"error {i}"))
        store.add_lesson(
            Lesson(phase=0, category=LessonCategory.FAILURE, description="Flaky migration")
        )

        data = collect_dashboard_data(store, phase_manager, paused=True)

        assert [e.message for e in data.recent_errors] == [f"error {i}" for i in range(2, 7)]
        assert data.recent_lessons[0].description == "Flaky migration"
        assert data.system_health.recent_error_count == 5
        assert data.system_health.status == "degraded"

    def test_completed_milestones_newest_first(self, store, phase_manager):
        phase_manager.initialize_phase(0)
        for milestone_id in ("phase-0-docker", "phase-0-dependencies"):
            store.set_milestone_status(milestone_id, MilestoneStatus.IN_PROGRESS)
            store.set_milestone_status(milestone_id, MilestoneStatus.COMPLETED)

        data = collect_dashboard_data(store, phase_manager)

        ids = [m.id for m in data.recent_milestones]
        assert set(ids) == {"phase-0-docker", "phase-0-dependencies"}
        assert data.recent_milestones[0].completed_at >= data.recent_milestones[1].completed_at

    def test_open_breakers_are_critical(self, store, phase_manager):
        retry = RetryPolicyEngine(
            policy=RetryPolicy(
                max_attempts=1, base_delay=0.0, max_delay=0.0, circuit_breaker_threshold=1
            ),
            sleep=lambda seconds: None,
        )

        def fail():
            raise RuntimeError("service unavailable")

        with pytest.raises(RuntimeError):
            retry.execute_with_retry("agent-api", fail)

        data = collect_dashboard_data(store, phase_manager, retry=retry, running=True)

        assert data.system_health.open_circuit_breakers == ["agent-api"]
        assert data.system_health.status == "critical"

    def test_uptime_uses_clock(self, store, phase_manager):
        started = store.snapshot().started_at
        data = collect_dashboard_data(store, phase_manager, now=started + timedelta(hours=2))
        assert data.system_health.uptime_seconds == 7200.0


class TestDashboardGenerator:
    """Test markdown rendering."""

    def test_render_sections(self, store, phase_manager, state_dir):
        phase_manager.initialize_phase(0)
        store.set_milestone_status("phase-0-docker", MilestoneStatus.IN_PROGRESS)
        store.set_milestone_status("phase-0-docker", MilestoneStatus.COMPLETED)
        store.log_error(
            ErrorLogEntry(
                phase=0, role=AgentRole.API, message="route crashed", severity=Severity.HIGH
            )
        )
        store.add_lesson(
            Lesson(
                phase=0,
                category=LessonCategory.SUCCESS,
                description="Schema first",
                impact="Fewer migrations",
            )
        )
        generator = DashboardGenerator(state_dir, phase_manager)

        text = generator.render(collect_dashboard_data(store, phase_manager), store.snapshot())

        for heading in (
            "# Conductor Dashboard",
            "## System Health",
            "## Current Phase",
            "## Overall Progress",
            "## Agents",
            "## Recent Milestones",
            "## Recent Lessons",
            "## Recent Errors",
        ):
            assert heading in text
        assert "**Status:** DEGRADED" in text
        assert "**Phase 0: Initialization**" in text
        assert "- [x] **Docker Environment**" in text
        assert "- [ ] **Database Schema**" in text
        assert "- [~] Phase 0: Initialization" in text
        assert "- [ ] Phase 1: Core Requirements Engine" in text
        assert "- (success) **Schema first**" in text
        assert "*Impact: Fewer migrations*" in text
        assert "- [HIGH] **Phase 0 - api**" in text
        assert "route crashed" in text

    def test_render_without_history(self, store, phase_manager, state_dir):
        generator = DashboardGenerator(state_dir, phase_manager)

        text = generator.render(collect_dashboard_data(store, phase_manager))

        assert "*No milestones completed yet*" in text
        assert "## Recent Lessons" not in text
        assert "## Recent Errors" not in text
        assert "### Tasks" not in text

    def test_generate_writes_file(self, store, phase_manager, state_dir):
        generator = DashboardGenerator(state_dir, phase_manager)

        path = generator.generate(collect_dashboard_data(store, phase_manager))

        assert path == state_dir / DASHBOARD_FILE
        assert path.read_text().startswith("# Conductor Dashboard")

    def test_generate_logs_write_failures(self, store, phase_manager, tmp_path):
        """Test that an unwritable location does not raise."""
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        generator = DashboardGenerator(blocker, phase_manager)

        path = generator.generate(collect_dashboard_data(store, phase_manager))

        assert not path.exists()
