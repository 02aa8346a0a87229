"""Tests for the control surface."""

import threading

import pytest

from conductor.core import AgentRole, AgentTaskResult, DashboardData, TaskStatus
from conductor.orchestrator.control import ControlSurface
from tests.mocks import ScriptedAgent


@pytest.fixture
def api_agent():
    return ScriptedAgent(AgentRole.API)


@pytest.fixture
def control(make_engine, api_agent, retry, recovery):
    engine = make_engine([api_agent])
    engine.phases.ensure_current_phase_initialized()
    return ControlSurface(engine, engine.phases, retry, recovery)


class TestStatusAndReport:
    """Test read-only operations."""

    def test_status(self, control):
        result = control.status()

        assert result.success
        data = result.data
        assert data["running"] is False
        assert data["paused"] is False
        assert data["current_phase"] == {"number": 0, "name": "Initialization", "progress": 0.0}
        assert data["waiting_tasks"] == 3
        assert data["active_tasks"] == 0
        assert data["active_roles"] == []

    def test_report(self, control):
        control.phases.initialize_phase(0)

        result = control.generate_report()

        assert result.success
        report = result.data
        assert report["milestones"]["total"] == 4
        assert report["milestones"]["pending"] == 4
        assert report["tasks"]["total"] == 3
        assert report["tasks"]["superseded"] == 3
        assert [a["role"] for a in report["agents"]] == ["agent-api"]
        assert report["estimated_completion"] is None
        assert report["retry_statistics"]["total_operations"] == 0
        assert report["checkpoint_statistics"]["total_checkpoints"] == 0

    def test_dashboard_data(self, control):
        result = control.get_dashboard_data()
        assert result.success
        assert isinstance(result.data, DashboardData)


class TestLifecycle:
    """Test start, stop and resume."""

    def test_stop_when_not_running(self, control):
        result = control.stop()
        assert not result.success
        assert result.error == "Orchestrator is not running"

    def test_resume_when_not_paused(self, control):
        assert not control.resume().success

    def test_start_twice(self, control):
        control.engine.tick_interval = 0.05
        try:
            assert control.start().success
            second = control.start()
            assert not second.success
            assert second.message == "Orchestrator is already running"
        finally:
            assert control.stop().success
            control.engine.wait(timeout=5)


class TestPhaseControl:
    """Test advance, rollback and exit tests."""

    def test_advance_incomplete_phase(self, control):
        result = control.advance()
        assert not result.success
        assert result.message.startswith("Cannot advance")

    def test_rollback_at_phase_zero(self, control):
        result = control.rollback()
        assert not result.success
        assert result.message == "Cannot rollback: already at Phase 0"

    def test_run_tests_passing(self, control, exit_tests):
        result = control.run_tests()
        assert result.success
        assert result.message == "Tests passed for Phase 0"
        assert result.data["command"] == "npm test -- tests/integration/health.test.ts"
        assert exit_tests.calls == [0]

    def test_run_tests_failing(self, control, exit_tests):
        exit_tests.passed = False
        result = control.run_tests()
        assert not result.success
        assert result.error == "exit test failed"
        assert result.data["passed"] is False


class TestDeploy:
    """Test running a role's next task on demand."""

    def test_deploy_bypasses_dependencies(self, control, api_agent, store):
        result = control.deploy("api")

        assert result.success
        assert result.message == "Deployed agent-api for task 0-phase-0-health-agent-api"
        assert result.data["status"] == "completed"
        assert api_agent.executed == ["0-phase-0-health-agent-api"]
        models_task = store.snapshot().get_task("0-phase-0-database-agent-models")
        assert models_task.status == TaskStatus.WAITING

    def test_no_pending_tasks(self, control):
        control.deploy(AgentRole.API)
        result = control.deploy(AgentRole.API)
        assert not result.success
        assert result.message == "No pending tasks for agent-api in current phase"

    def test_unregistered_agent(self, control):
        result = control.deploy("models")
        assert not result.success
        assert result.message == "Agent agent-models not found"

    def test_busy_agent(self, control, api_agent):
        api_agent.active = True
        result = control.deploy("agent-api")
        assert not result.success
        assert result.message == "Agent agent-api is busy"

    def test_ticks_are_skipped_while_deploying(self, control, api_agent):
        """Test that a background tick cannot dispatch during a manual deploy."""
        entered = threading.Event()
        release = threading.Event()

        def slow(task):
            entered.set()
            release.wait(5)
            return AgentTaskResult(success=True)

        api_agent.outcomes.append(slow)
        results = []
        worker = threading.Thread(target=lambda: results.append(control.deploy("api")))
        worker.start()
        try:
            assert entered.wait(5)
            assert control.engine.tick() is False
        finally:
            release.set()
            worker.join(5)

        assert results[0].success
        assert api_agent.executed == ["0-phase-0-health-agent-api"]
        assert control.engine.tick() is True

    def test_unknown_role_is_reported(self, control):
        result = control.deploy("frontend")
        assert not result.success
        assert result.message == "Failed to deploy agent"
        assert "Unknown agent role" in result.error


class TestRecoveryControls:
    """Test breaker, checkpoint and statistics operations."""

    def test_reset_unknown_breaker(self, control):
        result = control.reset_circuit_breaker("agent-api")
        assert not result.success
        assert control.reset_circuit_breaker().data == {"reset": 0}

    def test_checkpoint_statistics_and_clear(self, control):
        control.deploy("api")

        stats = control.get_checkpoint_statistics()
        assert stats.data["total_checkpoints"] == 1
        assert stats.data["checkpoints"][0].startswith("Checkpoint cp-")

        cleared = control.clear_checkpoints()
        assert cleared.data == {"removed": 1}
        assert control.get_checkpoint_statistics().data["checkpoints"] == []

    def test_retry_statistics(self, control):
        control.deploy("api")
        data = control.get_retry_statistics().data
        assert data["total_operations"] == 1
        assert data["successful_operations"] == 1
