"""Tests for phase definitions, roles and status transitions."""

import pytest

from conductor.core import (
    DEFAULT_PHASES,
    AgentRole,
    ConflictFinding,
    ConflictMarker,
    MilestoneStatus,
    PhaseRegistry,
    Severity,
    TaskStatus,
    get_valid_next_states,
    is_terminal_state,
    is_valid_transition,
)
from conductor.core.task_state import is_valid_milestone_transition
from tests.mocks import milestone, phase


class TestDefaultPhases:
    """Test the built-in phase table."""

    def test_six_contiguous_phases(self):
        registry = PhaseRegistry()
        assert registry.numbers == [0, 1, 2, 3, 4, 5]
        assert registry.max_phase == 5
        assert len(registry) == 6
        assert 3 in registry
        assert 6 not in registry

    def test_phase_zero(self):
        phase_zero = PhaseRegistry().get(0)

        assert phase_zero.name == "Initialization"
        assert [m.id for m in phase_zero.milestones] == [
            "phase-0-docker",
            "phase-0-database",
            "phase-0-health",
            "phase-0-dependencies",
        ]
        assert phase_zero.required_roles == [AgentRole.MODELS, AgentRole.API, AgentRole.TEST]
        assert phase_zero.test_command == "npm test -- tests/integration/health.test.ts"
        assert phase_zero.dependencies == ()

    def test_dependencies_point_backwards(self):
        for definition in DEFAULT_PHASES:
            assert all(dep < definition.number for dep in definition.dependencies)
        assert PhaseRegistry().get(5).dependencies == (1, 2, 3, 4)

    def test_find_milestone(self):
        registry = PhaseRegistry()
        found = registry.find_milestone("phase-1-crud")
        assert found is not None
        assert found.required_roles == (AgentRole.API,)
        assert registry.find_milestone("phase-9-nothing") is None

    def test_unknown_phase_raises(self):
        with pytest.raises(KeyError, match="Phase 7 is not defined"):
            PhaseRegistry().get(7)

    def test_definitions_are_frozen(self):
        definition = PhaseRegistry().get(0)
        with pytest.raises(Exception):
            definition.name = "changed"


class TestCustomRegistry:
    """Test registry validation."""

    def test_phases_are_sorted(self):
        registry = PhaseRegistry([phase(1, dependencies=[0]), phase(0)])
        assert [p.number for p in registry] == [0, 1]

    def test_gap_in_numbers_rejected(self):
        with pytest.raises(ValueError, match="contiguous"):
            PhaseRegistry([phase(0), phase(2)])

    def test_forward_dependency_rejected(self):
        with pytest.raises(ValueError, match="cannot depend"):
            PhaseRegistry([phase(0, dependencies=[1]), phase(1)])

    def test_duplicate_milestone_rejected(self):
        with pytest.raises(ValueError, match="Duplicate milestone"):
            PhaseRegistry([phase(0, [milestone("m")]), phase(1, [milestone("m")])])

    def test_empty_registry_rejected(self):
        with pytest.raises(ValueError):
            PhaseRegistry([])


class TestRoles:
    """Test role parsing and severity ordering."""

    @pytest.mark.parametrize("text", ["api", "agent-api", " API ", "Agent-Api"])
    def test_parse_role(self, text):
        assert AgentRole.parse(text) is AgentRole.API

    def test_parse_unknown_role(self):
        with pytest.raises(ValueError, match="Unknown agent role"):
            AgentRole.parse("frontend")

    def test_short_name(self):
        assert AgentRole.SECURITY.short_name == "security"

    def test_conflict_highest_severity_includes_findings(self):
        marker = ConflictMarker(
            conflict_type="security_vulnerability",
            severity=Severity.MEDIUM,
            findings=[
                ConflictFinding(id="V1", severity=Severity.LOW, title="a"),
                ConflictFinding(id="V2", severity=Severity.CRITICAL, title="b"),
            ],
        )
        assert marker.highest_severity == Severity.CRITICAL


class TestTransitions:
    """Test task and milestone transition tables."""

    def test_task_lifecycle(self):
        assert is_valid_transition(TaskStatus.WAITING, TaskStatus.ACTIVE)
        assert is_valid_transition(TaskStatus.ACTIVE, TaskStatus.COMPLETED)
        assert is_valid_transition(TaskStatus.ACTIVE, TaskStatus.FAILED)

        assert not is_valid_transition(TaskStatus.WAITING, TaskStatus.COMPLETED)
        assert not is_valid_transition(TaskStatus.FAILED, TaskStatus.WAITING)
        assert not is_valid_transition(TaskStatus.COMPLETED, TaskStatus.ACTIVE)

    def test_terminal_states(self):
        assert is_terminal_state(TaskStatus.COMPLETED)
        assert is_terminal_state(TaskStatus.FAILED)
        assert not is_terminal_state(TaskStatus.ACTIVE)
        assert get_valid_next_states(TaskStatus.WAITING) == [TaskStatus.ACTIVE]

    def test_milestone_transitions(self):
        assert is_valid_milestone_transition(MilestoneStatus.PENDING, MilestoneStatus.COMPLETED)
        assert is_valid_milestone_transition(MilestoneStatus.COMPLETED, MilestoneStatus.PENDING)
        assert is_valid_milestone_transition(
            MilestoneStatus.COMPLETED, MilestoneStatus.COMPLETED
        )
        assert not is_valid_milestone_transition(
            MilestoneStatus.COMPLETED, MilestoneStatus.IN_PROGRESS
        )
