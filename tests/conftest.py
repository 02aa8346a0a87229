"""Shared pytest fixtures and utilities for Conductor tests."""

import logging
from pathlib import Path
from typing import Callable, List, Optional, Sequence

import pytest

from conductor.agents import Agent, AgentRegistry
from conductor.core.milestone_validator import MilestoneValidator
from conductor.core.phase_registry import PhaseRegistry
from conductor.core.recovery import RecoveryManager
from conductor.core.state_store import StateStore
from conductor.orchestrator.engine import OrchestratorEngine
from conductor.orchestrator.events import EventBus, OrchestratorEvent
from conductor.orchestrator.phase_manager import PhaseManager
from conductor.orchestrator.retry_policy import RetryPolicy, RetryPolicyEngine
from tests.mocks import FakeExitTestRunner


# ============================================================================
# Logging
# ============================================================================


@pytest.fixture(autouse=True)
def reset_conductor_logger():
    """Undo handlers installed by setup_logging so tests stay isolated."""
    yield
    logger = logging.getLogger("conductor")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


# ============================================================================
# Directory and Store Fixtures
# ============================================================================


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    """Path of a not yet created .conductor directory."""
    return tmp_path / ".conductor"


@pytest.fixture
def store(state_dir: Path) -> StateStore:
    """Loaded state store with a fresh state document."""
    store = StateStore(state_dir=state_dir)
    store.load()
    return store


# ============================================================================
# Orchestrator Components
# ============================================================================


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def events(bus: EventBus) -> List[OrchestratorEvent]:
    """Every event published on the bus, in order."""
    received: List[OrchestratorEvent] = []
    bus.subscribe_all(received.append)
    return received


@pytest.fixture
def retry() -> RetryPolicyEngine:
    """Retry engine that never sleeps."""
    policy = RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0)
    return RetryPolicyEngine(policy=policy, sleep=lambda seconds: None)


@pytest.fixture
def recovery(store: StateStore, retry: RetryPolicyEngine) -> RecoveryManager:
    return RecoveryManager(store, max_checkpoints=5, retry_engine=retry)


@pytest.fixture
def exit_tests() -> FakeExitTestRunner:
    return FakeExitTestRunner()


@pytest.fixture
def validator() -> MilestoneValidator:
    """Validator without probes: started milestones pass."""
    return MilestoneValidator()


@pytest.fixture
def phase_manager(store, validator, exit_tests, recovery, bus) -> PhaseManager:
    return PhaseManager(
        store,
        validator=validator,
        exit_tests=exit_tests,
        recovery=recovery,
        bus=bus,
    )


@pytest.fixture
def make_engine(
    store, phase_manager, validator, exit_tests, retry, recovery, bus
) -> Callable[..., OrchestratorEngine]:
    """Factory for engines over the shared store.

    Pass ``registry`` to drive a custom phase table; other keyword
    arguments go to the engine.
    """

    def factory(
        agents: Sequence[Agent],
        registry: Optional[PhaseRegistry] = None,
        **kwargs,
    ) -> OrchestratorEngine:
        phases = phase_manager
        if registry is not None:
            phases = PhaseManager(
                store,
                registry=registry,
                validator=validator,
                exit_tests=exit_tests,
                recovery=recovery,
                bus=bus,
            )
        return OrchestratorEngine(
            store, phases, AgentRegistry(agents), retry, recovery, bus, **kwargs
        )

    return factory
