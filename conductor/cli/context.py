"""Composition root.

Builds every orchestrator component from configuration and wires them
together. Nothing in the library reaches for a global; whoever needs an
orchestrator calls :func:`build_orchestrator`, and tests pass their own
agents, exit-test runner or sleep function.
"""

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

import click

from conductor.agents import AGENT_CLASSES, Agent, AgentRegistry, SecurityAgent
from conductor.config.loader import CONFIG_DIR_NAME, get_config_paths, load_config
from conductor.config.models import ConductorConfig, ProbeConfig
from conductor.core.command import CommandRunner
from conductor.core.exceptions import ConfigurationError
from conductor.core.milestone_validator import (
    CommandProbe,
    HttpProbe,
    MilestoneValidator,
    Probe,
    ProbeKey,
    TestSuiteProbe,
    build_default_probes,
)
from conductor.core.models import AgentRole
from conductor.core.phase_registry import PhaseRegistry
from conductor.core.recovery import RecoveryManager
from conductor.core.state_store import StateStore
from conductor.orchestrator.control import ControlSurface
from conductor.orchestrator.dashboard import DashboardGenerator
from conductor.orchestrator.engine import OrchestratorEngine
from conductor.orchestrator.events import EventBus
from conductor.orchestrator.exit_tests import ExitTestRunner, ShellExitTestRunner
from conductor.orchestrator.phase_manager import PhaseManager
from conductor.orchestrator.retry_policy import RetryPolicyEngine
from conductor.tracking.activity_logger import ActivityLogger
from conductor.tracking.log_setup import setup_logging

logger = logging.getLogger(__name__)

CHECKPOINT_DIR_NAME = "checkpoints"


@dataclass
class Orchestrator:
    """A fully wired orchestrator."""

    config: ConductorConfig
    project_root: Path
    store: StateStore
    registry: PhaseRegistry
    validator: MilestoneValidator
    bus: EventBus
    retry: RetryPolicyEngine
    recovery: RecoveryManager
    phases: PhaseManager
    agents: AgentRegistry
    engine: OrchestratorEngine
    control: ControlSurface
    activity: ActivityLogger


def build_probes(
    config: ConductorConfig, runner: CommandRunner
) -> Dict[ProbeKey, Probe]:
    """Standard probes (when enabled) overlaid with configured ones."""
    validation = config.validation
    probes: Dict[ProbeKey, Probe] = {}
    if validation.default_probes:
        probes.update(
            build_default_probes(
                base_url=validation.base_url,
                test_command=validation.test_command,
                runner=runner,
            )
        )
    for probe_config in validation.probes:
        probes[(probe_config.phase, probe_config.milestone)] = _probe_from_config(
            probe_config, validation.test_command, runner
        )
    return probes


def _probe_from_config(
    probe_config: ProbeConfig, test_command: str, runner: CommandRunner
) -> Probe:
    if probe_config.type == "command":
        return CommandProbe(
            probe_config.target,
            expect_stdout=probe_config.expect,
            timeout=probe_config.timeout,
            runner=runner,
        )
    if probe_config.type == "http":
        json_field, expected_value = None, None
        if probe_config.expect:
            if "=" not in probe_config.expect:
                raise ConfigurationError(
                    f"HTTP probe for {probe_config.milestone} expects 'field=value', "
                    f"got '{probe_config.expect}'"
                )
            json_field, expected_value = probe_config.expect.split("=", 1)
        return HttpProbe(
            probe_config.target,
            json_field=json_field,
            expected_value=expected_value,
            timeout=probe_config.timeout,
        )
    return TestSuiteProbe(
        probe_config.target,
        command_template=test_command,
        timeout=probe_config.timeout,
        runner=runner,
    )


def build_agents(config: ConductorConfig, project_root: Path) -> List[Agent]:
    """Instantiate one agent per enabled role."""
    agents: List[Agent] = []
    for role in AgentRole:
        settings = config.agents.for_role(role)
        if not settings.enabled:
            logger.debug("Agent %s disabled", role.value)
            continue
        agent_cls = AGENT_CLASSES[role]
        kwargs = dict(
            command=settings.command,
            working_dir=project_root,
            timeout=settings.timeout,
        )
        if agent_cls is SecurityAgent:
            agents.append(SecurityAgent(design_docs=settings.design_docs, **kwargs))
        else:
            agents.append(agent_cls(**kwargs))
    return agents


def build_orchestrator(
    config: ConductorConfig,
    project_root: Optional[Path] = None,
    agents: Optional[Iterable[Agent]] = None,
    exit_tests: Optional[ExitTestRunner] = None,
    validator: Optional[MilestoneValidator] = None,
    registry: Optional[PhaseRegistry] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Orchestrator:
    """
    Wire an orchestrator together.

    Args:
        config: Validated configuration
        project_root: Directory relative paths in the configuration are
            resolved against (default: cwd)
        agents: Agents to register (default: one per enabled role)
        exit_tests: Exit-test runner (default: shell runner from config)
        validator: Milestone validator (default: probes from config)
        registry: Phase definitions (default: built-in phases)
        sleep: Sleep function used between retries

    Returns:
        The composed orchestrator, with state loaded
    """
    project_root = Path(project_root) if project_root else Path.cwd()
    state_dir = config.get_state_dir(project_root)
    registry = registry or PhaseRegistry()

    store = StateStore(
        state_dir=state_dir,
        phase_numbers=registry.numbers,
        error_log_cap=config.store.error_log_cap,
        progress_history_cap=config.store.progress_history_cap,
        auto_advance=config.engine.auto_advance,
    )
    store.load()

    runner = CommandRunner(working_dir=project_root)
    if validator is None:
        validator = MilestoneValidator(probes=build_probes(config, runner))
    if exit_tests is None:
        exit_tests = ShellExitTestRunner(
            runner=CommandRunner(working_dir=config.get_working_dir(project_root)),
            timeout=config.exit_tests.timeout,
            enabled=config.exit_tests.enabled,
        )

    bus = EventBus()
    activity = ActivityLogger(config.get_log_dir(project_root))
    activity.attach(bus)

    retry = RetryPolicyEngine(policy=config.retry.to_policy(), sleep=sleep)
    recovery = RecoveryManager(
        store,
        max_checkpoints=config.recovery.max_checkpoints,
        checkpoint_dir=(
            state_dir / CHECKPOINT_DIR_NAME if config.recovery.persist_checkpoints else None
        ),
        retry_engine=retry,
    )
    phases = PhaseManager(
        store,
        registry=registry,
        validator=validator,
        exit_tests=exit_tests,
        recovery=recovery,
        bus=bus,
    )

    agent_registry = AgentRegistry(
        agents if agents is not None else build_agents(config, project_root)
    )
    engine = OrchestratorEngine(
        store,
        phases,
        agent_registry,
        retry,
        recovery,
        bus,
        tick_interval=config.engine.tick_interval,
        max_parallel_tasks=config.engine.max_parallel_tasks,
        dispatch_order=config.engine.dispatch_order,
        breaker_scope=config.retry.breaker_scope,
        dashboard=(
            DashboardGenerator(state_dir, phases) if config.engine.generate_dashboard else None
        ),
    )
    control = ControlSurface(engine, phases, retry, recovery)

    return Orchestrator(
        config=config,
        project_root=project_root,
        store=store,
        registry=registry,
        validator=validator,
        bus=bus,
        retry=retry,
        recovery=recovery,
        phases=phases,
        agents=agent_registry,
        engine=engine,
        control=control,
        activity=activity,
    )


def find_project_root(config_path: Optional[Path] = None) -> Path:
    """Directory holding ``.conductor``, or the config file's directory."""
    if config_path is None:
        config_path = get_config_paths()["project"]
    if config_path is None:
        return Path.cwd()
    config_path = Path(config_path).resolve()
    if config_path.parent.name == CONFIG_DIR_NAME:
        return config_path.parent.parent
    return config_path.parent


def open_project(
    config_path: Optional[Path] = None, configure_logging: bool = True, verbose: bool = False
) -> Orchestrator:
    """
    Load configuration for the current project and build its orchestrator.

    Args:
        config_path: Explicit configuration file (default: searched upwards)
        configure_logging: Install the console and file log handlers
        verbose: Log at DEBUG regardless of the configured level

    Raises:
        ConfigurationError: If the configuration is invalid
    """
    config = load_config(project_config_path=config_path)
    project_root = find_project_root(config_path)
    if configure_logging:
        logging_config = config.logging
        if verbose:
            logging_config = logging_config.model_copy(update={"level": "DEBUG"})
        setup_logging(logging_config, log_dir=config.get_log_dir(project_root))
    return build_orchestrator(config, project_root=project_root)


def orchestrator_from_context(ctx: click.Context) -> Orchestrator:
    """Build the orchestrator for a CLI invocation from the global options."""
    obj = ctx.find_object(dict) or {}
    return open_project(obj.get("config"), verbose=obj.get("verbose", False))
