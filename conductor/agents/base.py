"""Agent contract and the role-indexed agent registry."""

import logging
import threading
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from conductor.core.command import CommandRunner, ShellResult
from conductor.core.exceptions import AgentBusyError, ExecutionError
from conductor.core.models import AgentRole, AgentTask, AgentTaskResult, TaskStatus


class Agent(ABC):
    """Executor for the tasks of a single role."""

    role: AgentRole
    name: str = "Agent"
    description: str = ""
    dependencies: Tuple[AgentRole, ...] = ()
    """Roles whose tasks in the same phase must finish first"""

    @abstractmethod
    def is_active(self) -> bool:
        """Whether the agent is currently running a task."""

    @abstractmethod
    def execute(self, task: AgentTask) -> AgentTaskResult:
        """Run a task.

        Business outcomes (including conflicts) are reported in the result.
        Raised exceptions are treated as execution failures and classified
        for retry and recovery.
        """

    @abstractmethod
    def get_capabilities(self, phase: int) -> List[str]:
        """Describe what the agent does in a phase."""

    @abstractmethod
    def estimate_task_duration(self, task: AgentTask) -> float:
        """Estimated task duration in seconds."""


class BaseAgent(Agent):
    """
    Common agent behavior.

    Guards against concurrent use, validates that a task belongs to this
    agent, and delegates the actual work to :meth:`perform_task`. When a
    ``command`` is configured the agent runs it for each task; the command
    string may reference ``{task_id}``, ``{phase}``, ``{milestone}`` and
    ``{role}``.
    """

    capabilities: Dict[int, List[str]] = {}
    base_duration: float = 60.0
    phase_multipliers: Dict[int, float] = {}

    def __init__(
        self,
        command: Optional[str] = None,
        working_dir: Optional[Path] = None,
        timeout: int = 1800,
        runner: Optional[CommandRunner] = None,
    ):
        """Initialize the agent.

        Args:
            command: Command run for each task (None for dry-run mode)
            working_dir: Working directory for commands
            timeout: Command timeout in seconds
            runner: Command runner (built from working_dir if None)
        """
        self.command = command
        self.timeout = timeout
        self.runner = runner or CommandRunner(working_dir=working_dir, default_timeout=timeout)
        self.logger = logging.getLogger(f"conductor.agents.{self.role.short_name}")
        self._busy_lock = threading.Lock()
        self._active = False

    def is_active(self) -> bool:
        return self._active

    def execute(self, task: AgentTask) -> AgentTaskResult:
        """Run a task, refusing a second concurrent one.

        Raises:
            AgentBusyError: If the agent is already running a task
            ExecutionError: If the task is not for this agent or not active
        """
        with self._busy_lock:
            if self._active:
                raise AgentBusyError(f"{self.name} is already executing a task")
            self._active = True

        started = time.time()
        try:
            self.validate_task(task)
            self.logger.info("Performing task %s: %s", task.id, task.description)
            result = self.perform_task(task)
            if not result.duration_seconds:
                result.duration_seconds = time.time() - started
            return result
        finally:
            with self._busy_lock:
                self._active = False

    def validate_task(self, task: AgentTask) -> None:
        if task.role != self.role:
            raise ExecutionError(
                f"Task {task.id} is for {task.role.value}, not {self.role.value}"
            )
        if task.status != TaskStatus.ACTIVE:
            raise ExecutionError(
                f"Task {task.id} must be active to execute (is {task.status.value})"
            )

    @abstractmethod
    def perform_task(self, task: AgentTask) -> AgentTaskResult:
        """Do the work for a validated task."""

    def get_capabilities(self, phase: int) -> List[str]:
        return list(self.capabilities.get(phase, []))

    def estimate_task_duration(self, task: AgentTask) -> float:
        return self.base_duration * self.phase_multipliers.get(task.phase, 1.0)

    def run_task_command(self, task: AgentTask) -> ShellResult:
        """Run the configured command for a task."""
        assert self.command is not None
        command = self.command.format(
            task_id=task.id,
            phase=task.phase,
            milestone=task.milestone,
            role=task.role.short_name,
        )
        return self.runner.run(command, timeout=self.timeout)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} role={self.role.value}>"


class AgentRegistry:
    """Fixed table of agents indexed by role.

    Populated once at construction; every role has a slot, which is empty
    when no agent was provided for it.
    """

    def __init__(self, agents: Iterable[Agent] = ()):
        self._table: Dict[AgentRole, Optional[Agent]] = {role: None for role in AgentRole}
        for agent in agents:
            if self._table[agent.role] is not None:
                raise ValueError(f"Duplicate agent for role {agent.role.value}")
            self._table[agent.role] = agent

    def get(self, role: AgentRole) -> Optional[Agent]:
        return self._table[role]

    def __getitem__(self, role: AgentRole) -> Agent:
        agent = self._table[role]
        if agent is None:
            raise KeyError(f"No agent registered for role {role.value}")
        return agent

    def __contains__(self, role: object) -> bool:
        return isinstance(role, AgentRole) and self._table.get(role) is not None

    def roles(self) -> List[AgentRole]:
        return [role for role, agent in self._table.items() if agent is not None]

    def __iter__(self) -> Iterator[Agent]:
        return (agent for agent in self._table.values() if agent is not None)

    def __len__(self) -> int:
        return len(self.roles())
