"""Milestone validation.

A milestone is only marked complete once every bound task is done AND the
validator agrees. The validator runs, in order and stopping at the first
failure:

1. a status check (the milestone must have started),
2. the milestone's named custom check, looked up in a registry,
3. a probe from a table keyed on ``(phase, milestone_id)``.

Probes are small callables returning a boolean: run a command, hit an HTTP
endpoint, run a test suite.
"""

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import httpx

from .command import CommandRunner
from .models import AgentTask, Milestone, MilestoneStatus, TaskStatus

logger = logging.getLogger(__name__)

CustomCheck = Callable[[Milestone], bool]
ProbeKey = Tuple[int, str]


class Probe:
    """A single boolean readiness check."""

    name = "probe"

    def __call__(self) -> bool:
        return self.check()

    def check(self) -> bool:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.name}>"


class CommandProbe(Probe):
    """Passes when a command exits 0 and its stdout contains every expected string."""

    def __init__(
        self,
        command: str,
        expect_stdout: Union[str, Sequence[str], None] = None,
        timeout: int = 60,
        runner: Optional[CommandRunner] = None,
    ):
        self.command = command
        if isinstance(expect_stdout, str):
            expect_stdout = [expect_stdout]
        self.expect_stdout = list(expect_stdout or [])
        self.timeout = timeout
        self.runner = runner or CommandRunner()
        self.name = command

    def check(self) -> bool:
        result = self.runner.run(self.command, timeout=self.timeout)
        if not result.success:
            logger.info("Probe %r failed: %s", self.command, result.error_message)
            return False
        missing = [s for s in self.expect_stdout if s not in result.stdout]
        if missing:
            logger.info("Probe %r output missing %s", self.command, missing)
            return False
        return True


class HttpProbe(Probe):
    """Passes when a GET returns the expected status (and JSON field value)."""

    def __init__(
        self,
        url: str,
        expected_status: int = 200,
        json_field: Optional[str] = None,
        expected_value: Any = None,
        timeout: float = 5.0,
        client: Optional[httpx.Client] = None,
    ):
        self.url = url
        self.expected_status = expected_status
        self.json_field = json_field
        self.expected_value = expected_value
        self.timeout = timeout
        self.client = client
        self.name = url

    def check(self) -> bool:
        try:
            if self.client is not None:
                response = self.client.get(self.url, timeout=self.timeout)
            else:
                response = httpx.get(self.url, timeout=self.timeout)
        except httpx.HTTPError as e:
            logger.info("Probe %s unreachable: %s", self.url, e)
            return False

        if response.status_code != self.expected_status:
            logger.info(
                "Probe %s returned %d (expected %d)",
                self.url,
                response.status_code,
                self.expected_status,
            )
            return False

        if self.json_field is None:
            return True
        try:
            body = response.json()
        except ValueError:
            return False
        return isinstance(body, dict) and body.get(self.json_field) == self.expected_value


class TestSuiteProbe(CommandProbe):
    """Passes when the named test target runs green."""

    __test__ = False  # not a pytest class

    def __init__(
        self,
        target: str,
        command_template: str = "npm test -- {target}",
        timeout: int = 600,
        runner: Optional[CommandRunner] = None,
    ):
        super().__init__(
            command_template.format(target=target), timeout=timeout, runner=runner
        )
        self.target = target


class CallableProbe(Probe):
    """Wraps a plain function as a probe."""

    def __init__(self, fn: Callable[[], bool], name: str = "callable"):
        self.fn = fn
        self.name = name

    def check(self) -> bool:
        return bool(self.fn())


def build_default_probes(
    base_url: str = "http://localhost:3000",
    test_command: str = "npm test -- {target}",
    runner: Optional[CommandRunner] = None,
    client: Optional[httpx.Client] = None,
) -> Dict[ProbeKey, Probe]:
    """
    Build the standard probe table.

    Milestones without an entry pass this stage of validation.

    Args:
        base_url: Base URL of the service being built
        test_command: Template used to run a single test target
        runner: Command runner shared by command probes
        client: HTTP client shared by HTTP probes
    """
    runner = runner or CommandRunner()
    base_url = base_url.rstrip("/")

    def suite(target: str) -> TestSuiteProbe:
        return TestSuiteProbe(target, command_template=test_command, runner=runner)

    return {
        (0, "phase-0-docker"): CommandProbe(
            'docker-compose ps --services --filter "status=running"',
            expect_stdout=["postgres", "redis"],
            runner=runner,
        ),
        (0, "phase-0-database"): CommandProbe(
            "docker-compose exec -T postgres pg_isready",
            expect_stdout="accepting connections",
            runner=runner,
        ),
        (0, "phase-0-health"): HttpProbe(
            f"{base_url}/api/v1/health",
            json_field="status",
            expected_value="ok",
            client=client,
        ),
        (1, "phase-1-crud"): HttpProbe(f"{base_url}/api/v1/requirements", client=client),
        (1, "phase-1-tests"): suite("tests/integration/requirements.api.test.ts"),
        (2, "phase-2-tests"): suite("tests/integration/traceability.api.test.ts"),
        (3, "phase-3-websocket"): HttpProbe(
            f"{base_url}/socket.io/?EIO=4&transport=polling", client=client
        ),
        (4, "phase-4-tests"): suite("tests/integration/quality.api.test.ts"),
        (5, "phase-5-tests"): suite("tests/e2e/integrations.test.ts"),
    }


class MilestoneValidator:
    """Decides whether a milestone's completion criteria are satisfied."""

    def __init__(
        self,
        probes: Optional[Dict[ProbeKey, Callable[[], bool]]] = None,
        custom_checks: Optional[Dict[str, CustomCheck]] = None,
    ):
        """
        Initialize the validator.

        Args:
            probes: Probe table keyed on (phase, milestone id). Default: none,
                so only status and custom checks apply.
            custom_checks: Named custom checks
        """
        self._probes: Dict[ProbeKey, Callable[[], bool]] = dict(probes or {})
        self._custom_checks: Dict[str, CustomCheck] = dict(custom_checks or {})

    def register_check(self, name: str, check: CustomCheck) -> None:
        """Register a named custom check that milestones can refer to."""
        self._custom_checks[name] = check

    def register_probe(self, phase: int, milestone_id: str, probe: Callable[[], bool]) -> None:
        """Add or replace the probe for a milestone."""
        self._probes[(phase, milestone_id)] = probe

    def get_probe(self, phase: int, milestone_id: str) -> Optional[Callable[[], bool]]:
        return self._probes.get((phase, milestone_id))

    @property
    def check_names(self) -> List[str]:
        return sorted(self._custom_checks)

    def validate(self, milestone: Milestone, phase: int) -> bool:
        """
        Validate a milestone. Never raises.

        Args:
            milestone: Milestone to validate
            phase: Phase the milestone belongs to

        Returns:
            True if every check passes
        """
        try:
            if milestone.status == MilestoneStatus.PENDING:
                logger.debug("Milestone %s has not started", milestone.id)
                return False

            if milestone.validation_check and not self._run_custom_check(milestone):
                return False

            probe = self._probes.get((phase, milestone.id))
            if probe is not None and not probe():
                logger.info("Milestone %s failed probe %r", milestone.id, probe)
                return False

            return True
        except Exception as e:
            logger.error("Validation of milestone %s failed: %s", milestone.id, e)
            return False

    def _run_custom_check(self, milestone: Milestone) -> bool:
        name = milestone.validation_check
        check = self._custom_checks.get(name) if name else None
        if check is None:
            logger.warning(
                "Milestone %s refers to unknown check '%s'", milestone.id, name
            )
            return False
        if not check(milestone):
            logger.info("Milestone %s failed custom check '%s'", milestone.id, name)
            return False
        return True

    @staticmethod
    def estimated_progress(
        milestone: Milestone, tasks: Optional[Iterable[AgentTask]] = None
    ) -> float:
        """
        Estimate how far along a milestone is.

        Completed milestones count 1.0 and pending ones 0.0. An in-progress
        milestone counts the fraction of its completed tasks (kept between
        0.1 and 0.9), or 0.5 when no task information is given.
        """
        if milestone.status == MilestoneStatus.COMPLETED:
            return 1.0
        if milestone.status != MilestoneStatus.IN_PROGRESS:
            return 0.0

        bound = [t for t in tasks or [] if t.milestone == milestone.id]
        if not bound:
            return 0.5
        done = sum(1 for t in bound if t.status == TaskStatus.COMPLETED)
        return min(0.9, max(0.1, done / len(bound)))
