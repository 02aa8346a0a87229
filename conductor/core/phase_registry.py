"""Phase registry.

Immutable, ordered table of the build phases, their milestones, exit-test
commands, exit criteria and prerequisite phases.
"""

from typing import Dict, Iterable, Iterator, List, Optional

from .models import AgentRole, MilestoneDefinition, PhaseDefinition


def _milestone(
    milestone_id: str,
    name: str,
    description: str,
    *roles: AgentRole,
    validation_check: Optional[str] = None,
) -> MilestoneDefinition:
    return MilestoneDefinition(
        id=milestone_id,
        name=name,
        description=description,
        required_roles=tuple(roles),
        validation_check=validation_check,
    )


API = AgentRole.API
MODELS = AgentRole.MODELS
TEST = AgentRole.TEST
REALTIME = AgentRole.REALTIME
QUALITY = AgentRole.QUALITY
INTEGRATION = AgentRole.INTEGRATION


DEFAULT_PHASES: List[PhaseDefinition] = [
    PhaseDefinition(
        number=0,
        name="Initialization",
        description="Project structure and Docker environment setup",
        milestones=(
            _milestone(
                "phase-0-docker",
                "Docker Environment",
                "Set up Docker containers for PostgreSQL and Redis",
            ),
            _milestone(
                "phase-0-database",
                "Database Schema",
                "Create initial database schema and migrations",
                MODELS,
            ),
            _milestone(
                "phase-0-health",
                "Health Checks",
                "Implement health check endpoints",
                API,
                TEST,
            ),
            _milestone(
                "phase-0-dependencies",
                "Base Dependencies",
                "Install and configure core dependencies",
            ),
        ),
        test_command="npm test -- tests/integration/health.test.ts",
        exit_criteria=(
            "Docker services running (docker-compose ps)",
            "Database schema created",
            "Health endpoints responding (GET /api/v1/health)",
            "All infrastructure tests passing",
        ),
        dependencies=(),
    ),
    PhaseDefinition(
        number=1,
        name="Core Requirements Engine",
        description="Requirements CRUD API with version control and audit logging",
        milestones=(
            _milestone(
                "phase-1-models",
                "Requirement Models",
                "Create requirement data models and interfaces",
                MODELS,
            ),
            _milestone(
                "phase-1-crud", "CRUD API", "Implement requirements CRUD endpoints", API
            ),
            _milestone(
                "phase-1-id-generation",
                "Unique ID System",
                "Implement unique ID generation for requirements",
                API,
            ),
            _milestone(
                "phase-1-audit",
                "Audit Logging",
                "Implement comprehensive audit trail",
                API,
            ),
            _milestone(
                "phase-1-versioning",
                "Version Control",
                "Add version control for requirements",
                API,
            ),
            _milestone(
                "phase-1-tests",
                "Requirements Tests",
                "Create comprehensive test suite",
                TEST,
            ),
        ),
        test_command="npm test -- tests/integration/requirements.api.test.ts",
        exit_criteria=(
            "All CRUD operations working (GET, POST, PUT, DELETE)",
            "Unique IDs generated for all requirements",
            "Audit trail captures all changes",
            "Version history accessible",
            "All requirements API tests passing",
        ),
        dependencies=(0,),
    ),
    PhaseDefinition(
        number=2,
        name="Traceability Engine",
        description="Bidirectional requirement linking and traceability matrix",
        milestones=(
            _milestone(
                "phase-2-link-models",
                "Link Models",
                "Create link and traceability data models",
                MODELS,
            ),
            _milestone(
                "phase-2-bidirectional",
                "Bidirectional Links",
                "Implement bidirectional requirement linking",
                API,
            ),
            _milestone(
                "phase-2-suspect",
                "Suspect Detection",
                "Add suspect link detection and flagging",
                API,
                QUALITY,
            ),
            _milestone(
                "phase-2-matrix",
                "Traceability Matrix",
                "Generate traceability matrix visualization",
                API,
            ),
            _milestone(
                "phase-2-coverage",
                "Coverage Analysis",
                "Implement coverage gap analysis",
                API,
                QUALITY,
            ),
            _milestone(
                "phase-2-tests",
                "Traceability Tests",
                "Create traceability test suite",
                TEST,
            ),
        ),
        test_command="npm test -- tests/integration/traceability.api.test.ts",
        exit_criteria=(
            "Links can be created between requirements",
            "Bidirectional links automatically maintained",
            "Suspect links detected when source changes",
            "Traceability matrix generated",
            "Coverage gaps identified",
            "All traceability tests passing",
        ),
        dependencies=(1,),
    ),
    PhaseDefinition(
        number=3,
        name="Real-time Collaboration",
        description="WebSocket server with commenting, presence, and live updates",
        milestones=(
            _milestone(
                "phase-3-websocket",
                "WebSocket Server",
                "Set up Socket.io WebSocket server",
                REALTIME,
            ),
            _milestone(
                "phase-3-presence",
                "Presence Tracking",
                "Implement user presence tracking",
                REALTIME,
                MODELS,
            ),
            _milestone(
                "phase-3-comments",
                "Commenting System",
                "Add commenting and threading",
                REALTIME,
                API,
            ),
            _milestone(
                "phase-3-live-updates",
                "Live Updates",
                "Propagate live updates to all clients",
                REALTIME,
            ),
            _milestone(
                "phase-3-tests",
                "Real-time Tests",
                "Create WebSocket and collaboration tests",
                TEST,
            ),
            _milestone(
                "phase-3-load-test",
                "Load Testing",
                "Test with 20+ concurrent users",
                TEST,
            ),
        ),
        test_command="npm run test:presence",
        exit_criteria=(
            "WebSocket server running and accepting connections",
            "User presence tracked in real-time",
            "Comments can be added and retrieved",
            "Updates propagate to all connected clients",
            "Load test passes with 20+ users",
            "All real-time tests passing",
        ),
        dependencies=(1, 2),
    ),
    PhaseDefinition(
        number=4,
        name="Quality & Validation",
        description="NLP-based validation, review workflows, and quality metrics",
        milestones=(
            _milestone(
                "phase-4-nlp",
                "NLP Ambiguity Detection",
                "Implement NLP-based ambiguity detection",
                QUALITY,
            ),
            _milestone(
                "phase-4-review",
                "Review Workflows",
                "Add review and approval workflows",
                QUALITY,
                API,
            ),
            _milestone(
                "phase-4-transitions",
                "Status Transitions",
                "Enforce status transition rules",
                QUALITY,
                API,
            ),
            _milestone(
                "phase-4-metrics",
                "Quality Metrics",
                "Generate quality metrics dashboard",
                QUALITY,
                API,
            ),
            _milestone(
                "phase-4-tests",
                "Quality Tests",
                "Create quality validation test suite",
                TEST,
            ),
        ),
        test_command="npm test -- tests/integration/quality.api.test.ts",
        exit_criteria=(
            "NLP detects ambiguous requirements",
            "Review workflows enforce approvals",
            "Status transitions validated",
            "Quality metrics calculated and displayed",
            "All quality tests passing",
        ),
        dependencies=(1, 2),
    ),
    PhaseDefinition(
        number=5,
        name="External Integrations",
        description="Jira, Slack, and OAuth integrations with rate limiting",
        milestones=(
            _milestone(
                "phase-5-oauth",
                "OAuth Authentication",
                "Implement OAuth 2.0 authentication flow",
                INTEGRATION,
                API,
            ),
            _milestone(
                "phase-5-jira",
                "Jira Integration",
                "Add Jira issue export/import",
                INTEGRATION,
            ),
            _milestone(
                "phase-5-slack",
                "Slack Integration",
                "Implement Slack notification channels",
                INTEGRATION,
            ),
            _milestone(
                "phase-5-rate-limit",
                "Rate Limiting",
                "Add API rate limiting",
                INTEGRATION,
                API,
            ),
            _milestone(
                "phase-5-tests",
                "Integration Tests",
                "Create integration test suite",
                TEST,
            ),
            _milestone(
                "phase-5-security",
                "Security Checks",
                "Run security validation tests",
                TEST,
                QUALITY,
            ),
        ),
        test_command="npm test -- tests/e2e/integrations.test.ts",
        exit_criteria=(
            "OAuth flow working",
            "Jira issues can be imported/exported",
            "Slack notifications sending",
            "Rate limiting preventing abuse",
            "Security tests passing",
            "All integration tests passing",
        ),
        dependencies=(1, 2, 3, 4),
    ),
]


class PhaseRegistry:
    """Read-only lookup over an ordered set of phase definitions."""

    def __init__(self, phases: Optional[Iterable[PhaseDefinition]] = None):
        """
        Initialize the registry.

        Args:
            phases: Phase definitions (default: the built-in six phases)

        Raises:
            ValueError: If phase numbers are not contiguous from zero, a
                milestone id repeats, or a phase depends on a later phase
        """
        ordered = sorted(phases if phases is not None else DEFAULT_PHASES, key=lambda p: p.number)
        if not ordered:
            raise ValueError("At least one phase must be defined")

        seen_milestones = set()
        for index, phase in enumerate(ordered):
            if phase.number != index:
                raise ValueError(
                    f"Phase numbers must be contiguous from 0 (found {phase.number} at position {index})"
                )
            for dep in phase.dependencies:
                if dep >= phase.number:
                    raise ValueError(
                        f"Phase {phase.number} cannot depend on phase {dep}"
                    )
            for milestone in phase.milestones:
                if milestone.id in seen_milestones:
                    raise ValueError(f"Duplicate milestone id: {milestone.id}")
                seen_milestones.add(milestone.id)

        self._phases: Dict[int, PhaseDefinition] = {p.number: p for p in ordered}

    def get(self, number: int) -> PhaseDefinition:
        """Get a phase by number.

        Raises:
            KeyError: If the phase is not defined
        """
        try:
            return self._phases[number]
        except KeyError:
            raise KeyError(f"Phase {number} is not defined") from None

    def all(self) -> List[PhaseDefinition]:
        return [self._phases[n] for n in sorted(self._phases)]

    @property
    def numbers(self) -> List[int]:
        return sorted(self._phases)

    @property
    def max_phase(self) -> int:
        return max(self._phases)

    def find_milestone(self, milestone_id: str) -> Optional[MilestoneDefinition]:
        for phase in self._phases.values():
            found = phase.get_milestone(milestone_id)
            if found is not None:
                return found
        return None

    def __contains__(self, number: object) -> bool:
        return number in self._phases

    def __iter__(self) -> Iterator[PhaseDefinition]:
        return iter(self.all())

    def __len__(self) -> int:
        return len(self._phases)
