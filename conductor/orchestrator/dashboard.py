"""Dashboard data collection and the markdown dashboard file."""

import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from conductor.core.models import (
    DashboardData,
    ErrorLogEntry,
    MilestoneStatus,
    OrchestratorState,
    ProgressSnapshot,
    Severity,
    SystemHealth,
    utcnow,
)
from conductor.core.state_store import StateStore

from .phase_manager import PhaseManager
from .retry_policy import RetryPolicyEngine

logger = logging.getLogger(__name__)

DASHBOARD_FILE = "dashboard.md"

RECENT_MILESTONES = 5
RECENT_ERRORS = 5
RECENT_LESSONS = 5

MILESTONE_MARKERS = {
    MilestoneStatus.PENDING: "[ ]",
    MilestoneStatus.IN_PROGRESS: "[~]",
    MilestoneStatus.COMPLETED: "[x]",
}


def assess_health(
    recent_errors: List[ErrorLogEntry],
    open_breakers: List[str],
    paused: bool,
) -> str:
    """
    Coarse health status.

    ``critical`` when a circuit breaker is open or a recent error is
    critical; ``degraded`` when paused or a recent error is high severity;
    ``healthy`` otherwise.
    """
    severities = {e.severity for e in recent_errors}
    if open_breakers or Severity.CRITICAL in severities:
        return "critical"
    if paused or Severity.HIGH in severities:
        return "degraded"
    return "healthy"


def collect_dashboard_data(
    store: StateStore,
    phases: PhaseManager,
    retry: Optional[RetryPolicyEngine] = None,
    running: bool = False,
    paused: bool = False,
    now: Optional[datetime] = None,
) -> DashboardData:
    """Gather everything the dashboard shows from the latest state."""
    state = store.snapshot()
    now = now or utcnow()
    phase = phases.registry.get(state.current_phase)

    recent_milestones = sorted(
        (m for m in state.milestones.values() if m.completed_at is not None),
        key=lambda m: m.completed_at,
        reverse=True,
    )[:RECENT_MILESTONES]
    recent_errors = state.errors[-RECENT_ERRORS:]
    open_breakers = retry.get_open_circuit_breakers() if retry is not None else []

    health = SystemHealth(
        status=assess_health(recent_errors, open_breakers, paused),
        running=running,
        paused=paused,
        uptime_seconds=max(0.0, (now - state.started_at).total_seconds()),
        open_circuit_breakers=open_breakers,
        recent_error_count=len(recent_errors),
    )

    return DashboardData(
        current_phase=state.current_phase,
        phase_name=phase.name,
        phase_progress=phases.get_phase_progress(state.current_phase, state),
        overall_progress=phases.get_overall_progress(state),
        latest_progress=state.progress[-1] if state.progress else None,
        metrics=state.metrics,
        recent_milestones=recent_milestones,
        recent_errors=recent_errors,
        recent_lessons=store.get_lessons()[-RECENT_LESSONS:],
        system_health=health,
    )


def progress_bar(fraction: float, width: int = 20) -> str:
    filled = round(max(0.0, min(1.0, fraction)) * width)
    return "[" + "#" * filled + "-" * (width - filled) + "]"


class DashboardGenerator:
    """Renders dashboard data as markdown and writes ``dashboard.md``."""

    def __init__(self, state_dir: Path, phases: PhaseManager):
        self.output_file = Path(state_dir) / DASHBOARD_FILE
        self.phases = phases

    def generate(self, data: DashboardData, state: Optional[OrchestratorState] = None) -> Path:
        """Write the dashboard file.

        Failures are logged, never raised; the dashboard is a convenience
        view of state that is persisted elsewhere.
        """
        try:
            self.output_file.write_text(self.render(data, state), encoding="utf-8")
            logger.debug("Dashboard written to %s", self.output_file)
        except OSError as e:
            logger.error("Failed to write dashboard %s: %s", self.output_file, e)
        return self.output_file

    def render(self, data: DashboardData, state: Optional[OrchestratorState] = None) -> str:
        progress = data.latest_progress
        updated = progress.timestamp if progress else utcnow()

        lines = [
            "# Conductor Dashboard",
            "",
            f"*Last updated: {updated.isoformat()}*",
            "",
            "## System Health",
            "",
            f"**Status:** {data.system_health.status.upper()}  ",
            f"**Running:** {'yes' if data.system_health.running else 'no'}  ",
            f"**Paused:** {'yes' if data.system_health.paused else 'no'}  ",
            f"**Uptime:** {data.system_health.uptime_seconds / 3600:.2f} hours",
        ]
        if data.system_health.open_circuit_breakers:
            lines.append(
                "  \n**Open circuit breakers:** "
                + ", ".join(data.system_health.open_circuit_breakers)
            )

        lines.extend(self._phase_section(data, state))
        lines.extend(self._progress_section(data, progress))
        lines.extend(self._agents_section(data))
        lines.extend(self._milestones_section(data))

        if data.recent_lessons:
            lines.extend(["", "## Recent Lessons", ""])
            for lesson in data.recent_lessons:
                lines.append(f"- ({lesson.category.value}) **{lesson.description}**")
                if lesson.impact:
                    lines.append(f"  *Impact: {lesson.impact}*")
                if lesson.action_taken:
                    lines.append(f"  *Action: {lesson.action_taken}*")

        if data.recent_errors:
            lines.extend(["", "## Recent Errors", ""])
            for error in data.recent_errors:
                who = f" - {error.role.short_name}" if error.role else ""
                lines.append(f"- [{error.severity.value.upper()}] **Phase {error.phase}{who}**")
                lines.append(f"  {error.message}")
                lines.append(f"  *{error.timestamp.isoformat()}*")

        return "\n".join(lines) + "\n"

    def _phase_section(
        self, data: DashboardData, state: Optional[OrchestratorState]
    ) -> List[str]:
        phase = self.phases.registry.get(data.current_phase)
        lines = [
            "",
            "## Current Phase",
            "",
            f"**Phase {phase.number}: {phase.name}**",
            "",
            phase.description,
            "",
            f"**Progress:** {progress_bar(data.phase_progress)} {data.phase_progress * 100:.1f}%",
            "",
            "### Milestones",
            "",
        ]
        for definition in phase.milestones:
            milestone = state.milestones.get(definition.id) if state is not None else None
            status = milestone.status if milestone is not None else MilestoneStatus.PENDING
            lines.append(
                f"- {MILESTONE_MARKERS[status]} **{definition.name}**: {definition.description}"
            )
        return lines

    def _progress_section(
        self, data: DashboardData, progress: Optional[ProgressSnapshot]
    ) -> List[str]:
        lines = [
            "",
            "## Overall Progress",
            "",
            f"**Overall:** {progress_bar(data.overall_progress)} {data.overall_progress * 100:.1f}%",
            "",
        ]
        for phase in self.phases.get_all_phases():
            if phase.number < data.current_phase:
                marker = "[x]"
            elif phase.number == data.current_phase:
                marker = "[~]"
            else:
                marker = "[ ]"
            lines.append(f"- {marker} Phase {phase.number}: {phase.name}")

        if progress is not None:
            lines.extend(
                [
                    "",
                    "### Tasks",
                    "",
                    f"- **Active:** {progress.active_tasks}",
                    f"- **Completed:** {progress.completed_tasks}",
                    f"- **Failed:** {progress.failed_tasks}",
                ]
            )
            if progress.estimated_completion:
                lines.extend(
                    ["", f"**Estimated completion:** {progress.estimated_completion.isoformat()}"]
                )
        return lines

    @staticmethod
    def _agents_section(data: DashboardData) -> List[str]:
        lines = [
            "",
            "## Agents",
            "",
            "| Agent | Completed | Failed | Success Rate | Avg. Time |",
            "|-------|-----------|--------|--------------|-----------|",
        ]
        for role, metrics in data.metrics.items():
            lines.append(
                f"| {role.short_name} | {metrics.tasks_completed} | {metrics.tasks_failed} "
                f"| {metrics.success_rate * 100:.1f}% | {metrics.average_completion_time:.1f}s |"
            )
        return lines

    @staticmethod
    def _milestones_section(data: DashboardData) -> List[str]:
        lines = ["", "## Recent Milestones", ""]
        if not data.recent_milestones:
            lines.append("*No milestones completed yet*")
            return lines
        for milestone in data.recent_milestones:
            completed = milestone.completed_at.isoformat() if milestone.completed_at else "N/A"
            lines.append(f"- **{milestone.name}** - {milestone.description}")
            lines.append(f"  *Completed: {completed}*")
        return lines
