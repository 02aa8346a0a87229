"""Task and milestone status transitions."""

from typing import Dict, List

from .models import MilestoneStatus, TaskStatus


# Valid task transitions
VALID_TRANSITIONS: Dict[TaskStatus, List[TaskStatus]] = {
    TaskStatus.WAITING: [TaskStatus.ACTIVE],
    TaskStatus.ACTIVE: [TaskStatus.COMPLETED, TaskStatus.FAILED],
    TaskStatus.COMPLETED: [],  # Terminal state
    TaskStatus.FAILED: [],  # Terminal state
}

# Valid milestone transitions
VALID_MILESTONE_TRANSITIONS: Dict[MilestoneStatus, List[MilestoneStatus]] = {
    MilestoneStatus.PENDING: [MilestoneStatus.IN_PROGRESS, MilestoneStatus.COMPLETED],
    MilestoneStatus.IN_PROGRESS: [MilestoneStatus.COMPLETED, MilestoneStatus.PENDING],
    MilestoneStatus.COMPLETED: [MilestoneStatus.PENDING],  # Reset on re-initialisation
}


def is_valid_transition(from_status: TaskStatus, to_status: TaskStatus) -> bool:
    """Check if a task status transition is valid."""
    return to_status in VALID_TRANSITIONS.get(from_status, [])


def get_valid_next_states(status: TaskStatus) -> List[TaskStatus]:
    """Get list of valid next statuses for a task."""
    return VALID_TRANSITIONS.get(status, [])


def is_terminal_state(status: TaskStatus) -> bool:
    """Check if a task status is terminal."""
    return len(VALID_TRANSITIONS.get(status, [])) == 0


def is_valid_milestone_transition(
    from_status: MilestoneStatus, to_status: MilestoneStatus
) -> bool:
    """Check if a milestone status transition is valid.

    Setting a milestone to the status it already has is always allowed.
    """
    if from_status == to_status:
        return True
    return to_status in VALID_MILESTONE_TRANSITIONS.get(from_status, [])
