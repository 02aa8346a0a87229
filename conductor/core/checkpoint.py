"""Checkpoint and recovery models."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from .error_classifier import RecoveryAction
from .models import AgentRole, ErrorKind, OrchestratorState, utcnow


class CheckpointTrigger(str, Enum):
    """What caused a checkpoint to be taken."""

    PRE_DISPATCH = "pre_dispatch"
    PRE_ROLLBACK = "pre_rollback"
    PRE_RECOVERY = "pre_recovery"
    MANUAL = "manual"


class Checkpoint(BaseModel):
    """
    A full snapshot of orchestrator state.

    Taken before risky operations so the state can be restored if an agent
    leaves it inconsistent.
    """

    # Identification
    checkpoint_id: str = Field(..., description="Unique checkpoint identifier")
    label: str = Field(..., description="Human-readable description")
    trigger: CheckpointTrigger = Field(
        CheckpointTrigger.MANUAL, description="What caused the checkpoint"
    )

    # Context
    phase: int = Field(..., description="Current phase when taken")
    role: Optional[AgentRole] = Field(None, description="Role about to run, if any")
    task_id: Optional[str] = Field(None, description="Task about to run, if any")
    restorable: bool = Field(True, description="Whether rollback may use it")

    created_at: datetime = Field(default_factory=utcnow)
    state: OrchestratorState = Field(..., description="Deep copy of the state")

    def to_summary(self) -> str:
        """
        Get a human-readable summary of the checkpoint.

        Returns:
            Summary string
        """
        parts = [
            f"Checkpoint {self.checkpoint_id}",
            f"Phase: {self.phase}",
            f"Trigger: {self.trigger.value}",
            f"Created: {self.created_at.isoformat()}",
        ]
        if self.role:
            parts.append(f"Role: {self.role.short_name}")
        if not self.restorable:
            parts.append("not restorable")
        parts.append(self.label)
        return " | ".join(parts)


class CheckpointStats(BaseModel):
    """Overview of the checkpoint ring buffer."""

    total_checkpoints: int = 0
    restorable_checkpoints: int = 0
    max_checkpoints: int = 0
    oldest_checkpoint: Optional[datetime] = None
    newest_checkpoint: Optional[datetime] = None


class RecoveryResult(BaseModel):
    """Outcome of handling a raised error."""

    action: RecoveryAction
    kind: ErrorKind
    category: str
    message: str
    retries_used: int = 0
    checkpoint_restored: Optional[str] = None
    success: bool = False
    metadata: Dict[str, Any] = Field(default_factory=dict)
