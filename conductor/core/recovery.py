"""Checkpoint ring buffer and error recovery."""

import json
import logging
import threading
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Deque, Dict, List, Optional
from uuid import uuid4

from .checkpoint import Checkpoint, CheckpointStats, CheckpointTrigger, RecoveryResult
from .error_classifier import RecoveryAction, classify_error
from .exceptions import CheckpointError
from .models import AgentRole, ErrorKind, OrchestratorState, TaskStatus, utcnow
from .state_codec import decode_model, encode_model
from .state_store import StateStore

if TYPE_CHECKING:
    from conductor.orchestrator.retry_policy import RetryPolicyEngine

logger = logging.getLogger(__name__)


class RecoveryManager:
    """
    Keeps recent state checkpoints and decides how to recover from errors.

    Checkpoints live in a bounded ring buffer; once it is full the oldest
    checkpoint is evicted. When ``checkpoint_dir`` is set every checkpoint is
    mirrored to disk so the buffer survives a restart.
    """

    def __init__(
        self,
        store: StateStore,
        max_checkpoints: int = 10,
        checkpoint_dir: Optional[Path] = None,
        retry_engine: Optional["RetryPolicyEngine"] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the recovery manager.

        Args:
            store: State store checkpoints are taken from and restored into
            max_checkpoints: Ring buffer capacity
            checkpoint_dir: Optional directory mirroring the buffer on disk
            retry_engine: Used to report how many retries an operation used
            clock: Time source
        """
        if max_checkpoints < 1:
            raise ValueError("max_checkpoints must be at least 1")

        self.store = store
        self.max_checkpoints = max_checkpoints
        self.checkpoint_dir = Path(checkpoint_dir) if checkpoint_dir else None
        self.retry_engine = retry_engine
        self._clock = clock
        self._lock = threading.Lock()
        self._checkpoints: Deque[Checkpoint] = deque()

        if self.checkpoint_dir is not None:
            self.checkpoint_dir.mkdir(parents=True, exist_ok=True)
            self._load_persisted()

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    def create_checkpoint(
        self,
        state: Optional[OrchestratorState] = None,
        label: str = "manual checkpoint",
        restorable: bool = True,
        role: Optional[AgentRole] = None,
        task_id: Optional[str] = None,
        trigger: CheckpointTrigger = CheckpointTrigger.MANUAL,
    ) -> Checkpoint:
        """
        Push a snapshot of the state onto the ring buffer.

        Args:
            state: State to snapshot (default: current store snapshot)
            label: Human-readable description
            restorable: Whether rollback may restore this checkpoint
            role: Role about to run, if any
            task_id: Task about to run, if any
            trigger: What caused the checkpoint

        Returns:
            The created checkpoint
        """
        snapshot = (state if state is not None else self.store.snapshot()).model_copy(
            deep=True
        )
        checkpoint = Checkpoint(
            checkpoint_id=f"cp-{uuid4().hex[:12]}",
            label=label,
            trigger=trigger,
            phase=snapshot.current_phase,
            role=role,
            task_id=task_id,
            restorable=restorable,
            created_at=self._clock(),
            state=snapshot,
        )

        with self._lock:
            self._checkpoints.append(checkpoint)
            evicted = []
            while len(self._checkpoints) > self.max_checkpoints:
                evicted.append(self._checkpoints.popleft())
            self._persist(checkpoint)
            for old in evicted:
                self._remove_persisted(old)

        logger.debug("Created checkpoint %s (%s)", checkpoint.checkpoint_id, label)
        return checkpoint

    def list_checkpoints(self) -> List[Checkpoint]:
        """List checkpoints, oldest first."""
        with self._lock:
            return list(self._checkpoints)

    def get_checkpoint(self, checkpoint_id: str) -> Optional[Checkpoint]:
        with self._lock:
            for checkpoint in self._checkpoints:
                if checkpoint.checkpoint_id == checkpoint_id:
                    return checkpoint
        return None

    def get_latest_restorable(self) -> Optional[Checkpoint]:
        with self._lock:
            for checkpoint in reversed(self._checkpoints):
                if checkpoint.restorable:
                    return checkpoint
        return None

    def get_statistics(self) -> CheckpointStats:
        """Get checkpoint count and the oldest/newest timestamps."""
        with self._lock:
            checkpoints = list(self._checkpoints)
        return CheckpointStats(
            total_checkpoints=len(checkpoints),
            restorable_checkpoints=sum(1 for c in checkpoints if c.restorable),
            max_checkpoints=self.max_checkpoints,
            oldest_checkpoint=checkpoints[0].created_at if checkpoints else None,
            newest_checkpoint=checkpoints[-1].created_at if checkpoints else None,
        )

    def clear_checkpoints(self) -> int:
        """
        Delete all checkpoints.

        Returns:
            Number of checkpoints deleted
        """
        with self._lock:
            removed = list(self._checkpoints)
            self._checkpoints.clear()
            for checkpoint in removed:
                self._remove_persisted(checkpoint)
        logger.info("Cleared %d checkpoints", len(removed))
        return len(removed)

    def rollback_to_checkpoint(
        self,
        checkpoint: Checkpoint,
        failed_task_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> OrchestratorState:
        """
        Restore the store from a checkpoint.

        Task records, error entries and progress history are append-only and
        are kept as they are now; everything else (current phase, completed
        phases, phase statuses, milestones, auto-advance) comes from the
        checkpoint. If ``failed_task_id`` is given that task is then marked
        failed.

        Raises:
            CheckpointError: If the checkpoint is not restorable
        """
        if not checkpoint.restorable:
            raise CheckpointError(
                f"Checkpoint {checkpoint.checkpoint_id} is not restorable"
            )

        current = self.store.snapshot()
        restored = checkpoint.state.model_copy(deep=True)
        restored.tasks = current.tasks
        restored.errors = current.errors
        restored.progress = current.progress
        restored.metrics = current.metrics
        restored.active_roles = current.active_roles
        restored.started_at = current.started_at
        self.store.replace_state(restored)

        if failed_task_id is not None:
            task = self.store.snapshot().get_task(failed_task_id)
            if task is not None and task.status == TaskStatus.ACTIVE:
                self.store.transition_task(
                    failed_task_id, TaskStatus.FAILED, error=error or "rolled back"
                )

        logger.warning(
            "Restored state from checkpoint %s (phase %d)",
            checkpoint.checkpoint_id,
            checkpoint.phase,
        )
        return self.store.snapshot()

    def rollback_to_last_checkpoint(
        self, failed_task_id: Optional[str] = None, error: Optional[str] = None
    ) -> Optional[Checkpoint]:
        """
        Restore the newest restorable checkpoint.

        Returns:
            The restored checkpoint, or None if there is none
        """
        checkpoint = self.get_latest_restorable()
        if checkpoint is None:
            logger.error("No restorable checkpoint available")
            return None
        self.rollback_to_checkpoint(checkpoint, failed_task_id=failed_task_id, error=error)
        return checkpoint

    # ------------------------------------------------------------------
    # Error handling
    # ------------------------------------------------------------------

    def handle_error(
        self, error: BaseException, context: Optional[Dict[str, Any]] = None
    ) -> RecoveryResult:
        """
        Classify an error and carry out the matching recovery action.

        Args:
            error: The raised error
            context: ``operation_key`` (retry history key), ``task_id``,
                ``role`` and ``phase`` where known

        Returns:
            The chosen action and the number of retries already used
        """
        context = dict(context or {})
        classification = classify_error(error, context)
        retries_used = self._retries_used(context.get("operation_key"))
        base = {
            "kind": classification.kind,
            "category": classification.category.value,
            "retries_used": retries_used,
            "metadata": classification.context,
        }

        if classification.action == RecoveryAction.CIRCUIT_BREAK:
            logger.critical("Circuit break: %s", classification.message)
            return RecoveryResult(
                action=RecoveryAction.CIRCUIT_BREAK,
                message=f"System unhealthy, manual reset required: {classification.message}",
                **base,
            )

        if classification.kind == ErrorKind.CONFLICT:
            logger.warning("Conflict requires human input: %s", classification.message)
            return RecoveryResult(
                action=RecoveryAction.PAUSE_WORKFLOW,
                message=f"Workflow paused: {classification.message}",
                **base,
            )

        if classification.kind == ErrorKind.ROLLBACK:
            checkpoint = self.rollback_to_last_checkpoint(
                failed_task_id=context.get("task_id"), error=classification.message
            )
            if checkpoint is None:
                return RecoveryResult(
                    action=RecoveryAction.ROLLBACK,
                    message=f"Rollback needed but no checkpoint available: {classification.message}",
                    **base,
                )
            return RecoveryResult(
                action=RecoveryAction.ROLLBACK,
                message=f"Restored checkpoint {checkpoint.checkpoint_id}",
                checkpoint_restored=checkpoint.checkpoint_id,
                success=True,
                **base,
            )

        if classification.kind == ErrorKind.FATAL:
            logger.error("Fatal error: %s", classification.message)
            message = f"Fatal error: {classification.message}"
        else:
            message = (
                f"Retries exhausted after {retries_used} retries: {classification.message}"
            )
        return RecoveryResult(
            action=RecoveryAction.FAIL_IMMEDIATELY, message=message, **base
        )

    def _retries_used(self, operation_key: Optional[str]) -> int:
        if self.retry_engine is None or operation_key is None:
            return 0
        history = self.retry_engine.get_retry_history(operation_key)
        if history is None:
            return 0
        return max(0, history.total_attempts - 1)

    # ------------------------------------------------------------------
    # Disk mirror
    # ------------------------------------------------------------------

    def _checkpoint_file(self, checkpoint: Checkpoint) -> Path:
        assert self.checkpoint_dir is not None
        return self.checkpoint_dir / f"{checkpoint.checkpoint_id}.json"

    def _persist(self, checkpoint: Checkpoint) -> None:
        if self.checkpoint_dir is None:
            return
        path = self._checkpoint_file(checkpoint)
        try:
            temp_file = path.with_suffix(".tmp")
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(encode_model(checkpoint), f, indent=2)
            temp_file.replace(path)
        except OSError as e:
            raise CheckpointError(f"Failed to save checkpoint {path}: {e}") from e

    def _remove_persisted(self, checkpoint: Checkpoint) -> None:
        if self.checkpoint_dir is None:
            return
        self._checkpoint_file(checkpoint).unlink(missing_ok=True)

    def _load_persisted(self) -> None:
        assert self.checkpoint_dir is not None
        loaded = []
        for path in self.checkpoint_dir.glob("cp-*.json"):
            try:
                with open(path, "r", encoding="utf-8") as f:
                    loaded.append(decode_model(Checkpoint, json.load(f)))
            except Exception as e:
                logger.warning("Skipping unreadable checkpoint %s: %s", path, e)

        loaded.sort(key=lambda c: c.created_at)
        for checkpoint in loaded[: -self.max_checkpoints]:
            self._remove_persisted(checkpoint)
        self._checkpoints.extend(loaded[-self.max_checkpoints :])
