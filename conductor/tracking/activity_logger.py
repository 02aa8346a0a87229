"""Activity logging for orchestrator notifications."""

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from conductor.core.models import utcnow
from conductor.orchestrator.events import EventBus, OrchestratorEvent

logger = logging.getLogger(__name__)

ACTIVITY_FILE = "activity.jsonl"


class ActivityEvent(BaseModel):
    """One line of the activity log."""

    timestamp: datetime = Field(default_factory=utcnow)
    event_type: str = Field(..., description="Notification class name")
    message: str = Field(..., description="One-line summary")
    task_id: Optional[str] = Field(None, description="Task identifier")
    phase: Optional[int] = Field(None, description="Phase the event concerns")

    data: Dict[str, Any] = Field(
        default_factory=dict, description="Remaining notification fields"
    )


class ActivityLogger:
    """Thread-safe mirror of bus notifications into ``activity.jsonl``."""

    def __init__(self, logs_dir: Path):
        """Initialize activity logger.

        Args:
            logs_dir: Directory to store the log file
        """
        self.logs_dir = Path(logs_dir)
        self.logs_dir.mkdir(parents=True, exist_ok=True)
        self.log_file = self.logs_dir / ACTIVITY_FILE

        self._lock = threading.Lock()
        self._unsubscribe: Optional[Callable[[], None]] = None

    def attach(self, bus: EventBus) -> None:
        """Start recording every notification published on the bus."""
        if self._unsubscribe is None:
            self._unsubscribe = bus.subscribe_all(self.record)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def record(self, event: OrchestratorEvent) -> None:
        """Write a notification as one JSON line."""
        fields = event.model_dump(mode="json", exclude={"timestamp"})
        task_id = fields.pop("task_id", None)
        phase = fields.pop("phase", None)
        entry = ActivityEvent(
            timestamp=event.timestamp,
            event_type=event.event_name,
            message=event.summary(),
            task_id=task_id,
            phase=phase if isinstance(phase, int) else None,
            data=fields,
        )
        self._write_event(entry)

    def get_task_events(self, task_id: str) -> List[ActivityEvent]:
        """Get all recorded events for a specific task."""
        return [e for e in self._read_events() if e.task_id == task_id]

    def get_recent_events(self, limit: int = 100) -> List[ActivityEvent]:
        """Get the most recent events, oldest first."""
        return self._read_events()[-limit:]

    def _read_events(self) -> List[ActivityEvent]:
        events: List[ActivityEvent] = []
        if not self.log_file.exists():
            return events

        with self._lock:
            with open(self.log_file, "r", encoding="utf-8") as f:
                lines = f.readlines()

        for line in lines:
            try:
                events.append(ActivityEvent(**json.loads(line.strip())))
            except (json.JSONDecodeError, ValueError):
                continue
        return events

    def _write_event(self, event: ActivityEvent) -> None:
        with self._lock:
            try:
                with open(self.log_file, "a", encoding="utf-8") as f:
                    json.dump(event.model_dump(mode="json"), f, separators=(",", ":"))
                    f.write("\n")
            except OSError as e:
                logger.error("Failed to write activity event: %s", e)
