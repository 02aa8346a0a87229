"""Tests for activity tracking and logging setup."""

import io
import json
import logging
import sys

from rich.console import Console

from conductor.config.models import LoggingConfig
from conductor.core import AgentRole
from conductor.orchestrator.events import (
    EventBus,
    PhaseAdvanced,
    TaskCompleted,
    TaskStarted,
    WorkflowPaused,
)
from conductor.tracking import ActivityLogger, JsonLineFormatter, setup_logging


def _started(task_id):
    return TaskStarted(task_id=task_id, role=AgentRole.API, phase=1, milestone="phase-1-crud")


class TestActivityLogger:
    """Test mirroring notifications into activity.jsonl."""

    def test_attach_records_bus_events(self, tmp_path):
        """Test that every published event becomes one line."""
        bus = EventBus()
        activity = ActivityLogger(tmp_path / "logs")
        activity.attach(bus)
        activity.attach(bus)

        bus.publish(_started("t1"))
        bus.publish(PhaseAdvanced(from_phase=0, to_phase=1))

        lines = activity.log_file.read_text().splitlines()
        assert len(lines) == 2
        first = json.loads(lines[0])
        assert first["event_type"] == "TaskStarted"
        assert first["task_id"] == "t1"
        assert first["phase"] == 1
        assert first["data"] == {"role": "agent-api", "milestone": "phase-1-crud"}

    def test_detach_stops_recording(self, tmp_path):
        bus = EventBus()
        activity = ActivityLogger(tmp_path)
        activity.attach(bus)
        activity.detach()

        bus.publish(WorkflowPaused(reason="conflict"))

        assert activity.get_recent_events() == []
        assert bus.subscriber_count() == 0

    def test_get_task_events(self, tmp_path):
        """Test filtering events by task."""
        activity = ActivityLogger(tmp_path)
        activity.record(_started("t1"))
        activity.record(_started("t2"))
        activity.record(
            TaskCompleted(task_id="t1", role=AgentRole.API, phase=1, milestone="phase-1-crud")
        )

        events = activity.get_task_events("t1")
        assert [e.event_type for e in events] == ["TaskStarted", "TaskCompleted"]
        assert events[1].message == "Task t1 completed in 0.0s"

    def test_recent_events_limit(self, tmp_path):
        activity = ActivityLogger(tmp_path)
        for i in range(5):
            activity.record(_started(f"t{i}"))

        recent = activity.get_recent_events(limit=2)
        assert [e.task_id for e in recent] == ["t3", "t4"]

    def test_corrupt_lines_are_skipped(self, tmp_path):
        activity = ActivityLogger(tmp_path)
        activity.record(_started("t1"))
        with open(activity.log_file, "a", encoding="utf-8") as f:
            f.write("not json\n")
        activity.record(_started("t2"))

        assert [e.task_id for e in activity.get_recent_events()] == ["t1", "t2"]

    def test_events_without_phase(self, tmp_path):
        activity = ActivityLogger(tmp_path)
        activity.record(WorkflowPaused(reason="security conflict", task_id="t9"))

        event = activity.get_recent_events()[0]
        assert event.phase is None
        assert event.task_id == "t9"
        assert event.message == "Workflow paused: security conflict"


class TestSetupLogging:
    """Test logger configuration."""

    def test_text_log_file(self, tmp_path):
        console = Console(file=io.StringIO(), width=120)
        logger = setup_logging(LoggingConfig(level="DEBUG"), log_dir=tmp_path, console=console)

        logging.getLogger("conductor.engine").debug("tick %d", 3)

        assert logger.propagate is False
        assert len(logger.handlers) == 2
        content = (tmp_path / "conductor.log").read_text()
        assert "| DEBUG    | conductor.engine | tick 3" in content
        assert "tick 3" in console.file.getvalue()

    def test_json_log_file(self, tmp_path):
        console = Console(file=io.StringIO())
        setup_logging(LoggingConfig(format="json"), log_dir=tmp_path, console=console)

        logging.getLogger("conductor.store").info("saved")
        logging.getLogger("conductor.store").debug("hidden")

        lines = (tmp_path / "conductor.log").read_text().splitlines()
        assert len(lines) == 1
        entry = json.loads(lines[0])
        assert entry["level"] == "INFO"
        assert entry["logger"] == "conductor.store"
        assert entry["message"] == "saved"

    def test_repeated_setup_replaces_handlers(self, tmp_path):
        console = Console(file=io.StringIO())
        setup_logging(log_dir=tmp_path, console=console)
        logger = setup_logging(log_dir=tmp_path, console=console)
        assert len(logger.handlers) == 2

    def test_json_formatter_includes_exception(self):
        try:
            raise ValueError("bad")
        except ValueError:
            record = logging.LogRecord(
                "conductor", logging.ERROR, __file__, 1, "failed", None, sys.exc_info()
            )
        entry = json.loads(JsonLineFormatter().format(record))
        assert "ValueError: bad" in entry["exception"]
