"""Activity tracking and logging setup."""

from .activity_logger import ActivityEvent, ActivityLogger
from .log_setup import JsonLineFormatter, setup_logging

__all__ = ["ActivityEvent", "ActivityLogger", "JsonLineFormatter", "setup_logging"]
