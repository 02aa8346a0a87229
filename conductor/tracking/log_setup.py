"""Logging configuration.

Console output goes through rich; a file under the configured log directory
receives the same records as plain text or JSON lines.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

from conductor.config.models import LoggingConfig

LOGGER_NAME = "conductor"
LOG_FILE_NAME = "conductor.log"
TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


class JsonLineFormatter(logging.Formatter):
    """Formats each record as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(
    config: Optional[LoggingConfig] = None,
    log_dir: Optional[Path] = None,
    console: Optional[Console] = None,
) -> logging.Logger:
    """Configure the ``conductor`` logger.

    Replaces handlers installed by an earlier call, so it can be called again
    after the configuration changes.

    Args:
        config: Logging configuration (default: INFO, text)
        log_dir: Directory for the log file (default: ``config.output_dir``)
        console: Console the rich handler writes to (default: stderr)

    Returns:
        The configured logger
    """
    config = config or LoggingConfig()
    level = getattr(logging, config.level)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    console_handler.setLevel(level)
    logger.addHandler(console_handler)

    log_dir = Path(log_dir) if log_dir is not None else Path(config.output_dir).expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_dir / LOG_FILE_NAME, encoding="utf-8")
    file_handler.setLevel(level)
    if config.format == "json":
        file_handler.setFormatter(JsonLineFormatter())
    else:
        file_handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    logger.addHandler(file_handler)

    logger.propagate = False
    return logger
