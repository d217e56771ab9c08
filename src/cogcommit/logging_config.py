"""
Logging setup for CogCommit.

Console output is split by severity (INFO/DEBUG to stdout, WARNING and above
to stderr) and, when enabled, mirrored to a rotating file per context
(``cli.log``, ``api.log``, ``queue.log``) under the configured log directory.
"""

import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

from cogcommit.config import Settings, settings

STANDARD_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_configured_contexts: set[str] = set()


class JsonFormatter(logging.Formatter):
    """Format log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload)


class _MaxLevelFilter(logging.Filter):
    """Only pass records strictly below a level."""

    def __init__(self, max_level: int):
        super().__init__()
        self.max_level = max_level

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < self.max_level


def _build_formatter(config: Settings) -> logging.Formatter:
    if config.log_format == "json":
        return JsonFormatter()
    return logging.Formatter(STANDARD_FORMAT)


def setup_logging(context: str = "cli", config: Optional[Settings] = None) -> None:
    """
    Configure root logging for a process context.

    Safe to call more than once; a context is only configured the first time.

    Args:
        context: Name of the running surface, used for the log file name
        config: Settings to read logging options from (defaults to global settings)

    Raises:
        PermissionError: If the log directory cannot be created
    """
    if context in _configured_contexts:
        return

    config = config or settings
    root = logging.getLogger()
    root.setLevel(config.log_level.upper())
    formatter = _build_formatter(config)

    if config.log_console_enabled:
        stdout_handler = logging.StreamHandler(sys.stdout)
        stdout_handler.setLevel(logging.DEBUG)
        stdout_handler.addFilter(_MaxLevelFilter(logging.WARNING))
        stdout_handler.setFormatter(formatter)
        root.addHandler(stdout_handler)

        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setLevel(logging.WARNING)
        stderr_handler.setFormatter(formatter)
        root.addHandler(stderr_handler)

    if config.log_file_enabled:
        log_dir = config.log_directory
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_dir / f"{context}.log",
            maxBytes=config.log_max_bytes,
            backupCount=config.log_backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

    _configured_contexts.add(context)
