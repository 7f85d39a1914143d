"""
Structured logging utilities.

This module provides the standard logger factory used across the engine and a
JSON event logger for run lifecycle events (run start/end, stage changes).
"""

import logging
import json
from typing import Optional
from datetime import datetime

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class StructuredLogger:
    """
    Structured logger that outputs JSON-formatted events.

    Used for run lifecycle events so a log file can be grepped or parsed
    after a load test.
    """

    def __init__(self, name: str, level: int = logging.INFO):
        """
        Initialize structured logger.

        Args:
            name: Logger name.
            level: Logging level.
        """
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level)

    def _log(self, level: int, event: str, **kwargs) -> None:
        """
        Log a structured event.

        Args:
            level: Logging level.
            event: Event name (e.g. "stage_started").
            **kwargs: Additional structured fields.
        """
        log_data = {
            "timestamp": datetime.now().isoformat(),
            "event": event,
            **kwargs
        }
        self.logger.log(level, json.dumps(log_data, default=str))

    def info(self, event: str, **kwargs) -> None:
        """Log info event with structured data."""
        self._log(logging.INFO, event, **kwargs)

    def error(self, event: str, **kwargs) -> None:
        """Log error event with structured data."""
        self._log(logging.ERROR, event, **kwargs)

    def warning(self, event: str, **kwargs) -> None:
        """Log warning event with structured data."""
        self._log(logging.WARNING, event, **kwargs)

    def debug(self, event: str, **kwargs) -> None:
        """Log debug event with structured data."""
        self._log(logging.DEBUG, event, **kwargs)


def configure_logging(level: int = logging.WARNING, handler: Optional[logging.Handler] = None) -> logging.Logger:
    """
    Attach a console handler to the package root logger.

    Args:
        level: Logging level for the ``ramp_load`` logger tree.
        handler: Optional handler to use instead of a stderr StreamHandler.

    Returns:
        The configured package logger.
    """
    root = logging.getLogger("ramp_load")
    root.setLevel(level)

    if handler is None:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.setLevel(level)

    # Avoid stacking console handlers on repeated CLI invocations
    for existing in list(root.handlers):
        if type(existing) is type(handler) and not isinstance(existing, logging.FileHandler):
            root.removeHandler(existing)
    root.addHandler(handler)
    return root


def get_logger(name: str) -> logging.Logger:
    """
    Get a standard Python logger.

    Args:
        name: Logger name.

    Returns:
        Logger instance.
    """
    return logging.getLogger(name)
