"""
File Logger - persist run logs next to the JSON report.
"""

import logging
from pathlib import Path
from typing import Optional


def setup_file_logger(
    log_file: str,
    name: str = "ramp_load",
    level: int = logging.INFO,
    mode: str = "a",
) -> logging.Handler:
    """
    Attach a file handler to the package logger.

    Args:
        log_file: Path to log file (parent directories are created).
        name: Logger name to attach to.
        level: Logging level for the file handler.
        mode: File mode ('a' for append, 'w' for write).

    Returns:
        The attached handler, so callers can detach and close it.
    """
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    handler = logging.FileHandler(log_path, mode=mode, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )

    logger = logging.getLogger(name)
    # The logger must pass records at the file level even if the console is quieter
    if logger.level == logging.NOTSET or logger.level > level:
        logger.setLevel(level)
    logger.addHandler(handler)
    return handler


def close_file_logger(handler: Optional[logging.Handler], name: str = "ramp_load") -> None:
    """Detach and close a handler created by setup_file_logger()."""
    if handler is None:
        return
    logging.getLogger(name).removeHandler(handler)
    handler.close()
