"""
Logging setup for charucal.

Modules log through logging.getLogger(__name__); the CLI calls configure()
once to attach handlers to the package logger.
"""

from __future__ import annotations

import logging
from pathlib import Path

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s - %(message)s"
PACKAGE_LOGGER = "charucal"


def configure(level: str | int = "INFO", log_file: Path | None = None) -> logging.Logger:
    """
    Attach console (and optional file) handlers to the package logger.

    Safe to call more than once - previous handlers are replaced.

    Args:
        level: Logging level name or number
        log_file: Optional path for a DEBUG-level log file

    Returns:
        The configured package logger
    """
    if isinstance(level, str):
        name = level
        level = logging.getLevelName(name.upper())
        if not isinstance(level, int):
            raise ValueError(f"Unknown log level: {name}")

    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(formatter)
    logger.addHandler(console)

    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(level)

    logger.propagate = False
    return logger
