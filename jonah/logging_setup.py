"""Logging configuration for the command line tool."""
from __future__ import annotations

from pathlib import Path
import logging
import sys

_CONSOLE_FORMAT = "%(levelname)s %(message)s"
_FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def parse_level(name: str | int) -> int:
    if isinstance(name, int):
        return name
    level = logging.getLevelName(name.strip().upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {name}")
    return level


def setup_logging(level: str | int = "info", log_file: str | Path | None = None) -> logging.Logger:
    """Configure the ``jonah`` logger with a stderr handler and an optional file handler."""
    logger = logging.getLogger("jonah")
    logger.setLevel(parse_level(level))
    logger.propagate = False

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
    logger.addHandler(console)

    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(_FILE_FORMAT))
        logger.addHandler(file_handler)
    return logger
