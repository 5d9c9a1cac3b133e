"""Logging configuration for minirel."""

import logging
import sys
from pathlib import Path
from typing import Optional
from .settings import get_settings

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def setup_logging(level: Optional[str] = None, log_file: Optional[Path] = None) -> None:
    """
    Configure the ``minirel`` logger.

    Records go to stderr, so query results printed on stdout stay clean, and
    to ``log_file`` when one is configured.

    Args:
        level: Logging level name; defaults to ``Settings.log_level``
        log_file: Log file path; defaults to ``Settings.log_file``
    """
    settings = get_settings()
    log_level = getattr(logging, (level or settings.log_level).upper())
    log_file = log_file or settings.log_file
    formatter = logging.Formatter(LOG_FORMAT)

    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logger = logging.getLogger("minirel")
    logger.setLevel(log_level)
    logger.handlers.clear()
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.propagate = False


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``minirel`` hierarchy, configuring it on first use."""
    if not logging.getLogger("minirel").handlers:
        setup_logging()

    if name.startswith("minirel"):
        return logging.getLogger(name)
    return logging.getLogger(f"minirel.{name}")
