"""Logging setup for the StudyMap command line."""

import os
import sys

from loguru import logger

DEFAULT_LEVEL = "WARNING"


def configure_logging(level=None):
    """Replace loguru's default sink with a single stderr sink.

    The level falls back to STUDYMAP_LOG_LEVEL, then WARNING.
    """
    level = (level or os.environ.get("STUDYMAP_LOG_LEVEL") or DEFAULT_LEVEL).upper()
    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {name}:{function} - {message}",
    )
    return level
