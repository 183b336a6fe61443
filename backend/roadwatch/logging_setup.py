"""
Logging setup

Every module logs through ``logging.getLogger(__name__)``; this module
configures the root ``roadwatch`` logger once at startup.
"""

import logging
import os
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level: Optional[str] = None) -> logging.Logger:
    """
    Configure the package logger with a standard format.

    Args:
        level: Level name (default: LOG_LEVEL env var, then INFO)

    Returns:
        The configured ``roadwatch`` logger
    """
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()

    logger = logging.getLogger("roadwatch")
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    logger.setLevel(getattr(logging, level_name, logging.INFO))
    return logger
