"""
Logging configuration
"""

import logging
import sys
from typing import Optional
from core.config import settings

# Libraries whose INFO output would drown the per-unit pipeline logs
_HTTP_LOGGERS = ("httpx", "httpcore")
_QUIET_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "apscheduler.executors.default")


def _level(name: Optional[str], default: int) -> int:
    return getattr(logging, (name or "").upper(), default)


def setup_logging(level: Optional[str] = None):
    """
    Configure application logging.

    Args:
        level: Root level name; defaults to ``settings.LOG_LEVEL``
    """
    log_level = _level(level or settings.LOG_LEVEL, logging.INFO)

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True
    )

    http_level = _level(settings.HTTP_LOG_LEVEL, logging.WARNING)
    for name in _HTTP_LOGGERS:
        logging.getLogger(name).setLevel(http_level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).debug(f"Logging configured at {logging.getLevelName(log_level)} level")
