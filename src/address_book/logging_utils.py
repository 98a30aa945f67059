from __future__ import annotations

import logging
import os
from typing import Optional

from .config_loader import AppConfig

LOG_LEVEL_ENV = "ADDRESS_BOOK_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
# Driver loggers that flood DEBUG output with heartbeat and pool events.
CHATTY_LOGGERS = ("pymongo", "pymongo.topology", "pymongo.connection")


def _resolve_level(level_name: Optional[str]) -> int:
    """Map a level name (any case) or a numeric string to a logging level; unknown names give INFO."""
    normalized = (level_name or "INFO").strip().upper()
    if normalized.isdigit():
        return int(normalized)
    level = logging.getLevelName(normalized)
    return level if isinstance(level, int) else logging.INFO


def configure_logging(config: AppConfig, level_override: Optional[str] = None) -> int:
    """
    Set up the root logger for the API process and return the level applied.

    The level comes from the first of these that is set: the
    ``ADDRESS_BOOK_LOG_LEVEL`` environment variable, ``level_override``
    (the ``--log-level`` flag), ``config.logging.level``, or ``WARNING``.
    """
    level_value = _resolve_level(
        os.getenv(LOG_LEVEL_ENV) or level_override or config.logging.level or "WARNING"
    )

    root_logger = logging.getLogger()
    if root_logger.handlers:
        root_logger.setLevel(level_value)
    else:
        logging.basicConfig(level=level_value, format=LOG_FORMAT)

    driver_level = level_value if level_value > logging.DEBUG else logging.INFO
    for name in CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(driver_level)
    return level_value
