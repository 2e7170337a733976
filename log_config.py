"""Logging setup shared by the API process and scripts."""
from __future__ import annotations

import logging

from settings import SETTINGS


def configure_logging(level: str | None = None) -> None:
    """Initialize root logging with one format for every module logger.

    Module loggers emit snake_case event names and pass structured details
    through ``extra``; the level comes from ``LOG_LEVEL`` unless given.
    """

    resolved_level = (level or SETTINGS.log_level or "INFO").upper()
    logging.basicConfig(
        level=resolved_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
