"""Process-wide logging setup."""

from __future__ import annotations

import logging
from typing import Optional

from timekeeper.config import settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s — %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: Optional[str] = None) -> None:
    """Apply the standard format at *level* (``settings.LOG_LEVEL`` by default)."""
    name = (level or settings.LOG_LEVEL).upper()
    logging.basicConfig(
        level=getattr(logging, name, logging.INFO),
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
    )
    # SQL echo is controlled by DB_ECHO, not the app log level
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
