"""Root logger configuration applied at application start-up."""

import logging
from typing import Optional

from app.core.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_NOISY_LOGGERS = ("sqlalchemy.engine", "urllib3", "redis")


def configure_logging(level: Optional[str] = None) -> None:
    """
    Configure the root logger from ``settings.log_level``.

    Safe to call more than once; later calls only adjust the level.
    """
    resolved = (level or settings.log_level or "INFO").upper()
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=resolved, format=LOG_FORMAT)
    root.setLevel(resolved)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
