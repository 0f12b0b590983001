"""Process-wide log setup for the poller and the API."""

from __future__ import annotations

import logging


LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"

# Request lines from these carry feed URLs and the notify key.
_QUIET_LOGGERS = ("httpx", "httpcore")


def configure_logging(level: str = "INFO") -> None:
    """Install the root handler; a second call leaves the first setup in place.

    An unknown level name falls back to INFO.
    """
    resolved = logging.getLevelName(level.strip().upper())
    if not isinstance(resolved, int):
        resolved = logging.INFO
    logging.basicConfig(level=resolved, format=LOG_FORMAT)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
