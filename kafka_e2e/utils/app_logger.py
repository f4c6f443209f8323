"""
Logging setup for suite entry points

Library modules log through ``logging.getLogger(__name__)``; the process
running the suite (the test session, a script) calls ``configure_logging``
once with ``LoggingSettings.level``.
"""

import logging
import sys
from typing import Union

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Client libraries that log every request or poll at INFO/DEBUG
_NOISY_LOGGERS = ("httpx", "httpcore", "asyncio")


def resolve_level(level: Union[str, int, None]) -> int:
    """Map a level name or number to a logging level, INFO when unknown"""
    if level is None:
        return logging.INFO
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        return resolved if isinstance(resolved, int) else logging.INFO
    return level


def configure_logging(level: Union[str, int] = "INFO") -> None:
    """
    Configure the root logger.

    Adds a stdout handler only when the root logger has none, so repeated
    calls change the level without duplicating output.
    """
    log_level = resolve_level(level)
    logging.root.setLevel(log_level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    if not logging.root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.root.addHandler(handler)
