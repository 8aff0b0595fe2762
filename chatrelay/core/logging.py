# chatrelay/core/logging.py

import logging
import sys
from typing import Optional

from chatrelay.core.config import settings


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# Backplane SDKs and transport libraries log every reconnect and heartbeat at INFO
QUIET_LOGGERS = (
    "google.cloud.pubsub_v1",
    "google.api_core",
    "redis",
    "websockets",
    "uvicorn.access",
)


def resolve_level(name: Optional[str]) -> int:
    """Map a level name such as "debug" to its logging constant; unknown names give INFO."""
    level = logging.getLevelName((name or "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logging(level: Optional[str] = None) -> None:
    """
    Configure logging for the relay server and the terminal client.

    The level comes from ``settings.LOG_LEVEL`` unless one is passed in.
    Records go to stdout. When a handler is already installed (Uvicorn
    installs its own) only the level is applied.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(resolve_level(level or settings.LOG_LEVEL))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if root_logger.handlers:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(handler)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Module logger, e.g. ``logger = get_logger(__name__)``."""
    return logging.getLogger(name)
