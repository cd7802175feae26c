"""
Package-wide logger.

The library stays silent unless the application configures logging or calls
``enable_debug_logging``.
"""

from __future__ import annotations

import logging
from typing import Optional

LOGGER_NAME = "tiny_factorgraph"

logger = logging.getLogger(LOGGER_NAME)
logger.addHandler(logging.NullHandler())


def enable_debug_logging(
    level: int = logging.DEBUG, handler: Optional[logging.Handler] = None
) -> logging.Handler:
    """Attach a stream handler to the package logger and lower its level."""
    if handler is None:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(name)s %(levelname)s %(message)s")
        )
    logger.addHandler(handler)
    logger.setLevel(level)
    return handler
