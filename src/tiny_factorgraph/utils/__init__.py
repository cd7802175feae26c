"""
Miscellaneous utilities shared across tiny-factorgraph.
"""

from .logging import enable_debug_logging, logger
from .config import config

__all__ = ["logger", "config", "enable_debug_logging"]
