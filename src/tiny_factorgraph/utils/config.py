"""
Global / experimental configuration flags.
"""

import os
from dataclasses import dataclass


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value.strip())
    except ValueError:
        return default


@dataclass
class TFGConfig:
    debug: bool = _env_flag("TINY_FACTORGRAPH_DEBUG")
    # Only 1 is implemented; see GraphExecutor.
    n_thread: int = _env_int("TINY_FACTORGRAPH_THREADS", 1)


config = TFGConfig()
