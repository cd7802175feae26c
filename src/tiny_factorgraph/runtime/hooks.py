"""
Callbacks invoked by the executor around factor evaluation.

Useful for tracing, debugging and tests that need to observe which factors
actually ran.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from tiny_factorgraph.graph.nodes import Factor


@dataclass
class ExecutionCallbacks:
    """
    Args:
        on_forward: Called after a factor's forward evaluation.
        on_backward: Called after a factor's backward evaluation.
        on_skip: Called with ``(factor, phase)`` when a dequeued factor is
            not necessary; ``phase`` is ``"forward"`` or ``"backward"``.
    """

    on_forward: Optional[Callable[[Factor], None]] = None
    on_backward: Optional[Callable[[Factor], None]] = None
    on_skip: Optional[Callable[[Factor, str], None]] = None


class ExecutionTrace:
    """
    Records (phase, factor name) events in execution order.
    """

    def __init__(self) -> None:
        self._events: List[Tuple[str, str]] = []

    def callbacks(self) -> ExecutionCallbacks:
        return ExecutionCallbacks(
            on_forward=lambda f: self._events.append(("forward", f.name)),
            on_backward=lambda f: self._events.append(("backward", f.name)),
            on_skip=lambda f, phase: self._events.append((f"skip-{phase}", f.name)),
        )

    def names(self, phase: str) -> List[str]:
        return [name for kind, name in self._events if kind == phase]

    def clear(self) -> None:
        self._events.clear()

    def items(self) -> List[Tuple[str, str]]:
        return list(self._events)
