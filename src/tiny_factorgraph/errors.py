"""
Exception taxonomy for graph construction and execution.

Every error also derives from the builtin exception that the same condition
would naturally raise, so ``except ValueError`` style handlers keep working.
"""

from __future__ import annotations


class FactorGraphError(Exception):
    """Base class for all tiny-factorgraph errors."""


class RegistrationError(FactorGraphError, ValueError):
    """Duplicate node name, unregistered endpoint or a cycle-closing factor."""


class NotRegisteredError(FactorGraphError, KeyError):
    """A query referenced a node name that was never registered."""

    def __str__(self) -> str:
        # KeyError repr()s its argument; keep the plain message instead.
        return str(self.args[0]) if self.args else ""


class NotReadyError(FactorGraphError, RuntimeError):
    """A requested target was still not ready after the forward pass."""


class TopologyError(FactorGraphError, ValueError):
    """Backward was seeded from a non-sink or a constant variable."""


class GraphConsistencyError(FactorGraphError, RuntimeError):
    """Backward state does not match the current graph (mutated or no forward)."""


class UnsupportedModeError(FactorGraphError, NotImplementedError):
    """Requested execution mode (e.g. multi-threaded) is not implemented."""
