"""
tiny-factorgraph

Reference-counted forward evaluation and reverse-mode gradient propagation
over factor graphs of variables and operations.
"""

from .errors import (
    FactorGraphError,
    GraphConsistencyError,
    NotReadyError,
    NotRegisteredError,
    RegistrationError,
    TopologyError,
    UnsupportedModeError,
)
from .graph.nodes import ConstVariable, DiffVariable, Factor, GradPolicy, Variable
from .graph.registry import FactorGraph
from .runtime.executor import GraphExecutor

__all__ = [
    "Variable",
    "DiffVariable",
    "ConstVariable",
    "Factor",
    "GradPolicy",
    "FactorGraph",
    "GraphExecutor",
    "FactorGraphError",
    "RegistrationError",
    "NotRegisteredError",
    "NotReadyError",
    "TopologyError",
    "GraphConsistencyError",
    "UnsupportedModeError",
]
