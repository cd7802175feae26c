"""
Factor graph data model.

- `Variable`, `DiffVariable`, `ConstVariable`, `Factor`, `GradPolicy`
  (see `nodes.py`)
- `FactorGraph` registry with producer/consumer adjacency (see `registry.py`)
- Topological ordering helpers (see `topo.py`)
"""

from .nodes import ConstVariable, DiffVariable, Factor, GradPolicy, Variable
from .registry import FactorGraph
from . import topo

__all__ = [
    "Variable",
    "DiffVariable",
    "ConstVariable",
    "Factor",
    "GradPolicy",
    "FactorGraph",
    "topo",
]
