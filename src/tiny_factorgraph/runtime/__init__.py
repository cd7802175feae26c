"""
Runtime support for executing factor graphs.

This layer is responsible for:
- Dependency analysis for a set of target variables.
- Driving the forward pass with reference-counted scheduling.
- Propagating gradients back through the evaluated subgraph.
"""

from .executor import GraphExecutor, PassState
from .hooks import ExecutionCallbacks, ExecutionTrace
from .profiling import Profiler, ProfileStats

__all__ = [
    "GraphExecutor",
    "PassState",
    "ExecutionCallbacks",
    "ExecutionTrace",
    "Profiler",
    "ProfileStats",
]
