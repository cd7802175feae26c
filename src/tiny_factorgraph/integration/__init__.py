"""
Framework integration entry points.

Subpackages:
- `torch`: wrap torch callables as factors (autograd-backed backward).
- `jax`: wrap JAX callables as factors (``jax.vjp``-backed backward).
"""

from . import torch as torch_integration  # noqa: F401
from . import jax as jax_integration      # noqa: F401

__all__ = ["torch_integration", "jax_integration"]
