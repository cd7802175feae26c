"""
PyTorch integration for tiny-factorgraph.

Exports:
- `TorchFunctionFactor`: factor wrapping a torch callable, differentiated
  through torch autograd.
- `TorchVariable`: variable keeping torch tensors as value and gradient.
"""

from .function_factor import TorchFunctionFactor, TorchVariable

__all__ = ["TorchFunctionFactor", "TorchVariable"]
