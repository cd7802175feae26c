"""
JAX integration for tiny-factorgraph.
"""

from .function_factor import JaxFunctionFactor

__all__ = ["JaxFunctionFactor"]
