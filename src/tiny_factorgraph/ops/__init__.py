"""
Reference operations implemented with numpy.
"""

from .numeric import Add, MatMul, Mul, ReduceSum, ReLU, Scale, Square

__all__ = ["Add", "Mul", "Square", "Scale", "MatMul", "ReLU", "ReduceSum"]
