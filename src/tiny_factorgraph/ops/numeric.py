"""
Reference numpy operations.

These exist so graphs can be built and differentiated end to end; real
workloads bring their own factors (see ``tiny_factorgraph.integration``).
"""

from __future__ import annotations

from typing import Any, Iterable, Sequence

import numpy as np

from tiny_factorgraph.graph.nodes import Factor, GradPolicy, Variable


def _unbroadcast(grad: Any, shape: tuple) -> np.ndarray:
    """Sum out dimensions that were broadcast."""
    grad = np.asarray(grad)
    if grad.shape == shape:
        return grad
    if shape == ():
        return grad.sum().reshape(())
    ndim_diff = grad.ndim - len(shape)
    if ndim_diff > 0:
        grad = grad.sum(axis=tuple(range(ndim_diff)))
    reduce_dims = tuple(i for i, s in enumerate(shape) if s == 1 and grad.shape[i] != 1)
    if reduce_dims:
        grad = grad.sum(axis=reduce_dims, keepdims=True)
    return grad.reshape(shape)


class _NumpyFactor(Factor):
    """Fixed-arity factor with a single output."""

    arity: int = 1

    def __init__(
        self,
        name: str,
        operands: Iterable[Variable],
        outputs: Iterable[Variable],
        grad_policy: GradPolicy = GradPolicy.ALWAYS,
    ) -> None:
        super().__init__(name, operands, outputs, grad_policy)
        if len(self.operands) != self.arity:
            raise ValueError(
                f"{type(self).__name__} `{name}` expects {self.arity} operands, "
                f"got {len(self.operands)}."
            )
        if len(self.outputs) != 1:
            raise ValueError(f"{type(self).__name__} `{name}` expects exactly one output.")


class Add(_NumpyFactor):
    arity = 2

    def forward(self, operands: Sequence[Variable], outputs: Sequence[Variable]) -> None:
        a, b = operands
        outputs[0].value = np.add(a.value, b.value)

    def backward(self, operands: Sequence[Variable], outputs: Sequence[Variable]) -> None:
        a, b = operands
        grad = outputs[0].grad
        self.accumulate(a, _unbroadcast(grad, np.shape(a.value)))
        self.accumulate(b, _unbroadcast(grad, np.shape(b.value)))


class Mul(_NumpyFactor):
    arity = 2

    def forward(self, operands: Sequence[Variable], outputs: Sequence[Variable]) -> None:
        a, b = operands
        outputs[0].value = np.multiply(a.value, b.value)

    def backward(self, operands: Sequence[Variable], outputs: Sequence[Variable]) -> None:
        a, b = operands
        grad = outputs[0].grad
        self.accumulate(a, _unbroadcast(grad * b.value, np.shape(a.value)))
        self.accumulate(b, _unbroadcast(grad * a.value, np.shape(b.value)))


class Square(_NumpyFactor):
    def forward(self, operands: Sequence[Variable], outputs: Sequence[Variable]) -> None:
        outputs[0].value = np.square(operands[0].value)

    def backward(self, operands: Sequence[Variable], outputs: Sequence[Variable]) -> None:
        x = operands[0]
        self.accumulate(x, 2.0 * np.asarray(x.value) * outputs[0].grad)


class Scale(_NumpyFactor):
    """Multiply by a fixed scalar, e.g. ``Scale("double", [x], [y], factor=2.0)``."""

    def __init__(
        self,
        name: str,
        operands: Iterable[Variable],
        outputs: Iterable[Variable],
        factor: float = 1.0,
        grad_policy: GradPolicy = GradPolicy.ALWAYS,
    ) -> None:
        super().__init__(name, operands, outputs, grad_policy)
        self.factor = factor

    def forward(self, operands: Sequence[Variable], outputs: Sequence[Variable]) -> None:
        outputs[0].value = np.multiply(operands[0].value, self.factor)

    def backward(self, operands: Sequence[Variable], outputs: Sequence[Variable]) -> None:
        self.accumulate(operands[0], self.factor * outputs[0].grad)


class MatMul(_NumpyFactor):
    arity = 2

    def forward(self, operands: Sequence[Variable], outputs: Sequence[Variable]) -> None:
        a, b = operands
        outputs[0].value = np.matmul(a.value, b.value)

    def backward(self, operands: Sequence[Variable], outputs: Sequence[Variable]) -> None:
        # 2-D only
        a, b = operands
        grad = np.asarray(outputs[0].grad)
        self.accumulate(a, grad @ np.asarray(b.value).T)
        self.accumulate(b, np.asarray(a.value).T @ grad)


class ReLU(_NumpyFactor):
    def forward(self, operands: Sequence[Variable], outputs: Sequence[Variable]) -> None:
        outputs[0].value = np.maximum(operands[0].value, 0)

    def backward(self, operands: Sequence[Variable], outputs: Sequence[Variable]) -> None:
        x = operands[0]
        mask = np.asarray(x.value) > 0
        self.accumulate(x, outputs[0].grad * mask)


class ReduceSum(_NumpyFactor):
    """Sum of all elements; the usual way to turn an activation into a loss."""

    def forward(self, operands: Sequence[Variable], outputs: Sequence[Variable]) -> None:
        outputs[0].value = np.sum(operands[0].value)

    def backward(self, operands: Sequence[Variable], outputs: Sequence[Variable]) -> None:
        x = operands[0]
        self.accumulate(x, np.broadcast_to(outputs[0].grad, np.shape(x.value)).copy())
