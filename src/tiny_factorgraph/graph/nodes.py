from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Iterable, Sequence, Tuple

import numpy as np


class GradPolicy(Enum):
    """Whether a factor lets gradients flow from its outputs to its operands."""

    ALWAYS = "always"
    NEVER = "never"


@dataclass(eq=False)
class Variable:
    """
    Named value vertex of the factor graph.

    ``differentiable`` is a class-level capability flag: the executor checks
    it instead of inspecting types before touching gradient state.
    """

    name: str
    value: Any = None

    differentiable: ClassVar[bool] = False

    @property
    def is_const(self) -> bool:
        return not self.differentiable

    def set_ref(self, data: Any) -> None:
        """
        Bind caller-owned data as this variable's value for the current pass.

        The data is not copied; the caller keeps ownership.
        """
        self.value = data


@dataclass(eq=False)
class ConstVariable(Variable):
    """Variable that never receives gradients (inputs, labels, frozen weights)."""


@dataclass(eq=False)
class DiffVariable(Variable):
    """Variable with a gradient accumulator."""

    grad: Any = field(default=None, repr=False)

    differentiable: ClassVar[bool] = True

    def _full_like(self, fill: float) -> Any:
        if self.value is None:
            return np.full((), fill, dtype=np.float64)
        dtype = np.result_type(np.asarray(self.value).dtype, np.float32)
        return np.full(np.shape(self.value), fill, dtype=dtype)

    def zero_grad(self) -> None:
        # Variables not evaluated in the last pass have nothing to shape a buffer on.
        self.grad = None if self.value is None else self._full_like(0.0)

    def ones_grad(self) -> None:
        """Seed with unit sensitivity, the starting point of reverse mode."""
        self.grad = self._full_like(1.0)

    def accumulate_grad(self, delta: Any) -> None:
        if self.grad is None:
            self.grad = delta if self.value is None else self._full_like(0.0) + delta
        else:
            self.grad = self.grad + delta


class Factor:
    """
    Operation vertex: reads ``operands``, writes ``outputs``.

    Subclasses implement ``forward`` (write output values) and ``backward``
    (read output grads, accumulate operand grads). Both receive the operand
    and output tuples exactly as registered.
    """

    def __init__(
        self,
        name: str,
        operands: Iterable[Variable],
        outputs: Iterable[Variable],
        grad_policy: GradPolicy = GradPolicy.ALWAYS,
    ) -> None:
        self.name = name
        self.operands: Tuple[Variable, ...] = tuple(operands)
        self.outputs: Tuple[Variable, ...] = tuple(outputs)
        self.grad_policy = grad_policy

    def __repr__(self) -> str:
        ins = ", ".join(v.name for v in self.operands)
        outs = ", ".join(v.name for v in self.outputs)
        return f"{type(self).__name__}({self.name!r}: [{ins}] -> [{outs}])"

    def forward(self, operands: Sequence[Variable], outputs: Sequence[Variable]) -> None:
        raise NotImplementedError

    def backward(self, operands: Sequence[Variable], outputs: Sequence[Variable]) -> None:
        raise NotImplementedError

    @staticmethod
    def accumulate(var: Variable, delta: Any) -> None:
        """Add ``delta`` to ``var``'s gradient unless it is constant."""
        if var.differentiable:
            var.accumulate_grad(delta)  # type: ignore[attr-defined]
