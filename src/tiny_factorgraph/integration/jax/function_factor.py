"""
Wrap JAX functions as factors, differentiated with ``jax.vjp``.
"""

from __future__ import annotations

from typing import Any, Callable, Iterable, Sequence, Tuple

import numpy as np

from tiny_factorgraph.graph.nodes import Factor, GradPolicy, Variable

try:
    import jax
    import jax.numpy as jnp
except ModuleNotFoundError:  # pragma: no cover - handled in tests
    jax = None  # type: ignore
    jnp = None  # type: ignore


def _as_tuple(result: Any) -> Tuple[Any, ...]:
    return tuple(result) if isinstance(result, (list, tuple)) else (result,)


def _as_float_array(value: Any) -> Any:
    array = jnp.asarray(value)
    if not jnp.issubdtype(array.dtype, jnp.floating):
        array = array.astype(jnp.float32)
    return array


class JaxFunctionFactor(Factor):
    """
    Factor whose forward is ``fn(*operand_values)``.

    ``fn`` returns one array, or a tuple with one array per output.
    Operand gradients are stored as numpy arrays.
    """

    def __init__(
        self,
        name: str,
        fn: Callable[..., Any],
        operands: Iterable[Variable],
        outputs: Iterable[Variable],
        grad_policy: GradPolicy = GradPolicy.ALWAYS,
    ) -> None:
        if jax is None:  # pragma: no cover
            raise ModuleNotFoundError("JaxFunctionFactor requires JAX to be installed.")
        super().__init__(name, operands, outputs, grad_policy)
        self.fn = fn

    def forward(self, operands: Sequence[Variable], outputs: Sequence[Variable]) -> None:
        results = _as_tuple(self.fn(*(var.value for var in operands)))
        if len(results) != len(outputs):
            raise ValueError(
                f"Factor `{self.name}` produced {len(results)} values "
                f"for {len(outputs)} outputs."
            )
        for var, value in zip(outputs, results):
            var.value = value

    def backward(self, operands: Sequence[Variable], outputs: Sequence[Variable]) -> None:
        inputs = [_as_float_array(var.value) for var in operands]
        primals_out, vjp_fn = jax.vjp(self.fn, *inputs)
        primals = _as_tuple(primals_out)
        cotangents = tuple(
            jnp.asarray(var.grad, dtype=primal.dtype) for var, primal in zip(outputs, primals)
        )
        if isinstance(primals_out, (list, tuple)):
            grads = vjp_fn(type(primals_out)(cotangents))
        else:
            grads = vjp_fn(cotangents[0])
        for var, grad in zip(operands, grads):
            self.accumulate(var, np.asarray(grad))
