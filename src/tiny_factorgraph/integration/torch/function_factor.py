from __future__ import annotations

from typing import Any, Callable, Iterable, Sequence, Tuple

from tiny_factorgraph.graph.nodes import DiffVariable, Factor, GradPolicy, Variable

try:
    import torch
except ModuleNotFoundError:  # pragma: no cover - handled in tests
    torch = None  # type: ignore


def _require_torch() -> None:
    if torch is None:  # pragma: no cover
        raise ModuleNotFoundError("The torch integration requires PyTorch to be installed.")


def _as_tuple(result: Any) -> Tuple[Any, ...]:
    return tuple(result) if isinstance(result, (list, tuple)) else (result,)


def _as_float_tensor(value: Any) -> "torch.Tensor":
    tensor = torch.as_tensor(value)
    if not tensor.is_floating_point():
        tensor = tensor.to(torch.get_default_dtype())
    return tensor.detach()


class TorchVariable(DiffVariable):
    """Differentiable variable whose value and gradient are torch tensors."""

    def _full_like(self, fill: float) -> Any:
        _require_torch()
        if self.value is None:
            return torch.full((), fill)
        return torch.full_like(_as_float_tensor(self.value), fill)


class TorchFunctionFactor(Factor):
    """
    Wrap a torch callable as a factor.

    ``fn`` receives one tensor per operand and returns a tensor, or a tuple
    with one tensor per output. Backward runs
    ``torch.autograd.functional.vjp`` against the output gradients, so ``fn``
    needs no hand-written derivative.

    Example::

        h = graph.add_var(TorchVariable("h"))
        graph.add_factor(TorchFunctionFactor("tanh", torch.tanh, [x], [h]))
    """

    def __init__(
        self,
        name: str,
        fn: Callable[..., Any],
        operands: Iterable[Variable],
        outputs: Iterable[Variable],
        grad_policy: GradPolicy = GradPolicy.ALWAYS,
    ) -> None:
        _require_torch()
        super().__init__(name, operands, outputs, grad_policy)
        self.fn = fn

    def forward(self, operands: Sequence[Variable], outputs: Sequence[Variable]) -> None:
        inputs = tuple(torch.as_tensor(var.value) for var in operands)
        with torch.no_grad():
            results = _as_tuple(self.fn(*inputs))
        if len(results) != len(outputs):
            raise ValueError(
                f"Factor `{self.name}` produced {len(results)} values "
                f"for {len(outputs)} outputs."
            )
        for var, value in zip(outputs, results):
            var.value = value

    def backward(self, operands: Sequence[Variable], outputs: Sequence[Variable]) -> None:
        inputs = tuple(_as_float_tensor(var.value) for var in operands)
        cotangents = tuple(
            _as_float_tensor(var.grad).to(_as_float_tensor(var.value).dtype)
            for var in outputs
        )
        _, grads = torch.autograd.functional.vjp(
            self.fn, inputs, cotangents if len(cotangents) > 1 else cotangents[0]
        )
        for var, grad in zip(operands, _as_tuple(grads)):
            if isinstance(var, TorchVariable):
                self.accumulate(var, grad)
            else:
                self.accumulate(var, grad.detach().cpu().numpy())
