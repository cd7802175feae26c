from __future__ import annotations

import numpy as np
import pytest

from tiny_factorgraph.errors import (
    GraphConsistencyError,
    TopologyError,
    UnsupportedModeError,
)
from tiny_factorgraph.graph.nodes import ConstVariable, DiffVariable, GradPolicy
from tiny_factorgraph.graph.registry import FactorGraph
from tiny_factorgraph.ops import Add, Mul, Scale, Square
from tiny_factorgraph.runtime.executor import GraphExecutor
from tiny_factorgraph.runtime.hooks import ExecutionTrace


def _build_mul_graph():
    graph = FactorGraph()
    a = graph.add_var(DiffVariable("a"))
    b = graph.add_var(DiffVariable("b"))
    c = graph.add_var(DiffVariable("c"))
    graph.add_factor(Mul("mul", [a, b], [c]))
    return graph, a, b, c


def test_mul_scenario_gradients() -> None:
    graph, a, b, c = _build_mul_graph()
    executor = GraphExecutor(graph)

    executor.feed_forward([c], {"a": 2, "b": 3})
    executor.back_propagate([c])

    np.testing.assert_allclose(a.grad, 3.0)
    np.testing.assert_allclose(b.grad, 2.0)
    np.testing.assert_allclose(c.grad, 1.0)


def test_mul_add_chain_matches_analytic_derivative() -> None:
    graph = FactorGraph()
    a = graph.add_var(DiffVariable("a"))
    b = graph.add_var(DiffVariable("b"))
    c = graph.add_var(DiffVariable("c"))
    m = graph.add_var(DiffVariable("m"))
    y = graph.add_var(DiffVariable("y"))
    graph.add_factor(Mul("mul", [a, b], [m]))
    graph.add_factor(Add("add", [m, c], [y]))
    executor = GraphExecutor(graph)

    executor.feed_forward([y], {"a": np.array([2.0, -1.0]), "b": np.array([3.0, 4.0]), "c": np.array([4.0, 0.5])})
    executor.back_propagate([y])

    np.testing.assert_allclose(y.value, [10.0, -3.5])
    np.testing.assert_allclose(a.grad, [3.0, 4.0])
    np.testing.assert_allclose(b.grad, [2.0, -1.0])
    np.testing.assert_allclose(c.grad, [1.0, 1.0])


def test_repeated_backward_does_not_accumulate_across_passes() -> None:
    graph, a, b, c = _build_mul_graph()
    executor = GraphExecutor(graph)
    executor.feed_forward([c], {"a": 2.0, "b": 3.0})
    executor.back_propagate([c])
    executor.back_propagate([c])
    np.testing.assert_allclose(a.grad, 3.0)


def test_constant_operands_are_left_untouched() -> None:
    graph = FactorGraph()
    x = graph.add_var(ConstVariable("x"))
    w = graph.add_var(DiffVariable("w", value=np.array([0.5, -2.0])), need_feed=False)
    y = graph.add_var(DiffVariable("y"))
    graph.add_factor(Mul("mul", [x, w], [y]))
    executor = GraphExecutor(graph)

    data = np.array([3.0, 4.0])
    executor.feed_forward([y], {"x": data})
    executor.back_propagate([y])

    np.testing.assert_allclose(w.grad, data)
    assert not hasattr(x, "grad")
    np.testing.assert_array_equal(x.value, [3.0, 4.0])


def test_factor_with_only_constant_operands_is_skipped_but_traversed() -> None:
    graph = FactorGraph()
    k = graph.add_var(ConstVariable("k"))
    h = graph.add_var(DiffVariable("h"))
    w = graph.add_var(DiffVariable("w", value=5.0), need_feed=False)
    y = graph.add_var(DiffVariable("y"))
    graph.add_factor(Scale("scale", [k], [h], factor=2.0))
    graph.add_factor(Mul("mul", [h, w], [y]))
    trace = ExecutionTrace()
    executor = GraphExecutor(graph, callbacks=trace.callbacks())

    executor.feed_forward([y], {"k": 1.5})
    trace.clear()
    executor.back_propagate([y])

    assert trace.names("backward") == ["mul"]
    assert trace.names("skip-backward") == ["scale"]
    np.testing.assert_allclose(w.grad, 3.0)
    np.testing.assert_allclose(h.grad, 5.0)


def test_never_policy_stops_gradient_flow() -> None:
    graph = FactorGraph()
    x = graph.add_var(DiffVariable("x"))
    z = graph.add_var(DiffVariable("z"))
    y = graph.add_var(DiffVariable("y"))
    graph.add_factor(Scale("stop", [x], [z], factor=1.0, grad_policy=GradPolicy.NEVER))
    graph.add_factor(Square("sq", [z], [y]))
    trace = ExecutionTrace()
    executor = GraphExecutor(graph, callbacks=trace.callbacks())

    executor.feed_forward([y], {"x": 3.0})
    executor.back_propagate([y])

    np.testing.assert_allclose(z.grad, 6.0)
    np.testing.assert_allclose(x.grad, 0.0)
    assert trace.names("skip-backward") == ["stop"]


def test_fan_out_waits_for_every_consumer() -> None:
    # z = p + 3p with p = x^2, so dz/dx = 8x.
    graph = FactorGraph()
    x = graph.add_var(DiffVariable("x"))
    p = graph.add_var(DiffVariable("p"))
    q = graph.add_var(DiffVariable("q"))
    z = graph.add_var(DiffVariable("z"))
    graph.add_factor(Square("sq", [x], [p]))
    graph.add_factor(Scale("triple", [p], [q], factor=3.0))
    graph.add_factor(Add("add", [p, q], [z]))
    trace = ExecutionTrace()
    executor = GraphExecutor(graph, callbacks=trace.callbacks())

    executor.feed_forward([z], {"x": 2.0})
    executor.back_propagate([z])

    assert trace.names("backward") == ["add", "triple", "sq"]
    np.testing.assert_allclose(p.grad, 4.0)
    np.testing.assert_allclose(x.grad, 16.0)


def test_diamond_converges() -> None:
    graph = FactorGraph()
    a = graph.add_var(DiffVariable("a"))
    b = graph.add_var(DiffVariable("b"))
    c = graph.add_var(DiffVariable("c"))
    d = graph.add_var(DiffVariable("d"))
    graph.add_factor(Square("sq", [a], [b]))
    graph.add_factor(Scale("double", [a], [c], factor=2.0))
    graph.add_factor(Mul("mul", [b, c], [d]))
    executor = GraphExecutor(graph)

    # d = 2a^3
    executor.feed_forward([d], {"a": 2.0})
    executor.back_propagate([d])

    np.testing.assert_allclose(d.value, 16.0)
    np.testing.assert_allclose(a.grad, 24.0)


def test_repeated_operand_with_producer() -> None:
    graph = FactorGraph()
    x = graph.add_var(DiffVariable("x"))
    p = graph.add_var(DiffVariable("p"))
    y = graph.add_var(DiffVariable("y"))
    graph.add_factor(Scale("triple", [x], [p], factor=3.0))
    graph.add_factor(Mul("pp", [p, p], [y]))
    executor = GraphExecutor(graph)

    # y = 9x^2
    executor.feed_forward([y], {"x": 1.0})
    executor.back_propagate([y])

    np.testing.assert_allclose(x.grad, 18.0)


def test_required_sink_that_is_not_a_seed() -> None:
    graph = FactorGraph()
    x = graph.add_var(DiffVariable("x"))
    p = graph.add_var(DiffVariable("p"))
    d = graph.add_var(DiffVariable("d"))
    e = graph.add_var(DiffVariable("e"))
    graph.add_factor(Scale("double", [x], [p], factor=2.0))
    graph.add_factor(Square("sq", [p], [d]))
    graph.add_factor(Scale("five", [p], [e], factor=5.0))
    executor = GraphExecutor(graph)

    executor.feed_forward([d, e], {"x": 3.0})
    executor.back_propagate([d])
    np.testing.assert_allclose(x.grad, 24.0)

    executor.back_propagate([d, e])
    np.testing.assert_allclose(x.grad, 34.0)


def test_constant_metric_target_is_traversed_but_not_evaluated() -> None:
    # k is a constant metric requested in forward next to the loss y.
    graph = FactorGraph()
    a = graph.add_var(DiffVariable("a"))
    y = graph.add_var(DiffVariable("y"))
    k = graph.add_var(ConstVariable("k"))
    graph.add_factor(Square("sq", [a], [y]))
    graph.add_factor(Scale("metric", [a], [k], factor=0.5))
    trace = ExecutionTrace()
    executor = GraphExecutor(graph, callbacks=trace.callbacks())

    executor.feed_forward([y, k], {"a": 3.0})
    np.testing.assert_allclose(k.value, 1.5)
    trace.clear()
    executor.back_propagate([y])

    assert trace.names("backward") == ["sq"]
    assert trace.names("skip-backward") == ["metric"]
    np.testing.assert_allclose(a.grad, 6.0)
    np.testing.assert_allclose(y.grad, 1.0)


def test_constant_intermediate_stops_gradient_without_evaluation() -> None:
    graph = FactorGraph()
    a = graph.add_var(DiffVariable("a"))
    k = graph.add_var(ConstVariable("k"))
    w = graph.add_var(DiffVariable("w", value=4.0), need_feed=False)
    y = graph.add_var(DiffVariable("y"))
    graph.add_factor(Scale("scale", [a], [k], factor=2.0))
    graph.add_factor(Mul("mul", [k, w], [y]))
    trace = ExecutionTrace()
    executor = GraphExecutor(graph, callbacks=trace.callbacks())

    executor.feed_forward([y], {"a": 3.0})
    np.testing.assert_allclose(y.value, 24.0)
    trace.clear()
    executor.back_propagate([y])

    assert trace.names("backward") == ["mul"]
    assert trace.names("skip-backward") == ["scale"]
    np.testing.assert_allclose(w.grad, 6.0)
    np.testing.assert_allclose(a.grad, 0.0)
    assert not hasattr(k, "grad")


def test_seed_outside_last_forward_gets_float_gradient() -> None:
    graph = FactorGraph()
    x = graph.add_var(DiffVariable("x"))
    d = graph.add_var(DiffVariable("d"))
    e = graph.add_var(DiffVariable("e"))
    graph.add_factor(Square("sq", [x], [d]))
    graph.add_factor(Scale("five", [x], [e], factor=5.0))
    executor = GraphExecutor(graph)

    executor.feed_forward([d], {"x": 3.0})
    assert e.value is None
    executor.back_propagate([e])

    assert e.grad.dtype == np.float64
    assert x.grad.dtype.kind == "f"
    np.testing.assert_allclose(x.grad, 5.0)


def test_backward_from_non_sink_rejected() -> None:
    graph, a, b, c = _build_mul_graph()
    out = graph.add_var(DiffVariable("out"))
    graph.add_factor(Square("sq", [c], [out]))
    executor = GraphExecutor(graph)
    executor.feed_forward([out], {"a": 1.0, "b": 2.0})

    with pytest.raises(TopologyError) as excinfo:
        executor.back_propagate([c])
    assert "top variables" in str(excinfo.value)
    assert a.grad is None


def test_backward_from_constant_rejected() -> None:
    graph = FactorGraph()
    a = graph.add_var(DiffVariable("a"))
    k = graph.add_var(ConstVariable("k"))
    graph.add_factor(Scale("scale", [a], [k], factor=2.0))
    executor = GraphExecutor(graph)
    executor.feed_forward([k], {"a": 1.0})

    with pytest.raises(TopologyError):
        executor.back_propagate([k])
    with pytest.raises(ValueError):
        executor.back_propagate(["k"])


def test_backward_without_forward_rejected() -> None:
    graph, _, _, c = _build_mul_graph()
    with pytest.raises(GraphConsistencyError):
        GraphExecutor(graph).back_propagate([c])


def test_backward_after_graph_change_rejected() -> None:
    graph, _, _, c = _build_mul_graph()
    executor = GraphExecutor(graph)
    executor.feed_forward([c], {"a": 1.0, "b": 2.0})
    graph.add_var(DiffVariable("late"))

    with pytest.raises(GraphConsistencyError) as excinfo:
        executor.back_propagate([c])
    assert "unexpected change of computation graph" in str(excinfo.value)


def test_backward_after_failed_forward_rejected() -> None:
    graph, _, _, c = _build_mul_graph()
    executor = GraphExecutor(graph)
    executor.feed_forward([c], {"a": 1.0, "b": 2.0})
    with pytest.raises(RuntimeError):
        executor.feed_forward([c], {"a": 1.0})
    with pytest.raises(GraphConsistencyError):
        executor.back_propagate([c])


def test_backward_unsupported_thread_count() -> None:
    graph, a, _, c = _build_mul_graph()
    executor = GraphExecutor(graph)
    executor.feed_forward([c], {"a": 1.0, "b": 2.0})
    with pytest.raises(UnsupportedModeError):
        executor.back_propagate([c], n_thread=2)
    assert a.grad is None


def test_backward_reuses_required_set_of_last_forward() -> None:
    graph = FactorGraph()
    x = graph.add_var(DiffVariable("x"))
    d = graph.add_var(DiffVariable("d"))
    e = graph.add_var(DiffVariable("e"))
    graph.add_factor(Square("square", [x], [d]))
    graph.add_factor(Scale("double", [x], [e], factor=2.0))
    trace = ExecutionTrace()
    executor = GraphExecutor(graph, callbacks=trace.callbacks())

    executor.feed_forward([d], {"x": 3.0})
    required = executor.last_state.required.copy()
    executor.back_propagate([d])

    np.testing.assert_array_equal(executor.last_state.required, required)
    assert trace.names("backward") == ["square"]
    np.testing.assert_allclose(x.grad, 6.0)
