from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, Iterable, List, Mapping, Optional, Tuple

import numpy as np

from tiny_factorgraph.errors import (
    GraphConsistencyError,
    NotReadyError,
    TopologyError,
    UnsupportedModeError,
)
from tiny_factorgraph.graph.nodes import Factor, GradPolicy, Variable
from tiny_factorgraph.graph.registry import FactorGraph, VarRef
from tiny_factorgraph.runtime.hooks import ExecutionCallbacks
from tiny_factorgraph.runtime.profiling import Profiler
from tiny_factorgraph.utils.config import config
from tiny_factorgraph.utils.logging import logger

SEQUENTIAL = 1


@dataclass
class PassState:
    """
    Scratch state of one forward query, sized from the registry at the time
    the query started.

    Args:
        required: Per-variable flag, set for the producer closure of the targets.
        ready: Per-variable flag, set once the variable holds a valid value.
        n_pending: Per-factor count of outstanding dependencies.
        targets: Variables the query asked for, in caller order.
    """

    required: np.ndarray
    ready: np.ndarray
    n_pending: np.ndarray
    targets: Tuple[Variable, ...]

    def matches(self, graph: FactorGraph) -> bool:
        return (
            self.required.shape == (graph.num_vars,)
            and self.ready.shape == (graph.num_vars,)
            and self.n_pending.shape == (graph.num_factors,)
        )


class GraphExecutor:
    """
    Runs forward and backward passes over a ``FactorGraph``.

    Execution is driven by live reference counts rather than a precomputed
    order: a factor is queued once all of its dependencies have signalled,
    so fed and pre-ready variables simply seed the counters.

    ``n_thread`` is accepted by every query; only sequential execution
    (``n_thread == 1``) is implemented.
    """

    def __init__(
        self,
        graph: FactorGraph,
        callbacks: Optional[ExecutionCallbacks] = None,
    ) -> None:
        self.graph = graph
        self.callbacks = callbacks or ExecutionCallbacks()
        self.profiler = Profiler()
        self.last_state: Optional[PassState] = None

    def reset_profiler(self) -> None:
        self.profiler = Profiler()

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #
    def dependency_parse(self, targets: Iterable[VarRef]) -> np.ndarray:
        """
        Mark every variable whose value can influence one of ``targets``.

        Returns:
            Boolean array indexed by variable index.
        """
        graph = self.graph
        required = np.zeros(graph.num_vars, dtype=bool)
        queue: Deque[Variable] = deque()

        for var in targets:
            idx = graph.var_idx(var)
            if not required[idx]:
                required[idx] = True
                queue.append(graph.var_list[idx])

        while queue:
            current = queue.popleft()
            for factor in graph.producers(current):
                for var in graph.operands(factor):
                    idx = graph.var_idx(var)
                    if not required[idx]:
                        required[idx] = True
                        queue.append(var)

        return required

    def feed_forward(
        self,
        targets: Iterable[VarRef],
        feed_dict: Optional[Mapping[str, Any]] = None,
        n_thread: Optional[int] = None,
    ) -> List[Variable]:
        """
        Evaluate the subgraph needed for ``targets``.

        Args:
            targets: Variables (or names) to compute.
            feed_dict: Variable name -> caller-owned data, bound without copy.
            n_thread: Worker count; defaults to ``config.n_thread``.

        Returns:
            The target variables, in the order given.
        """
        self._check_mode(n_thread)
        graph = self.graph
        if config.debug:
            graph.validate()

        resolved = [graph.get_var(var) for var in targets]
        feeds = [(graph.get_var(name), data) for name, data in (feed_dict or {}).items()]
        self.last_state = None

        state = PassState(
            required=self.dependency_parse(resolved),
            ready=np.zeros(graph.num_vars, dtype=bool),
            n_pending=np.zeros(graph.num_factors, dtype=np.int64),
            targets=tuple(resolved),
        )
        for name in graph.pre_ready:
            state.ready[graph.var_idx(name)] = True
        for var, data in feeds:
            state.ready[graph.var_idx(var)] = True
            var.set_ref(data)

        self._sequential_forward(state)

        for var in resolved:
            if not state.ready[graph.var_idx(var)]:
                raise NotReadyError(f"required variable {var.name} is not ready")

        self.last_state = state
        self.profiler.record_pass()
        logger.info(
            "forward pass done: %d targets, %d/%d variables required",
            len(resolved),
            int(state.required.sum()),
            graph.num_vars,
        )
        return list(resolved)

    def back_propagate(
        self,
        targets: Iterable[VarRef],
        n_thread: Optional[int] = None,
    ) -> None:
        """
        Propagate unit gradients from ``targets`` back through the subgraph
        of the most recent forward pass.

        Targets must be sinks (no consumers) and differentiable. The required
        set is the one computed by the last ``feed_forward``; calling this
        with targets unrelated to that pass yields meaningless gradients.
        """
        self._check_mode(n_thread)
        graph = self.graph
        state = self.last_state
        if state is None or not state.matches(graph):
            raise GraphConsistencyError(
                "unexpected change of computation graph in backward stage"
            )

        seeds: Dict[str, Variable] = {}
        for ref in targets:
            var = graph.get_var(ref)
            if graph.consumers(var):
                raise TopologyError(
                    f"only allow backprop from top variables, {var.name} has consumers"
                )
            if var.is_const:
                raise TopologyError(f"cannot calc grad for const variable {var.name}")
            seeds[var.name] = var

        for var in graph.var_list:
            if var.differentiable:
                var.zero_grad()  # type: ignore[attr-defined]
        for var in seeds.values():
            var.ones_grad()  # type: ignore[attr-defined]

        self._sequential_backward(state, list(seeds.values()))
        logger.info("backward pass done: %d seeds", len(seeds))

    # ------------------------------------------------------------------ #
    # Sequential strategy
    # ------------------------------------------------------------------ #
    def _check_mode(self, n_thread: Optional[int]) -> None:
        if n_thread is None:
            n_thread = config.n_thread
        if n_thread != SEQUENTIAL:
            raise UnsupportedModeError(
                f"n_thread={n_thread} is not implemented, only sequential execution "
                f"(n_thread={SEQUENTIAL}) is supported"
            )

    def _signal(self, factor: Factor, n_pending: np.ndarray, queue: Deque[Factor]) -> None:
        idx = self.graph.factor_idx(factor)
        n_pending[idx] -= 1
        if n_pending[idx] == 0:
            queue.append(factor)

    def _sequential_forward(self, state: PassState) -> None:
        graph = self.graph
        queue: Deque[Factor] = deque()

        for i, factor in enumerate(graph.factor_list):
            state.n_pending[i] = len(graph.operands(factor))
            if state.n_pending[i] == 0:
                queue.append(factor)

        for idx in np.flatnonzero(state.ready):
            for factor in graph.consumers(graph.var_list[idx]):
                self._signal(factor, state.n_pending, queue)

        while queue:
            factor = queue.popleft()
            operands = graph.operands(factor)
            outputs = graph.outputs(factor)

            if not any(state.required[graph.var_idx(var)] for var in outputs):
                logger.debug("forward skip %s", factor.name)
                self.profiler.record_skip()
                if self.callbacks.on_skip:
                    self.callbacks.on_skip(factor, "forward")
                continue

            logger.debug("forward %s", factor.name)
            start = time.perf_counter()
            factor.forward(operands, outputs)
            self.profiler.record_forward(factor.name, (time.perf_counter() - start) * 1e3)
            if self.callbacks.on_forward:
                self.callbacks.on_forward(factor)

            for var in outputs:
                idx = graph.var_idx(var)
                # An output that was fed or listed twice has already signalled.
                if state.ready[idx]:
                    continue
                state.ready[idx] = True
                for consumer in graph.consumers(var):
                    self._signal(consumer, state.n_pending, queue)

    def _sequential_backward(self, state: PassState, seeds: List[Variable]) -> None:
        graph = self.graph
        queue: Deque[Factor] = deque()
        seed_names = {var.name for var in seeds}

        # Factors taking part in this backward pass.
        active = np.array(
            [
                any(
                    state.required[graph.var_idx(var)] or var.name in seed_names
                    for var in graph.outputs(factor)
                )
                for factor in graph.factor_list
            ],
            dtype=bool,
        )

        # One signal per seed output plus one per use of a required output by
        # an active consumer; fan-out variables then wait for every consumer.
        for i, factor in enumerate(graph.factor_list):
            count = 0
            for var in graph.outputs(factor):
                if var.name in seed_names:
                    count += 1
                if state.required[graph.var_idx(var)]:
                    count += sum(
                        1 for consumer in graph.consumers(var) if active[graph.factor_idx(consumer)]
                    )
            state.n_pending[i] = count
            if active[i] and count == 0:
                queue.append(factor)

        # Queued without any gradient to receive (required sinks that are not
        # seeds); they only pass the signal on to their producers.
        bookkeeping = {factor.name for factor in queue}

        for var in seeds:
            for factor in graph.producers(var):
                self._signal(factor, state.n_pending, queue)

        while queue:
            factor = queue.popleft()
            operands = graph.operands(factor)
            outputs = graph.outputs(factor)

            necessary = (
                factor.name not in bookkeeping
                and factor.grad_policy is GradPolicy.ALWAYS
                and any(not var.is_const for var in operands)
                and any(var.differentiable for var in outputs)
            )
            if necessary:
                logger.debug("backward %s", factor.name)
                start = time.perf_counter()
                factor.backward(operands, outputs)
                self.profiler.record_backward(
                    factor.name, (time.perf_counter() - start) * 1e3
                )
                if self.callbacks.on_backward:
                    self.callbacks.on_backward(factor)
            else:
                logger.debug("backward skip %s", factor.name)
                self.profiler.record_skip()
                if self.callbacks.on_skip:
                    self.callbacks.on_skip(factor, "backward")

            for var in operands:
                for producer in graph.producers(var):
                    self._signal(producer, state.n_pending, queue)
