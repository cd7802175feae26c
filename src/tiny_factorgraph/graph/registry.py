from __future__ import annotations

from collections import deque
from typing import Dict, List, Tuple, Union

from tiny_factorgraph.errors import NotRegisteredError, RegistrationError
from tiny_factorgraph.graph.nodes import Factor, Variable
from tiny_factorgraph.graph.topo import factor_topological_order

VarRef = Union[Variable, str]
FactorRef = Union[Factor, str]


class FactorGraph:
    """
    Registry of variables and factors with producer/consumer adjacency.

    Nodes live in two arenas (``var_list`` / ``factor_list``); every other
    structure refers to them by name or by dense index. Indices never change
    once assigned.
    """

    def __init__(self) -> None:
        self.var_list: List[Variable] = []
        self.factor_list: List[Factor] = []
        self._var_index: Dict[str, int] = {}
        self._factor_index: Dict[str, int] = {}
        # var name -> (producers, consumers)
        self._var_edges: Dict[str, Tuple[List[Factor], List[Factor]]] = {}
        # factor name -> (operands, outputs)
        self._factor_edges: Dict[str, Tuple[Tuple[Variable, ...], Tuple[Variable, ...]]] = {}
        self._pre_ready: List[str] = []

    # ------------------------------------------------------------------ #
    # Construction
    # ------------------------------------------------------------------ #
    def add_var(self, var: Variable, need_feed: bool = True) -> Variable:
        """
        Register ``var``.

        Args:
            var: Variable to register; its name must be unused.
            need_feed: If ``False`` the variable is ready at the start of
                every forward pass without being fed (weights, constants).
        """
        if var.name in self._var_index:
            raise RegistrationError(f"variable {var.name} is already inserted")
        self._var_index[var.name] = len(self.var_list)
        self.var_list.append(var)
        self._var_edges[var.name] = ([], [])
        if not need_feed:
            self._pre_ready.append(var.name)
        return var

    def add_factor(self, factor: Factor) -> Factor:
        """Register ``factor`` together with its operand and output edges."""
        if factor.name in self._factor_index:
            raise RegistrationError(f"factor {factor.name} is already inserted")
        for var in factor.operands + factor.outputs:
            registered = self._var_index.get(var.name)
            if registered is None or self.var_list[registered] is not var:
                raise RegistrationError(
                    f"factor {factor.name} references unregistered variable {var.name}"
                )
        if not factor.outputs:
            raise RegistrationError(f"factor {factor.name} declares no outputs")
        self._reject_cycle(factor)

        self._factor_index[factor.name] = len(self.factor_list)
        self.factor_list.append(factor)
        self._factor_edges[factor.name] = (factor.operands, factor.outputs)
        for var in factor.operands:
            self._var_edges[var.name][1].append(factor)
        for var in factor.outputs:
            self._var_edges[var.name][0].append(factor)
        return factor

    def _reject_cycle(self, factor: Factor) -> None:
        # An output that is already upstream of (or equal to) an operand
        # would close a loop through the new factor.
        outputs = {var.name for var in factor.outputs}
        seen = set()
        queue = deque(var.name for var in factor.operands)
        while queue:
            name = queue.popleft()
            if name in outputs:
                raise RegistrationError(
                    f"factor {factor.name} would create a cycle through variable {name}"
                )
            if name in seen:
                continue
            seen.add(name)
            for producer in self._var_edges[name][0]:
                queue.extend(var.name for var in producer.operands)

    # ------------------------------------------------------------------ #
    # Lookup
    # ------------------------------------------------------------------ #
    def var_idx(self, var: VarRef) -> int:
        name = var if isinstance(var, str) else var.name
        try:
            return self._var_index[name]
        except KeyError:
            raise NotRegisteredError(f"variable {name} is not registered") from None

    def factor_idx(self, factor: FactorRef) -> int:
        name = factor if isinstance(factor, str) else factor.name
        try:
            return self._factor_index[name]
        except KeyError:
            raise NotRegisteredError(f"factor {name} is not registered") from None

    def get_var(self, var: VarRef) -> Variable:
        return self.var_list[self.var_idx(var)]

    def get_factor(self, factor: FactorRef) -> Factor:
        return self.factor_list[self.factor_idx(factor)]

    def producers(self, var: VarRef) -> List[Factor]:
        return self._var_edges[self.get_var(var).name][0]

    def consumers(self, var: VarRef) -> List[Factor]:
        return self._var_edges[self.get_var(var).name][1]

    def operands(self, factor: FactorRef) -> Tuple[Variable, ...]:
        return self._factor_edges[self.get_factor(factor).name][0]

    def outputs(self, factor: FactorRef) -> Tuple[Variable, ...]:
        return self._factor_edges[self.get_factor(factor).name][1]

    def is_sink(self, var: VarRef) -> bool:
        return not self.consumers(var)

    @property
    def num_vars(self) -> int:
        return len(self.var_list)

    @property
    def num_factors(self) -> int:
        return len(self.factor_list)

    @property
    def pre_ready(self) -> List[str]:
        return list(self._pre_ready)

    # ------------------------------------------------------------------ #
    # Structure checks
    # ------------------------------------------------------------------ #
    def topological_order(self) -> List[Factor]:
        """Factors in a valid execution order (see ``graph.topo``)."""
        return factor_topological_order(self)

    def validate(self) -> None:
        """
        Validate structural soundness:
        - every factor is listed as consumer/producer of its endpoints
        - adjacency lists only reference registered factors
        - graph is acyclic
        """
        problems: List[str] = []
        for factor in self.factor_list:
            operands, outputs = self._factor_edges[factor.name]
            for var in operands:
                if factor not in self._var_edges[var.name][1]:
                    problems.append(f"{factor.name} missing from consumers of {var.name}")
            for var in outputs:
                if factor not in self._var_edges[var.name][0]:
                    problems.append(f"{factor.name} missing from producers of {var.name}")
        for name, (producers, consumers) in self._var_edges.items():
            for factor in producers + consumers:
                if factor.name not in self._factor_index:
                    problems.append(f"{name} references unknown factor {factor.name}")
        if problems:
            raise RegistrationError("Inconsistent adjacency:\n" + "\n".join(problems))

        # Will raise if a cycle exists.
        self.topological_order()
