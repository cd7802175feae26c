"""
Topological ordering over factors.
"""

from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING, Dict, List

from tiny_factorgraph.errors import RegistrationError
from tiny_factorgraph.graph.nodes import Factor

if TYPE_CHECKING:
    from tiny_factorgraph.graph.registry import FactorGraph


def factor_topological_order(graph: "FactorGraph") -> List[Factor]:
    """
    Standard Kahn topo-sort over factors, ties broken by registration order.

    A factor depends on every producer of each of its operands.
    """
    indeg: Dict[str, int] = {}
    for factor in graph.factor_list:
        indeg[factor.name] = sum(len(graph.producers(var)) for var in factor.operands)

    ready = deque(f for f in graph.factor_list if indeg[f.name] == 0)
    order: List[Factor] = []

    while ready:
        current = ready.popleft()
        order.append(current)
        for var in current.outputs:
            for child in graph.consumers(var):
                indeg[child.name] -= 1
                if indeg[child.name] == 0:
                    ready.append(child)

    if len(order) != graph.num_factors:
        raise RegistrationError("Graph has cycles or is malformed.")

    return order
