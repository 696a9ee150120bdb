"""Edge resolution: pick the node that runs after the current one.

Outgoing edges are checked in declaration order and the first match wins.
``on_error`` edges are never taken on the success path; they are only
followed through ``resolve_error_edge`` when a node fails.
"""

from collections.abc import Iterable, Mapping
from typing import Any, Optional

from promptchain.chains.graph import get_error_edge, get_outgoing_edges
from promptchain.exceptions import EvaluationError
from promptchain.expressions import evaluate_condition
from promptchain.types import ConditionType, Edge


def edge_matches(edge: Edge, result: Any, variables: Mapping[str, Any]) -> bool:
    """
    Raises:
        EvaluationError: an ``expression`` edge has no expression or fails to
            evaluate.
    """
    condition = edge.condition
    if condition.type == ConditionType.ALWAYS:
        return True
    if condition.type == ConditionType.IF_TRUE:
        return result is True
    if condition.type == ConditionType.IF_FALSE:
        return result is False
    if condition.type == ConditionType.EXPRESSION:
        if not condition.expression:
            raise EvaluationError(f"Edge '{edge.id}' has an expression condition but no expression")
        return evaluate_condition(condition.expression, variables)
    return False


def resolve_next(
    node_id: str,
    edges: Iterable[Edge],
    result: Any,
    variables: Mapping[str, Any],
) -> Optional[str]:
    """Return the target of the first matching outgoing edge, or None."""
    for edge in get_outgoing_edges(node_id, edges):
        if edge_matches(edge, result, variables):
            return edge.target_node_id
    return None


def resolve_error_edge(node_id: str, edges: Iterable[Edge]) -> Optional[str]:
    """Return the target of the first ``on_error`` edge leaving node_id, or None."""
    edge = get_error_edge(node_id, edges)
    return edge.target_node_id if edge else None
