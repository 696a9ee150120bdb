"""Tests for edge resolution."""

import pytest

from promptchain.core.resolver import resolve_error_edge, resolve_next
from promptchain.exceptions import EvaluationError
from promptchain.types import ConditionType, Edge, EdgeCondition


def _edge(eid, target, ctype, expression=None):
    return Edge(id=eid, source_node_id="n", target_node_id=target,
                condition=EdgeCondition(type=ctype, expression=expression))


def test_first_match_wins_in_declaration_order():
    edges = [_edge("e1", "a", ConditionType.ALWAYS), _edge("e2", "b", ConditionType.ALWAYS)]
    assert resolve_next("n", edges, None, {}) == "a"
    assert resolve_next("n", list(reversed(edges)), None, {}) == "b"


def test_if_true_and_if_false_are_strict():
    edges = [_edge("e1", "t", ConditionType.IF_TRUE), _edge("e2", "f", ConditionType.IF_FALSE)]
    assert resolve_next("n", edges, True, {}) == "t"
    assert resolve_next("n", edges, False, {}) == "f"
    assert resolve_next("n", edges, 1, {}) is None
    assert resolve_next("n", edges, "", {}) is None


def test_expression_edge_uses_variables():
    edges = [
        _edge("e1", "big", ConditionType.EXPRESSION, "$score > 5"),
        _edge("e2", "small", ConditionType.ALWAYS),
    ]
    assert resolve_next("n", edges, None, {"score": 9}) == "big"
    assert resolve_next("n", edges, None, {"score": 1}) == "small"


def test_expression_edge_failure_raises():
    edges = [_edge("e1", "x", ConditionType.EXPRESSION, "$missing")]
    with pytest.raises(EvaluationError):
        resolve_next("n", edges, None, {})


def test_on_error_edges_skipped_on_success_path():
    edges = [_edge("e1", "h", ConditionType.ON_ERROR)]
    assert resolve_next("n", edges, None, {}) is None
    assert resolve_error_edge("n", edges) == "h"


def test_only_edges_of_current_node_considered():
    other = Edge(id="e9", source_node_id="other", target_node_id="x")
    assert resolve_next("n", [other], None, {}) is None
