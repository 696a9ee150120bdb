"""Tests for the pure graph helpers in promptchain.chains.graph."""

from promptchain.chains.graph import (
    find_back_edges, get_children, get_entry_points, get_error_edge, get_exit_points,
    get_outgoing_edges, get_parents, reachable_node_ids, structural_references,
)
from promptchain.types import ConditionType, Edge, EdgeCondition, Node, NodeType


def _nodes(*ids):
    return [Node(id=i, type=NodeType.TRANSFORM, config={"expression": "1"}) for i in ids]


def _edge(eid, source, target, ctype=ConditionType.ALWAYS):
    return Edge(id=eid, source_node_id=source, target_node_id=target,
                condition=EdgeCondition(type=ctype))


def test_outgoing_edges_keep_declaration_order():
    edges = [_edge("e2", "a", "c"), _edge("e1", "a", "b"), _edge("e3", "b", "c")]
    assert [e.id for e in get_outgoing_edges("a", edges)] == ["e2", "e1"]


def test_children_and_parents():
    edges = [_edge("e1", "a", "b"), _edge("e2", "c", "b")]
    assert [c for c, _ in get_children("a", edges)] == ["b"]
    assert sorted(p for p, _ in get_parents("b", edges)) == ["a", "c"]


def test_error_edge_is_first_on_error_edge():
    edges = [
        _edge("e1", "a", "b"),
        _edge("e2", "a", "h1", ConditionType.ON_ERROR),
        _edge("e3", "a", "h2", ConditionType.ON_ERROR),
    ]
    assert get_error_edge("a", edges).target_node_id == "h1"
    assert get_error_edge("b", edges) is None


def test_entry_and_exit_points():
    nodes = _nodes("a", "b", "c")
    edges = [_edge("e1", "a", "b"), _edge("e2", "b", "c")]
    assert get_entry_points(nodes, edges) == ["a"]
    assert get_exit_points(nodes, edges) == ["c"]


def test_reachable_follows_structural_references():
    nodes = [
        Node(id="loop", type=NodeType.LOOP, config={"body_node_id": "body"}),
        Node(id="body", type=NodeType.TRANSFORM, config={"expression": "1"}),
        Node(id="par", type=NodeType.PARALLEL, config={"parallel_nodes": ["x"]}),
        Node(id="x", type=NodeType.TRANSFORM, config={"expression": "1"}),
        Node(id="island", type=NodeType.OUTPUT),
    ]
    edges = [_edge("e1", "loop", "par")]
    assert reachable_node_ids(["loop"], nodes, edges) == {"loop", "body", "par", "x"}


def test_structural_references_include_fallback():
    node = Node(id="n", type=NodeType.PROMPT, config={"fallback_node_id": "fb"})
    assert structural_references(node) == ["fb"]


def test_find_back_edges_detects_cycle():
    nodes = _nodes("a", "b", "c")
    edges = [_edge("e1", "a", "b"), _edge("e2", "b", "c"), _edge("e3", "c", "a")]
    assert [e.id for e in find_back_edges("a", nodes, edges)] == ["e3"]


def test_find_back_edges_ignores_diamond():
    nodes = _nodes("a", "b", "c", "d")
    edges = [
        _edge("e1", "a", "b"), _edge("e2", "a", "c"),
        _edge("e3", "b", "d"), _edge("e4", "c", "d"),
    ]
    assert find_back_edges("a", nodes, edges) == []


def test_find_back_edges_without_entry():
    assert find_back_edges(None, _nodes("a"), []) == []
