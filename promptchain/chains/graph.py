"""
Graph utilities for chain traversal.

All functions operate on Node / Edge sequences and are pure (no side effects,
no I/O) so they can be called safely from the validator, the store and the
execution engine alike.  Edge order is always preserved: declaration order is
significant for edge resolution.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Sequence
from typing import Optional

from promptchain.types import ConditionType, Edge, Node


# ── Adjacency ─────────────────────────────────────────────────────────────────


def get_outgoing_edges(node_id: str, edges: Iterable[Edge]) -> list[Edge]:
    """Return the outgoing edges of node_id in declaration order."""
    return [e for e in edges if e.source_node_id == node_id]


def get_children(
    node_id: str, edges: Iterable[Edge]
) -> list[tuple[str, Edge]]:
    """Return (target_node_id, edge) pairs for all outgoing edges of node_id."""
    return [(e.target_node_id, e) for e in edges if e.source_node_id == node_id]


def get_parents(
    node_id: str, edges: Iterable[Edge]
) -> list[tuple[str, Edge]]:
    """Return (source_node_id, edge) pairs for all incoming edges of node_id."""
    return [(e.source_node_id, e) for e in edges if e.target_node_id == node_id]


def get_error_edge(node_id: str, edges: Iterable[Edge]) -> Optional[Edge]:
    """Return the first on_error edge leaving node_id, if any."""
    return next(
        (
            e for e in edges
            if e.source_node_id == node_id and e.condition.type == ConditionType.ON_ERROR
        ),
        None,
    )


def get_entry_points(nodes: Sequence[Node], edges: Iterable[Edge]) -> list[str]:
    """Return node IDs with no incoming edges."""
    target_ids = {e.target_node_id for e in edges}
    return [n.id for n in nodes if n.id not in target_ids]


def get_exit_points(nodes: Sequence[Node], edges: Iterable[Edge]) -> list[str]:
    """Return node IDs with no outgoing edges (runs end there)."""
    source_ids = {e.source_node_id for e in edges}
    return [n.id for n in nodes if n.id not in source_ids]


# ── Reachability ──────────────────────────────────────────────────────────────


def reachable_node_ids(
    start_ids: Iterable[str],
    nodes: Sequence[Node],
    edges: Sequence[Edge],
) -> set[str]:
    """
    BFS over edges of every condition type, plus the structural references
    that Loop (``body_node_id``) and Parallel (``parallel_nodes``) nodes make,
    and node-level ``fallback_node_id`` references.
    """
    node_map = {n.id: n for n in nodes}
    visited: set[str] = set()
    queue: deque[str] = deque(start_ids)

    while queue:
        node_id = queue.popleft()
        if node_id in visited or node_id not in node_map:
            continue
        visited.add(node_id)
        for child_id, _ in get_children(node_id, edges):
            queue.append(child_id)
        queue.extend(structural_references(node_map[node_id]))

    return visited


def structural_references(node: Node) -> list[str]:
    """Node IDs a node points at through its config rather than through edges."""
    refs: list[str] = []
    body = node.config.get("body_node_id")
    if body:
        refs.append(body)
    refs.extend(node.config.get("parallel_nodes") or [])
    fallback = node.config.get("fallback_node_id")
    if fallback:
        refs.append(fallback)
    return refs


def find_back_edges(
    entry_id: Optional[str],
    nodes: Sequence[Node],
    edges: Sequence[Edge],
) -> list[Edge]:
    """
    Return edges that point back to a node already on the current DFS path.

    A run that follows such an edge revisits a node, which the engine treats
    as run completion; the validator surfaces these as warnings.
    """
    if entry_id is None:
        return []

    node_ids = {n.id for n in nodes}
    back_edges: list[Edge] = []
    on_path: set[str] = set()
    done: set[str] = set()

    # Iterative DFS: stack of (node_id, iterator over outgoing edges)
    stack: list[tuple[str, list[Edge]]] = []
    if entry_id in node_ids:
        stack.append((entry_id, get_outgoing_edges(entry_id, edges)))
        on_path.add(entry_id)

    while stack:
        node_id, pending = stack[-1]
        if not pending:
            stack.pop()
            on_path.discard(node_id)
            done.add(node_id)
            continue
        edge = pending.pop(0)
        target = edge.target_node_id
        if target not in node_ids:
            continue
        if target in on_path:
            back_edges.append(edge)
        elif target not in done:
            on_path.add(target)
            stack.append((target, get_outgoing_edges(target, edges)))

    return back_edges
