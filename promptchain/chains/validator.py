"""
ChainValidator — structural correctness checker for ChainDefinition.

All checks are non-destructive reads of the chain graph.  Warnings (soft
issues) are returned with a "WARNING:" prefix so callers can choose to treat
them differently from hard errors.  The engine refuses to run a chain with
hard errors.
"""

from __future__ import annotations

from collections import Counter
from typing import TYPE_CHECKING, Any, Optional

from promptchain.exceptions import ChainValidationError, EvaluationError
from promptchain.expressions import compile_expression
from promptchain.types import (
    ChainDefinition, ConditionType, ErrorPolicy, Node, NodeType, ParallelAggregation,
)

from .graph import find_back_edges, get_error_edge, reachable_node_ids

if TYPE_CHECKING:
    from promptchain.core.handlers import FunctionRegistry

# Node types a Parallel node may fan out to (single handler invocations).
PARALLEL_BRANCH_TYPES = {
    NodeType.PROMPT, NodeType.CONDITION, NodeType.FUNCTION, NodeType.TRANSFORM,
}


def hard_errors(errors: list[str]) -> list[str]:
    return [e for e in errors if not e.startswith("WARNING:")]


def node_expression(node: Node) -> Optional[str]:
    """Expression of a Condition / Transform node (original key or ``expression``)."""
    key = "condition_expression" if node.type == NodeType.CONDITION else "transform_expression"
    return node.config.get(key) or node.config.get("expression")


class ChainValidator:
    """
    Validates the structural integrity of a ChainDefinition.

    Usage::

        validator = ChainValidator()
        errors = validator.validate(chain, functions=registry)
        if hard_errors(errors):
            raise ChainValidationError("Invalid chain", violations=hard_errors(errors))

    All checks are run even if earlier ones fail, so callers get the full
    error list in one shot.
    """

    def validate(
        self,
        chain: ChainDefinition,
        functions: Optional["FunctionRegistry"] = None,
        max_nodes: int = 200,
    ) -> list[str]:
        """
        Run all structural checks on a ChainDefinition.

        Args:
            chain:     The chain to validate.
            functions: Optional FunctionRegistry; Function node names are
                       only checked against it when supplied.
            max_nodes: Maximum allowed nodes.

        Returns:
            List of error strings.  Empty list means the chain is valid.
            Items prefixed "WARNING:" are soft warnings, not hard failures.
        """
        errors: list[str] = []
        nodes = chain.nodes
        edges = chain.edges
        node_ids = {n.id for n in nodes}
        node_map = {n.id: n for n in nodes}

        if not chain.name.strip():
            errors.append("WARNING: Chain has no name.")

        # ── Unique ids ────────────────────────────────────────────────────────
        for node_id, count in Counter(n.id for n in nodes).items():
            if count > 1:
                errors.append(f"Duplicate node id '{node_id}' ({count} nodes).")
        for edge_id, count in Counter(e.id for e in edges).items():
            if count > 1:
                errors.append(f"Duplicate edge id '{edge_id}' ({count} edges).")

        if len(nodes) > max_nodes:
            errors.append(
                f"Chain has {len(nodes)} nodes; maximum allowed is {max_nodes}."
            )

        # ── Entry node ────────────────────────────────────────────────────────
        if nodes and not chain.entry_node_id:
            errors.append("Chain has nodes but no entry_node_id.")
        elif chain.entry_node_id and chain.entry_node_id not in node_ids:
            errors.append(
                f"entry_node_id '{chain.entry_node_id}' references a node that does not exist."
            )

        # ── Edge validity ─────────────────────────────────────────────────────
        for edge in edges:
            if edge.source_node_id not in node_ids:
                errors.append(
                    f"Edge '{edge.id}': source_node_id '{edge.source_node_id}' "
                    "references a node that does not exist."
                )
            if edge.target_node_id not in node_ids:
                errors.append(
                    f"Edge '{edge.id}': target_node_id '{edge.target_node_id}' "
                    "references a node that does not exist."
                )
            if edge.condition.type == ConditionType.EXPRESSION:
                if not (edge.condition.expression or "").strip():
                    errors.append(f"WARNING: Edge '{edge.id}': expression condition has no expression.")
                else:
                    errors.extend(self._check_expression(
                        edge.condition.expression, f"Edge '{edge.id}'"
                    ))

        # ── Node configuration ────────────────────────────────────────────────
        for node in nodes:
            errors.extend(self._check_node(node, node_map, functions))

        # ── Error handling ────────────────────────────────────────────────────
        handling = chain.error_handling
        if handling.fallback_node_id and handling.fallback_node_id not in node_ids:
            errors.append(
                f"error_handling.fallback_node_id '{handling.fallback_node_id}' "
                "references a node that does not exist."
            )
        if handling.on_node_error == ErrorPolicy.FALLBACK and not handling.fallback_node_id:
            uncovered = [
                n.name or n.id for n in nodes
                if not n.config.get("fallback_node_id") and get_error_edge(n.id, edges) is None
            ]
            if uncovered:
                errors.append(
                    "WARNING: Fallback policy without error_handling.fallback_node_id; "
                    f"nodes without a recovery route will fail the run: {uncovered}"
                )
        if handling.on_node_error == ErrorPolicy.CONTINUE:
            if not any(e.condition.type == ConditionType.ON_ERROR for e in edges):
                errors.append(
                    "WARNING: Continue policy but no on_error edges; any node failure "
                    "will fail the run."
                )

        # ── Global variables ──────────────────────────────────────────────────
        for name, count in Counter(v.name for v in chain.global_variables).items():
            if count > 1:
                errors.append(f"Global variable '{name}' is declared {count} times.")
        for var in chain.global_variables:
            if not var.accepts(var.default_value):
                errors.append(
                    f"Global variable '{var.name}': default value does not match "
                    f"declared type '{var.type.value}'."
                )

        # ── Output variable collisions (last write wins) ──────────────────────
        outputs = Counter(n.output_variable for n in nodes if n.output_variable)
        for name, count in outputs.items():
            if count > 1:
                errors.append(
                    f"WARNING: output_variable '{name}' is written by {count} nodes; "
                    "later writes overwrite earlier ones."
                )

        # ── Reachability and cycles (warnings) ────────────────────────────────
        if chain.entry_node_id in node_ids:
            starts = [chain.entry_node_id]
            if handling.fallback_node_id:
                starts.append(handling.fallback_node_id)
            reachable = reachable_node_ids(starts, nodes, edges)
            for node in nodes:
                if node.id not in reachable:
                    errors.append(
                        f"WARNING: Node '{node.name or node.id}' (id={node.id!r}) is "
                        "not reachable from the entry node."
                    )
            for edge in find_back_edges(chain.entry_node_id, nodes, edges):
                errors.append(
                    f"WARNING: Edge '{edge.id}' closes a cycle back to "
                    f"'{edge.target_node_id}'; a run that follows it ends there."
                )

        return errors

    def validate_or_raise(
        self,
        chain: ChainDefinition,
        functions: Optional["FunctionRegistry"] = None,
        max_nodes: int = 200,
    ) -> list[str]:
        """Validate and raise on hard errors. Returns the remaining warnings."""
        errors = self.validate(chain, functions=functions, max_nodes=max_nodes)
        hard = hard_errors(errors)
        if hard:
            raise ChainValidationError(
                f"Chain '{chain.name or chain.id}' failed validation", violations=hard
            )
        return errors

    # ── Per-node checks ───────────────────────────────────────────────────────

    def _check_node(
        self,
        node: Node,
        node_map: dict[str, Node],
        functions: Optional["FunctionRegistry"],
    ) -> list[str]:
        errors: list[str] = []
        label = f"Node '{node.name or node.id}'"
        cfg = node.config

        timeout = cfg.get("timeout_ms")
        if timeout is not None and not _positive_int(timeout):
            errors.append(f"{label}: timeout_ms must be a positive integer.")
        retry_count = cfg.get("retry_count")
        if retry_count is not None and not _non_negative_int(retry_count):
            errors.append(f"{label}: retry_count must be a non-negative integer.")
        fallback = cfg.get("fallback_node_id")
        if fallback:
            if fallback not in node_map:
                errors.append(f"{label}: fallback_node_id '{fallback}' does not exist.")
            elif fallback == node.id:
                errors.append(f"{label}: fallback_node_id cannot point at the node itself.")

        if node.type == NodeType.PROMPT:
            if not cfg.get("inline_prompt") and not cfg.get("prompt_template_id"):
                errors.append(f"WARNING: {label}: prompt needs inline_prompt or prompt_template_id.")

        elif node.type in (NodeType.CONDITION, NodeType.TRANSFORM):
            expression = node_expression(node)
            if not expression:
                errors.append(f"WARNING: {label}: {node.type.value} node has no expression.")
            else:
                errors.extend(self._check_expression(expression, label))

        elif node.type == NodeType.FUNCTION:
            name = cfg.get("function_name")
            if not name:
                errors.append(f"WARNING: {label}: function node has no function_name.")
            elif functions is not None and name not in functions:
                errors.append(f"WARNING: {label}: function '{name}' is not registered.")
            if cfg.get("arguments"):
                errors.extend(self._check_expression(cfg["arguments"], label))

        elif node.type == NodeType.LOOP:
            if not cfg.get("loop_variable"):
                errors.append(f"WARNING: {label}: loop node has no loop_variable.")
            body = cfg.get("body_node_id")
            if not body:
                errors.append(f"{label}: loop node has no body_node_id.")
            elif body not in node_map:
                errors.append(f"{label}: body_node_id '{body}' does not exist.")
            elif body == node.id:
                errors.append(f"{label}: body_node_id cannot point at the loop node itself.")
            max_iter = cfg.get("loop_max_iterations", cfg.get("max_iterations"))
            if max_iter is not None and not _non_negative_int(max_iter):
                errors.append(f"{label}: loop_max_iterations must be a non-negative integer.")

        elif node.type == NodeType.PARALLEL:
            branches = cfg.get("parallel_nodes") or []
            if not branches:
                errors.append(f"{label}: parallel node has no parallel_nodes.")
            for branch_id in branches:
                branch = node_map.get(branch_id)
                if branch is None:
                    errors.append(f"{label}: parallel branch '{branch_id}' does not exist.")
                elif branch_id == node.id:
                    errors.append(f"{label}: parallel node cannot include itself.")
                elif branch.type not in PARALLEL_BRANCH_TYPES:
                    errors.append(
                        f"{label}: parallel branch '{branch_id}' has type "
                        f"'{branch.type.value}'; only prompt, condition, function and "
                        "transform nodes can run in parallel."
                    )
            aggregation = cfg.get("aggregation", ParallelAggregation.FAIL_FAST.value)
            if aggregation not in {a.value for a in ParallelAggregation}:
                errors.append(f"{label}: unknown aggregation '{aggregation}'.")

        return errors

    def _check_expression(self, expression: Any, label: str) -> list[str]:
        # Expression content fails the node at run time, not the chain up front.
        if not isinstance(expression, str):
            return [f"WARNING: {label}: expression must be a string."]
        try:
            compile_expression(expression)
        except EvaluationError as exc:
            return [f"WARNING: {label}: invalid expression: {exc}"]
        return []


def _positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _non_negative_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0
