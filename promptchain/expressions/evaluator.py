"""
Safe evaluator for chain expressions and prompt templates.  Never calls eval().

Expressions are parsed once (cached) into the AST defined in ``parser.py`` and
walked against a read-only mapping of variables.  ``$name`` resolves to the
current value of ``name``; this is the same value a JSON-encode-and-substitute
pass would produce, without letting variable contents become code.

Prompt templates are plain text: every ``$name`` is replaced by the JSON
encoding of its value.
"""

from __future__ import annotations

import functools
import json
import math
import re
from collections.abc import Mapping
from typing import Any

from promptchain.exceptions import EvaluationError

from .parser import (
    ArrayLiteral, Binary, Conditional, Expr, Index, Literal, Logical,
    Member, ObjectLiteral, Unary, Variable, parse,
)

_TEMPLATE_VAR_RE = re.compile(r"\$([A-Za-z_][A-Za-z0-9_]*)")


# ── Public API ────────────────────────────────────────────────────────────────


@functools.lru_cache(maxsize=1024)
def compile_expression(source: str) -> Expr:
    """Parse and cache an expression. Raises EvaluationError on bad syntax."""
    return parse(source)


def evaluate(expression: str, variables: Mapping[str, Any]) -> Any:
    """
    Evaluate an expression against ``variables`` and return its value.

    Args:
        expression: Expression string, e.g. ``"$p1.length > 0"`` or
                    ``'{ "x": $a, "y": $b }'``.
        variables:  Read-only mapping of variable name to value.

    Returns:
        The evaluated value (bool, number, string, list, dict or None).

    Raises:
        EvaluationError: on syntax errors, unresolved references, type
            mismatches, division by zero or invalid member access.
    """
    try:
        tree = compile_expression(expression)
        return _eval(tree, variables, expression)
    except EvaluationError:
        raise
    except (TypeError, ValueError, OverflowError, RecursionError) as exc:
        raise EvaluationError(
            f"Cannot evaluate {expression!r}: {exc}", expression=expression
        ) from exc


def evaluate_condition(expression: str, variables: Mapping[str, Any]) -> bool:
    """Evaluate an expression and coerce the result to a boolean."""
    return truthy(evaluate(expression, variables))


def render_template(
    template: str,
    variables: Mapping[str, Any],
    strict: bool = True,
) -> str:
    """
    Substitute every ``$name`` in a prompt template with the JSON encoding of
    its value.

    Args:
        template:  Prompt text.
        variables: Mapping of variable name to value.
        strict:    When True an unknown ``$name`` raises EvaluationError;
                   when False it is left in the text verbatim.
    """
    def _substitute(match: re.Match) -> str:  # type: ignore[type-arg]
        name = match.group(1)
        if name in variables:
            return json.dumps(variables[name], ensure_ascii=False, default=str)
        if strict:
            raise EvaluationError(
                f"Unresolved reference '${name}' in prompt template",
                expression=template,
                position=match.start(),
            )
        return match.group(0)

    return _TEMPLATE_VAR_RE.sub(_substitute, template)


def referenced_variables(expression: str) -> set[str]:
    """Return the names of all ``$name`` references in an expression."""
    names: set[str] = set()
    _collect_variables(compile_expression(expression), names)
    return names


def template_variables(template: str) -> set[str]:
    """Return the names of all ``$name`` references in a prompt template."""
    return set(_TEMPLATE_VAR_RE.findall(template))


def truthy(value: Any) -> bool:
    """JavaScript truthiness: only false, null, 0, NaN and "" are falsy.

    Empty arrays and objects are truthy.
    """
    if value is None or value is False:
        return False
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return not (value == 0 or (isinstance(value, float) and math.isnan(value)))
    if isinstance(value, str):
        return value != ""
    return True


# ── Tree walk ─────────────────────────────────────────────────────────────────


def _eval(node: Expr, variables: Mapping[str, Any], source: str) -> Any:
    if isinstance(node, Literal):
        return node.value

    if isinstance(node, Variable):
        if node.name not in variables:
            raise EvaluationError(
                f"Unresolved reference '${node.name}' in {source!r}",
                expression=source,
                position=node.position,
            )
        return variables[node.name]

    if isinstance(node, Logical):
        left = _eval(node.left, variables, source)
        if node.op == "&&":
            return _eval(node.right, variables, source) if truthy(left) else left
        return left if truthy(left) else _eval(node.right, variables, source)

    if isinstance(node, Conditional):
        if truthy(_eval(node.test, variables, source)):
            return _eval(node.consequent, variables, source)
        return _eval(node.alternate, variables, source)

    if isinstance(node, Unary):
        operand = _eval(node.operand, variables, source)
        if node.op == "!":
            return not truthy(operand)
        if not _is_number(operand):
            raise EvaluationError(
                f"Unary '{node.op}' needs a number, got {_type_name(operand)} in {source!r}",
                expression=source,
            )
        return -operand if node.op == "-" else operand

    if isinstance(node, Binary):
        left = _eval(node.left, variables, source)
        right = _eval(node.right, variables, source)
        return _apply_binary(node.op, left, right, source)

    if isinstance(node, Member):
        target = _eval(node.target, variables, source)
        return _get_member(target, node.name, source)

    if isinstance(node, Index):
        target = _eval(node.target, variables, source)
        index = _eval(node.index, variables, source)
        return _get_index(target, index, source)

    if isinstance(node, ArrayLiteral):
        return [_eval(item, variables, source) for item in node.items]

    if isinstance(node, ObjectLiteral):
        return {key: _eval(value, variables, source) for key, value in node.entries}

    raise EvaluationError(
        f"Unsupported expression node '{type(node).__name__}'", expression=source
    )


def _apply_binary(op: str, left: Any, right: Any, source: str) -> Any:
    if op in ("==", "==="):
        return _equals(left, right)
    if op in ("!=", "!=="):
        return not _equals(left, right)

    if op in ("<", "<=", ">", ">="):
        comparable = (_is_number(left) and _is_number(right)) or (
            isinstance(left, str) and isinstance(right, str)
        )
        if not comparable:
            raise EvaluationError(
                f"Cannot compare {_type_name(left)} {op} {_type_name(right)} in {source!r}",
                expression=source,
            )
        if op == "<":
            return left < right
        if op == "<=":
            return left <= right
        if op == ">":
            return left > right
        return left >= right

    if op == "+":
        if _is_number(left) and _is_number(right):
            return left + right
        if isinstance(left, str) and isinstance(right, str):
            return left + right
        if isinstance(left, str) and _is_number(right):
            return left + _format_number(right)
        if _is_number(left) and isinstance(right, str):
            return _format_number(left) + right
        if isinstance(left, list) and isinstance(right, list):
            return left + right
        raise EvaluationError(
            f"Cannot add {_type_name(left)} and {_type_name(right)} in {source!r}",
            expression=source,
        )

    if not (_is_number(left) and _is_number(right)):
        raise EvaluationError(
            f"Operator '{op}' needs numbers, got {_type_name(left)} and "
            f"{_type_name(right)} in {source!r}",
            expression=source,
        )
    if op == "-":
        return left - right
    if op == "*":
        return left * right
    if right == 0:
        raise EvaluationError(f"Division by zero in {source!r}", expression=source)
    if op == "/":
        return left / right
    if op == "%":
        # JavaScript remainder: sign follows the dividend
        result = math.fmod(left, right)
        return int(result) if isinstance(left, int) and isinstance(right, int) else result

    raise EvaluationError(f"Unsupported operator '{op}' in {source!r}", expression=source)


def _get_member(target: Any, name: str, source: str) -> Any:
    if isinstance(target, dict):
        if name in target:
            return target[name]
        if name == "length":
            return len(target)
        return None
    if isinstance(target, (str, list, tuple)):
        if name == "length":
            return len(target)
        raise EvaluationError(
            f"{_type_name(target)} has no property '{name}' in {source!r}",
            expression=source,
        )
    raise EvaluationError(
        f"Cannot read property '{name}' of {_type_name(target)} in {source!r}",
        expression=source,
    )


def _get_index(target: Any, index: Any, source: str) -> Any:
    if isinstance(target, dict):
        key = index if isinstance(index, str) else _format_key(index)
        return target.get(key)
    if isinstance(target, (str, list, tuple)):
        if isinstance(index, float) and index.is_integer():
            index = int(index)
        if not isinstance(index, int) or isinstance(index, bool):
            raise EvaluationError(
                f"Index into {_type_name(target)} must be an integer, "
                f"got {_type_name(index)} in {source!r}",
                expression=source,
            )
        if 0 <= index < len(target):
            return target[index]
        return None
    raise EvaluationError(
        f"Cannot index {_type_name(target)} in {source!r}", expression=source
    )


def _collect_variables(node: Expr, names: set[str]) -> None:
    if isinstance(node, Variable):
        names.add(node.name)
    elif isinstance(node, Unary):
        _collect_variables(node.operand, names)
    elif isinstance(node, (Binary, Logical)):
        _collect_variables(node.left, names)
        _collect_variables(node.right, names)
    elif isinstance(node, Conditional):
        for child in (node.test, node.consequent, node.alternate):
            _collect_variables(child, names)
    elif isinstance(node, Member):
        _collect_variables(node.target, names)
    elif isinstance(node, Index):
        _collect_variables(node.target, names)
        _collect_variables(node.index, names)
    elif isinstance(node, ArrayLiteral):
        for item in node.items:
            _collect_variables(item, names)
    elif isinstance(node, ObjectLiteral):
        for _, value in node.entries:
            _collect_variables(value, names)


# ── Value helpers ─────────────────────────────────────────────────────────────


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _equals(left: Any, right: Any) -> bool:
    # Booleans never equal numbers (Python treats True == 1)
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    return left == right


def _format_number(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _format_key(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if _is_number(value):
        return _format_number(value)
    return str(value)


def _type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if _is_number(value):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__
