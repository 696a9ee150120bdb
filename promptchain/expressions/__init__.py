"""promptchain.expressions — sandboxed expression language for conditions, transforms and prompts."""

from .evaluator import (
    compile_expression,
    evaluate,
    evaluate_condition,
    referenced_variables,
    render_template,
    template_variables,
)
from .parser import parse

__all__ = [
    "compile_expression",
    "evaluate",
    "evaluate_condition",
    "parse",
    "referenced_variables",
    "render_template",
    "template_variables",
]
