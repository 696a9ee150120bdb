"""promptchain.core — variable store, node handlers, edge resolver and engine."""

from .engine import ChainEngine
from .handlers import FunctionRegistry, NodeContext, ResponseCache
from .resolver import resolve_error_edge, resolve_next
from .variables import VariableStore

__all__ = [
    "ChainEngine",
    "FunctionRegistry",
    "NodeContext",
    "ResponseCache",
    "VariableStore",
    "resolve_error_edge",
    "resolve_next",
]
