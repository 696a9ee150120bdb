"""Node handlers — one async callable per node type.

Every handler has the shape ``async handler(node, variables, context) -> value``
and signals failure by raising a NodeError subclass.  The engine races each
call against the node's timeout and routes failures through the chain's
error-handling policy.

Loop and Parallel handlers re-enter the engine through the ``run_body`` and
``run_branch`` hooks on NodeContext so body and branch steps get their own
log entries, timeouts and callbacks.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from promptchain.config import PromptChainConfig
from promptchain.exceptions import (
    EvaluationError, InferenceError, InferenceTimeout, NodeError, NodeTimeoutError,
    RateLimited, ServiceError, TemplateNotFound,
)
from promptchain.expressions import evaluate, evaluate_condition, render_template
from promptchain.types import ChainDefinition, Node, NodeType, ParallelAggregation

from .variables import VariableStore

logger = logging.getLogger(__name__)

ChainFunction = Callable[[dict, dict], Any]


# ── Function registry ─────────────────────────────────────────────────────────


class FunctionRegistry:
    """Capabilities Function nodes may call, injected by the host application.

    A function receives ``(arguments, variables)``: the evaluated ``arguments``
    object and a snapshot of the variable store.  It may be sync or async.
    """

    def __init__(self, functions: Optional[dict[str, ChainFunction]] = None):
        self._functions: dict[str, ChainFunction] = dict(functions or {})

    def register(self, name: str, fn: Optional[ChainFunction] = None):
        """Register fn under name.  Usable as a decorator: ``@registry.register("x")``."""
        if fn is None:
            def _decorator(f: ChainFunction) -> ChainFunction:
                self._functions[name] = f
                return f
            return _decorator
        self._functions[name] = fn
        return fn

    def get(self, name: str) -> ChainFunction:
        """
        Raises:
            ServiceError: (kind ``not_found``) if name is not registered.
        """
        if name not in self._functions:
            raise ServiceError(f"Function '{name}' not found in registry", kind="not_found")
        return self._functions[name]

    def names(self) -> list[str]:
        return sorted(self._functions)

    def __contains__(self, name: object) -> bool:
        return name in self._functions

    def __len__(self) -> int:
        return len(self._functions)


# ── Prompt response cache ─────────────────────────────────────────────────────


class ResponseCache:
    """In-memory TTL cache of inference replies keyed by (chain id, node id, prompt)."""

    def __init__(self):
        self._entries: dict[tuple[str, str, str], tuple[float, Any]] = {}

    def get(self, chain_id: str, node_id: str, prompt: str) -> tuple[bool, Any]:
        key = (chain_id, node_id, prompt)
        hit = self._entries.get(key)
        if hit is None:
            return False, None
        expires_at, value = hit
        if time.monotonic() >= expires_at:
            del self._entries[key]
            return False, None
        return True, value

    def put(
        self, chain_id: str, node_id: str, prompt: str, value: Any, ttl_seconds: float
    ) -> None:
        now = time.monotonic()
        for key in [k for k, (expires_at, _) in self._entries.items() if expires_at <= now]:
            del self._entries[key]
        self._entries[(chain_id, node_id, prompt)] = (now + ttl_seconds, value)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


# ── Context ───────────────────────────────────────────────────────────────────


@dataclass
class NodeContext:
    """Collaborators a handler may use.  Built by the engine once per run."""
    chain: ChainDefinition
    inference: Any                      # InferenceService
    config: PromptChainConfig
    functions: FunctionRegistry = field(default_factory=FunctionRegistry)
    definition_store: Any = None        # DefinitionStore
    cache: Optional[ResponseCache] = None
    # (loop_node, body_node_id, iteration) -> result of the iteration
    run_body: Optional[Callable[[Node, str, int], Awaitable[Any]]] = None
    # (parallel_node, branch_node, branch_variables) -> branch result
    run_branch: Optional[Callable[[Node, Node, VariableStore], Awaitable[Any]]] = None


# ── Handlers ──────────────────────────────────────────────────────────────────


async def handle_prompt(node: Node, variables: VariableStore, ctx: NodeContext) -> Any:
    cfg = node.config
    template = cfg.get("inline_prompt")
    if not template:
        template_id = cfg.get("prompt_template_id")
        if not template_id:
            raise EvaluationError("Prompt node has neither inline_prompt nor prompt_template_id")
        template = await _fetch_template(template_id, ctx)

    prompt = render_template(template, variables, strict=ctx.config.strict_prompt_variables)

    ttl = cfg.get("cache_ttl_seconds")
    if ttl and ctx.cache is not None:
        hit, cached = ctx.cache.get(ctx.chain.id, node.id, prompt)
        if hit:
            logger.debug(f"[Handlers] cache hit for node '{node.id}'")
            return cached

    try:
        result = await ctx.inference.invoke(prompt)
    except InferenceTimeout as exc:
        raise NodeTimeoutError(f"Inference timed out: {exc}") from exc
    except asyncio.TimeoutError as exc:
        raise NodeTimeoutError("Inference timed out") from exc
    except RateLimited as exc:
        raise ServiceError(f"Inference rate limited: {exc}", kind="rate_limited") from exc
    except InferenceError as exc:
        raise ServiceError(f"Inference failed: {exc}", kind="service_error") from exc
    except NodeError:
        raise
    except Exception as exc:
        raise ServiceError(f"Inference failed: {exc}", kind="service_error") from exc

    if ttl and ctx.cache is not None:
        ctx.cache.put(ctx.chain.id, node.id, prompt, result, float(ttl))
    return result


async def _fetch_template(template_id: str, ctx: NodeContext) -> str:
    if ctx.definition_store is None:
        raise ServiceError(
            f"Template '{template_id}' requested but no definition store is configured",
            kind="not_found",
        )
    try:
        template = await ctx.definition_store.get_template(template_id)
    except TemplateNotFound as exc:
        raise ServiceError(str(exc), kind="not_found") from exc
    except Exception as exc:
        raise ServiceError(f"Definition store failed: {exc}", kind="service_error") from exc
    return template.template


async def handle_condition(node: Node, variables: VariableStore, ctx: NodeContext) -> bool:
    return evaluate_condition(_expression(node, "condition_expression"), variables)


async def handle_transform(node: Node, variables: VariableStore, ctx: NodeContext) -> Any:
    return evaluate(_expression(node, "transform_expression"), variables)


async def handle_function(node: Node, variables: VariableStore, ctx: NodeContext) -> Any:
    name = node.config.get("function_name")
    if not name:
        raise ServiceError("Function node has no function_name", kind="not_found")
    fn = ctx.functions.get(name)

    arguments: Any = {}
    if node.config.get("arguments"):
        arguments = evaluate(node.config["arguments"], variables)
        if not isinstance(arguments, dict):
            raise EvaluationError(
                f"Function arguments must evaluate to an object, got {type(arguments).__name__}",
                expression=node.config["arguments"],
            )

    snapshot = variables.snapshot()
    try:
        if inspect.iscoroutinefunction(fn):
            return await fn(arguments, snapshot)
        # Sync functions run in a worker thread so the timeout race still applies.
        result = await asyncio.to_thread(fn, arguments, snapshot)
        if inspect.isawaitable(result):
            result = await result
        return result
    except NodeError:
        raise
    except Exception as exc:
        raise ServiceError(f"Function '{name}' raised: {exc}", kind="function_error") from exc


async def handle_loop(node: Node, variables: VariableStore, ctx: NodeContext) -> list:
    """Re-enter the body subgraph once per item; result is the per-iteration list."""
    cfg = node.config
    name = str(cfg.get("loop_variable") or "").lstrip("$")
    if not name:
        raise EvaluationError("Loop node has no loop_variable")
    if name not in variables:
        raise EvaluationError(f"Unresolved reference '${name}' in loop_variable")
    items = variables[name]
    if not isinstance(items, (list, tuple)):
        raise EvaluationError(
            f"Loop variable '${name}' must be an array, got {type(items).__name__}"
        )

    limit = cfg.get("loop_max_iterations", cfg.get("max_iterations", 10))
    limit = min(int(limit), ctx.config.max_loop_iterations)
    if len(items) > limit:
        logger.warning(
            f"[Handlers] Loop '{node.id}' truncated to {limit} of {len(items)} item(s)"
        )

    item_var = cfg.get("item_variable") or "item"
    index_var = cfg.get("index_variable") or "index"
    body_id = cfg.get("body_node_id")
    results = []
    for index, item in enumerate(items[:limit]):
        variables.set(item_var, item)
        variables.set(index_var, index)
        results.append(await ctx.run_body(node, body_id, index))
    return results


async def handle_parallel(node: Node, variables: VariableStore, ctx: NodeContext) -> list:
    """Run every branch concurrently against its own snapshot; join in declared order."""
    branch_ids = list(node.config.get("parallel_nodes") or [])
    aggregation = ParallelAggregation(
        node.config.get("aggregation", ParallelAggregation.FAIL_FAST.value)
    )
    branches = []
    for branch_id in branch_ids:
        branch = ctx.chain.get_node(branch_id)
        if branch is None:
            raise ServiceError(f"Parallel branch '{branch_id}' does not exist", kind="not_found")
        branches.append(branch)

    semaphore = asyncio.Semaphore(max(1, ctx.config.parallel_max_concurrency))

    async def _run(branch: Node) -> Any:
        async with semaphore:
            return await ctx.run_branch(node, branch, VariableStore(variables.snapshot()))

    tasks = [asyncio.create_task(_run(b)) for b in branches]
    failed: set[int] = set()
    try:
        if aggregation == ParallelAggregation.FAIL_FAST:
            await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
            pending = [t for t in tasks if not t.done()]
            for t in pending:
                t.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            # First failure in declared order, not completion order.
            for t in tasks:
                if not t.cancelled() and t.exception() is not None:
                    raise t.exception()
            results = [t.result() for t in tasks]
        else:
            settled = await asyncio.gather(*tasks, return_exceptions=True)
            results = []
            for position, outcome in enumerate(settled):
                if isinstance(outcome, NodeError):
                    failed.add(position)
                    results.append({"error": str(outcome), "kind": outcome.kind})
                elif isinstance(outcome, BaseException):
                    raise outcome
                else:
                    results.append(outcome)
    finally:
        for t in tasks:
            if not t.done():
                t.cancel()

    for position, (branch, result) in enumerate(zip(branches, results)):
        if branch.output_variable and position not in failed:
            variables.set(branch.output_variable, result)
    return results


async def handle_output(node: Node, variables: VariableStore, ctx: NodeContext) -> dict:
    return variables.snapshot()


HANDLERS: dict[NodeType, Callable[[Node, VariableStore, NodeContext], Awaitable[Any]]] = {
    NodeType.PROMPT: handle_prompt,
    NodeType.CONDITION: handle_condition,
    NodeType.FUNCTION: handle_function,
    NodeType.TRANSFORM: handle_transform,
    NodeType.LOOP: handle_loop,
    NodeType.PARALLEL: handle_parallel,
    NodeType.OUTPUT: handle_output,
}


def _expression(node: Node, key: str) -> str:
    expression = node.config.get(key) or node.config.get("expression")
    if not expression:
        raise EvaluationError(f"{node.type.value.capitalize()} node has no {key}")
    if not isinstance(expression, str):
        raise EvaluationError(f"{key} must be a string")
    return expression
