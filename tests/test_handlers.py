"""Tests for individual node handlers and the FunctionRegistry."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from promptchain.core import FunctionRegistry, NodeContext, ResponseCache, VariableStore
from promptchain.core.handlers import (
    handle_condition, handle_function, handle_loop, handle_output, handle_prompt,
    handle_transform,
)
from promptchain.exceptions import (
    EvaluationError, InferenceServiceError, InferenceTimeout, NodeTimeoutError,
    RateLimited, ServiceError,
)
from promptchain.llm import StaticInferenceService
from promptchain.types import ChainDefinition, Node, NodeType


@pytest.fixture
def ctx(inference, functions, config, template_store):
    return NodeContext(
        chain=ChainDefinition(),
        inference=inference,
        config=config,
        functions=functions,
        definition_store=template_store,
        cache=ResponseCache(),
    )


def _prompt(**config):
    return Node(id="p", type=NodeType.PROMPT, config=config)


# ── Prompt ───────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_prompt_renders_variables_and_returns_reply(ctx, inference):
    result = await handle_prompt(_prompt(inline_prompt="Tell me about $topic"),
                                 VariableStore({"topic": "owls"}), ctx)
    assert result == "hello"
    assert inference.prompts == ['Tell me about "owls"']


@pytest.mark.asyncio
async def test_prompt_fetches_template(ctx, inference):
    await handle_prompt(_prompt(prompt_template_id="greet"), VariableStore({"name": "Ada"}), ctx)
    assert inference.prompts == ['Hello "Ada"']


@pytest.mark.asyncio
async def test_prompt_missing_template_is_not_found(ctx):
    with pytest.raises(ServiceError) as exc_info:
        await handle_prompt(_prompt(prompt_template_id="nope"), VariableStore(), ctx)
    assert exc_info.value.kind == "not_found"


@pytest.mark.asyncio
async def test_prompt_unresolved_variable_is_evaluation_error(ctx):
    with pytest.raises(EvaluationError):
        await handle_prompt(_prompt(inline_prompt="Hi $who"), VariableStore(), ctx)


@pytest.mark.asyncio
@pytest.mark.parametrize("error,expected_type,kind", [
    (InferenceTimeout("slow"), NodeTimeoutError, "timeout"),
    (RateLimited("429"), ServiceError, "rate_limited"),
    (InferenceServiceError("500"), ServiceError, "service_error"),
    (ConnectionError("reset"), ServiceError, "service_error"),
])
async def test_prompt_maps_inference_errors(ctx, error, expected_type, kind):
    ctx.inference = AsyncMock()
    ctx.inference.invoke.side_effect = error
    with pytest.raises(expected_type) as exc_info:
        await handle_prompt(_prompt(inline_prompt="x"), VariableStore(), ctx)
    assert exc_info.value.kind == kind


@pytest.mark.asyncio
async def test_prompt_cache_reuses_reply(ctx):
    calls = []
    ctx.inference = StaticInferenceService(reply=lambda p: calls.append(p) or len(calls))
    node = _prompt(inline_prompt="same", cache_ttl_seconds=60)
    first = await handle_prompt(node, VariableStore(), ctx)
    second = await handle_prompt(node, VariableStore(), ctx)
    assert first == second == 1
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_prompt_cache_is_scoped_per_chain(ctx):
    calls = []
    ctx.inference = StaticInferenceService(reply=lambda p: calls.append(p) or len(calls))
    node = _prompt(inline_prompt="same", cache_ttl_seconds=60)
    other = NodeContext(chain=ChainDefinition(), inference=ctx.inference, config=ctx.config,
                        cache=ctx.cache)
    assert await handle_prompt(node, VariableStore(), ctx) == 1
    assert await handle_prompt(node, VariableStore(), other) == 2
    assert await handle_prompt(node, VariableStore(), ctx) == 1


def test_cache_prunes_expired_entries_on_put():
    cache = ResponseCache()
    cache.put("c", "n1", "p", "old", ttl_seconds=0)
    cache.put("c", "n2", "p", "new", ttl_seconds=60)
    assert len(cache) == 1
    assert cache.get("c", "n1", "p") == (False, None)
    assert cache.get("c", "n2", "p") == (True, "new")


# ── Condition / Transform / Output ───────────────────────────────────────────


@pytest.mark.asyncio
async def test_condition_returns_boolean(ctx):
    node = Node(id="c", type=NodeType.CONDITION, config={"condition_expression": "$p.length"})
    assert await handle_condition(node, VariableStore({"p": "hey"}), ctx) is True
    assert await handle_condition(node, VariableStore({"p": ""}), ctx) is False


@pytest.mark.asyncio
async def test_transform_accepts_expression_alias(ctx):
    node = Node(id="t", type=NodeType.TRANSFORM, config={"expression": "[$a, $a * 2]"})
    assert await handle_transform(node, VariableStore({"a": 2}), ctx) == [2, 4]


@pytest.mark.asyncio
async def test_transform_without_expression_fails(ctx):
    with pytest.raises(EvaluationError):
        await handle_transform(Node(id="t", type=NodeType.TRANSFORM), VariableStore(), ctx)


@pytest.mark.asyncio
async def test_output_returns_snapshot(ctx):
    store = VariableStore({"x": [1]})
    snap = await handle_output(Node(id="o", type=NodeType.OUTPUT), store, ctx)
    store["x"].append(2)
    assert snap == {"x": [1]}


# ── Function ─────────────────────────────────────────────────────────────────


def _fn(name, arguments=None):
    config = {"function_name": name}
    if arguments:
        config["arguments"] = arguments
    return Node(id="f", type=NodeType.FUNCTION, config=config)


@pytest.mark.asyncio
async def test_sync_function_runs_with_arguments(ctx):
    result = await handle_function(_fn("add", '{"a": $x, "b": 2}'), VariableStore({"x": 1}), ctx)
    assert result == 3


@pytest.mark.asyncio
async def test_async_function(ctx):
    result = await handle_function(_fn("upper", "{text: $t}"), VariableStore({"t": "hi"}), ctx)
    assert result == "HI"


@pytest.mark.asyncio
async def test_function_receives_variable_snapshot(ctx):
    seen = {}
    ctx.functions.register("peek", lambda args, variables: seen.update(variables))
    await handle_function(_fn("peek"), VariableStore({"k": "v"}), ctx)
    assert seen == {"k": "v"}


@pytest.mark.asyncio
async def test_unknown_function_is_not_found(ctx):
    with pytest.raises(ServiceError) as exc_info:
        await handle_function(_fn("nope"), VariableStore(), ctx)
    assert exc_info.value.kind == "not_found"


@pytest.mark.asyncio
async def test_raising_function_is_function_error(ctx):
    with pytest.raises(ServiceError) as exc_info:
        await handle_function(_fn("explode"), VariableStore(), ctx)
    assert exc_info.value.kind == "function_error"
    assert "boom" in str(exc_info.value)


@pytest.mark.asyncio
async def test_function_arguments_must_be_object(ctx):
    with pytest.raises(EvaluationError):
        await handle_function(_fn("add", "[1, 2]"), VariableStore(), ctx)


def test_registry_contains_and_names():
    registry = FunctionRegistry({"b": print})
    registry.register("a", len)
    assert "a" in registry and "zz" not in registry
    assert registry.names() == ["a", "b"]


# ── Loop ─────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_loop_binds_item_and_index(ctx):
    seen = []

    async def run_body(loop_node, body_id, iteration):
        seen.append((body_id, iteration, store["item"], store["index"]))
        return store["item"] * 10

    ctx.run_body = run_body
    store = VariableStore({"items": [1, 2, 3]})
    node = Node(id="l", type=NodeType.LOOP,
                config={"loop_variable": "$items", "body_node_id": "b", "loop_max_iterations": 2})
    assert await handle_loop(node, store, ctx) == [10, 20]
    assert seen == [("b", 0, 1, 0), ("b", 1, 2, 1)]


@pytest.mark.asyncio
async def test_loop_over_non_array_fails(ctx):
    node = Node(id="l", type=NodeType.LOOP, config={"loop_variable": "n", "body_node_id": "b"})
    with pytest.raises(EvaluationError, match="must be an array"):
        await handle_loop(node, VariableStore({"n": 3}), ctx)


@pytest.mark.asyncio
async def test_loop_respects_global_iteration_cap(ctx):
    ctx.config = ctx.config.model_copy(update={"max_loop_iterations": 1})
    ctx.run_body = AsyncMock(return_value="r")
    node = Node(id="l", type=NodeType.LOOP,
                config={"loop_variable": "items", "body_node_id": "b", "loop_max_iterations": 50})
    assert await handle_loop(node, VariableStore({"items": [1, 2, 3]}), ctx) == ["r"]


@pytest.mark.asyncio
async def test_slow_handler_can_be_cancelled(ctx):
    ctx.inference = StaticInferenceService(reply="late", delay=5)
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(handle_prompt(_prompt(inline_prompt="x"), VariableStore(), ctx), 0.01)
