"""Test fixtures: stub inference, function registry, config and sample chains.

All tests should use these fixtures for consistency.
"""

import pytest

from promptchain.chains import InMemoryDefinitionStore
from promptchain.config import PromptChainConfig
from promptchain.core import ChainEngine, FunctionRegistry
from promptchain.llm import StaticInferenceService
from promptchain.types import (
    ChainDefinition, ConditionType, Edge, EdgeCondition, ErrorHandling, ErrorPolicy,
    GlobalVariable, Node, NodeType, PromptTemplate,
)


@pytest.fixture
def config():
    """Test configuration with safe defaults (no .env, no API key)."""
    return PromptChainConfig(
        _env_file=None,
        debug=True,
        default_llm_model="mock/test-model",
        llm_api_key=None,
        max_retry_delay_ms=50,
    )


@pytest.fixture
def inference():
    """Deterministic stub that answers every prompt with "hello"."""
    return StaticInferenceService(reply="hello")


@pytest.fixture
def functions():
    registry = FunctionRegistry()

    @registry.register("add")
    def add(args, variables):
        return args["a"] + args["b"]

    @registry.register("upper")
    async def upper(args, variables):
        return str(args["text"]).upper()

    @registry.register("explode")
    def explode(args, variables):
        raise RuntimeError("boom")

    return registry


@pytest.fixture
def template_store(config):
    return InMemoryDefinitionStore(
        config=config,
        templates=[PromptTemplate(id="greet", name="Greeting", template="Hello $name")],
    )


@pytest.fixture
def make_engine(inference, functions, config, template_store):
    """Factory: build a ChainEngine, overriding any collaborator."""
    def _make(**overrides):
        kwargs = {
            "inference_service": inference,
            "definition_store": template_store,
            "functions": functions,
            "config": config,
        }
        kwargs.update(overrides)
        return ChainEngine(**kwargs)
    return _make


@pytest.fixture
def build_chain():
    """Factory: build a ChainDefinition from nodes and (source, target, condition) edges."""
    def _build(nodes, edges=(), policy=ErrorPolicy.STOP, variables=(), **handling):
        chain = ChainDefinition(
            name="test chain",
            global_variables=tuple(variables),
            error_handling=ErrorHandling(on_node_error=policy, **handling),
        )
        for node in nodes:
            chain = chain.add_node(node)
        for i, edge_spec in enumerate(edges):
            source, target = edge_spec[0], edge_spec[1]
            condition = edge_spec[2] if len(edge_spec) > 2 else ConditionType.ALWAYS
            if isinstance(condition, str) and condition not in {c.value for c in ConditionType}:
                condition = EdgeCondition(type=ConditionType.EXPRESSION, expression=condition)
            elif not isinstance(condition, EdgeCondition):
                condition = EdgeCondition(type=condition)
            chain = chain.add_edge(Edge(
                id=f"e{i}", source_node_id=source, target_node_id=target, condition=condition,
            ))
        return chain
    return _build


@pytest.fixture
def hello_chain(build_chain):
    """Prompt → Condition ($p1.length > 0) → Output."""
    return build_chain(
        nodes=[
            Node(id="p1", type=NodeType.PROMPT, name="Ask",
                 config={"inline_prompt": "Say hello"}, output_variable="p1"),
            Node(id="c1", type=NodeType.CONDITION, name="Non-empty?",
                 config={"condition_expression": "$p1.length > 0"}, output_variable="ok"),
            Node(id="out", type=NodeType.OUTPUT, name="Done"),
        ],
        edges=[("p1", "c1"), ("c1", "out", ConditionType.IF_TRUE)],
    )


@pytest.fixture
def sample_variables():
    return (
        GlobalVariable(name="a", type="number", default_value=1),
        GlobalVariable(name="b", type="string", default_value="s"),
    )
