"""promptchain — graph-based prompt-chain execution engine.

Usage:
    from promptchain import ChainDefinition, ChainEngine, Edge, Node, NodeType
    from promptchain.llm import LLMClient

    chain = (
        ChainDefinition(name="greet")
        .add_node(Node(id="p1", type=NodeType.PROMPT, config={"inline_prompt": "Say hi to $name"},
                       output_variable="reply"))
        .add_node(Node(id="out", type=NodeType.OUTPUT))
        .add_edge(Edge(source_node_id="p1", target_node_id="out"))
    )
    engine = ChainEngine(inference_service=LLMClient())
    execution = await engine.run(chain, inputs={"name": "Ada"})
"""

from promptchain.core import ChainEngine, FunctionRegistry, VariableStore
from promptchain.exceptions import (
    PromptChainError, ChainValidationError, ChainNotFound, TemplateNotFound,
    NodeError, EvaluationError, NodeTimeoutError, ServiceError,
    InferenceError, InferenceTimeout, RateLimited, InferenceServiceError,
)
from promptchain.types import (
    ChainDefinition, ChainExecution, ConditionType, Edge, EdgeCondition,
    ErrorHandling, ErrorPolicy, ExecutionLogEntry, GlobalVariable, LogStatus,
    Node, NodeType, ParallelAggregation, PromptTemplate, RunStatus, Termination,
    VariableType,
)
from promptchain.version import __version__

__all__ = [
    "ChainEngine", "FunctionRegistry", "VariableStore",
    "ChainDefinition", "ChainExecution", "ConditionType", "Edge", "EdgeCondition",
    "ErrorHandling", "ErrorPolicy", "ExecutionLogEntry", "GlobalVariable", "LogStatus",
    "Node", "NodeType", "ParallelAggregation", "PromptTemplate", "RunStatus",
    "Termination", "VariableType",
    "PromptChainError", "ChainValidationError", "ChainNotFound", "TemplateNotFound",
    "NodeError", "EvaluationError", "NodeTimeoutError", "ServiceError",
    "InferenceError", "InferenceTimeout", "RateLimited", "InferenceServiceError",
    "__version__",
]
