"""All shared types, enums, and data shapes. Everything imports from here."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from promptchain.exceptions import ChainValidationError


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


# ── Enums ──────────────────────────────────────────────────────────────

class NodeType(str, Enum):
    PROMPT = "prompt"
    CONDITION = "condition"
    FUNCTION = "function"
    TRANSFORM = "transform"
    LOOP = "loop"
    PARALLEL = "parallel"
    OUTPUT = "output"

class ConditionType(str, Enum):
    ALWAYS = "always"
    IF_TRUE = "if_true"
    IF_FALSE = "if_false"
    EXPRESSION = "expression"
    ON_ERROR = "on_error"   # only followed on the error path

class ErrorPolicy(str, Enum):
    STOP = "stop"
    CONTINUE = "continue"   # follow an on_error edge
    RETRY = "retry"
    FALLBACK = "fallback"   # jump to a designated fallback node

class ExecutionMode(str, Enum):
    SEQUENTIAL = "sequential"

class VariableType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    OBJECT = "object"
    ARRAY = "array"
    ANY = "any"

class ParallelAggregation(str, Enum):
    FAIL_FAST = "fail_fast"       # first failure fails the parallel node
    ALL_SETTLED = "all_settled"   # failures are recorded in the result array

class LogStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"

class RunStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    STOPPED = "stopped"     # cancelled by the caller

class Termination(str, Enum):
    NO_NEXT_NODE = "no_next_node"
    OUTPUT_NODE = "output_node"
    CYCLE_DETECTED = "cycle_detected"
    NODE_FAILED = "node_failed"
    CANCELLED = "cancelled"


# ── Chain definition ───────────────────────────────────────────────────

class GlobalVariable(BaseModel):
    """Chain-level variable declaration. Seeds the Variable Store."""
    model_config = ConfigDict(frozen=True)

    name: str
    type: VariableType = VariableType.ANY
    default_value: Any = None
    required: bool = False
    description: str = ""

    def accepts(self, value: Any) -> bool:
        """True if value matches the declared type (None always matches)."""
        if value is None or self.type == VariableType.ANY:
            return True
        if self.type == VariableType.STRING:
            return isinstance(value, str)
        if self.type == VariableType.NUMBER:
            return isinstance(value, (int, float)) and not isinstance(value, bool)
        if self.type == VariableType.BOOLEAN:
            return isinstance(value, bool)
        if self.type == VariableType.OBJECT:
            return isinstance(value, dict)
        if self.type == VariableType.ARRAY:
            return isinstance(value, (list, tuple))
        return False


class ErrorHandling(BaseModel):
    """Chain-wide node failure policy."""
    model_config = ConfigDict(frozen=True)

    on_node_error: ErrorPolicy = ErrorPolicy.STOP
    max_retries: int = Field(default=3, ge=0)
    retry_delay_ms: int = Field(default=0, ge=0)
    fallback_node_id: Optional[str] = None   # used by ErrorPolicy.FALLBACK


class EdgeCondition(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: ConditionType = ConditionType.ALWAYS
    expression: Optional[str] = None   # required when type == EXPRESSION

    @model_validator(mode="before")
    @classmethod
    def _from_shorthand(cls, data: Any) -> Any:
        # YAML authors may write `condition: if_true`
        if isinstance(data, str):
            return {"type": data}
        return data


class Node(BaseModel):
    """A single typed step. ``config`` keys depend on ``type``."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: NodeType
    name: str = ""                       # display label only
    config: dict[str, Any] = Field(default_factory=dict)
    output_variable: Optional[str] = None  # not stored when empty


class Edge(BaseModel):
    """A directed, conditional transition between two nodes."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    source_node_id: str
    target_node_id: str
    condition: EdgeCondition = Field(default_factory=EdgeCondition)
    label: str = ""


class ChainDefinition(BaseModel):
    """The authored graph. Immutable: builder methods return new definitions."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str = ""
    description: str = ""
    version: int = 1
    nodes: tuple[Node, ...] = ()
    edges: tuple[Edge, ...] = ()
    global_variables: tuple[GlobalVariable, ...] = ()
    entry_node_id: Optional[str] = None
    error_handling: ErrorHandling = Field(default_factory=ErrorHandling)
    execution_mode: ExecutionMode = ExecutionMode.SEQUENTIAL
    tags: tuple[str, ...] = ()
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    # ── Lookup ─────────────────────────────────────────────────────────

    def get_node(self, node_id: str) -> Optional[Node]:
        return next((n for n in self.nodes if n.id == node_id), None)

    def node_ids(self) -> set[str]:
        return {n.id for n in self.nodes}

    # ── Builder operations ─────────────────────────────────────────────

    def add_node(self, node: Node) -> "ChainDefinition":
        """Return a copy with node appended. The first node becomes the entry."""
        if node.id in self.node_ids():
            raise ChainValidationError(
                f"Duplicate node id '{node.id}'",
                violations=[f"Node id '{node.id}' already exists."],
            )
        return self.model_copy(update={
            "nodes": self.nodes + (node,),
            "entry_node_id": self.entry_node_id or node.id,
            "updated_at": _utcnow(),
        })

    def add_edge(self, edge: Edge) -> "ChainDefinition":
        """Return a copy with edge appended after checking both endpoints exist."""
        violations = []
        if any(e.id == edge.id for e in self.edges):
            violations.append(f"Edge id '{edge.id}' already exists.")
        node_ids = self.node_ids()
        if edge.source_node_id not in node_ids:
            violations.append(f"Edge '{edge.id}': source node '{edge.source_node_id}' does not exist.")
        if edge.target_node_id not in node_ids:
            violations.append(f"Edge '{edge.id}': target node '{edge.target_node_id}' does not exist.")
        if violations:
            raise ChainValidationError(f"Cannot add edge '{edge.id}'", violations=violations)
        return self.model_copy(update={
            "edges": self.edges + (edge,),
            "updated_at": _utcnow(),
        })

    def remove_node(self, node_id: str) -> "ChainDefinition":
        """Return a copy without node_id or any edge touching it."""
        nodes = tuple(n for n in self.nodes if n.id != node_id)
        edges = tuple(
            e for e in self.edges
            if e.source_node_id != node_id and e.target_node_id != node_id
        )
        entry = self.entry_node_id
        if entry == node_id:
            entry = nodes[0].id if nodes else None
        return self.model_copy(update={
            "nodes": nodes,
            "edges": edges,
            "entry_node_id": entry,
            "updated_at": _utcnow(),
        })

    def remove_edge(self, edge_id: str) -> "ChainDefinition":
        return self.model_copy(update={
            "edges": tuple(e for e in self.edges if e.id != edge_id),
            "updated_at": _utcnow(),
        })

    def update_node(self, node_id: str, **changes: Any) -> "ChainDefinition":
        """Return a copy with the given fields of node_id replaced."""
        if "id" in changes:
            raise ChainValidationError(
                "Node ids are immutable", violations=["update_node cannot change 'id'."]
            )
        if self.get_node(node_id) is None:
            raise ChainValidationError(
                f"Node '{node_id}' not found", violations=[f"Node '{node_id}' does not exist."]
            )
        nodes = tuple(
            n.model_copy(update=changes) if n.id == node_id else n
            for n in self.nodes
        )
        return self.model_copy(update={"nodes": nodes, "updated_at": _utcnow()})


class PromptTemplate(BaseModel):
    """Reusable prompt text served by the Definition Store."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str = ""
    template: str
    description: str = ""
    version: int = 1


# ── Execution records ──────────────────────────────────────────────────

class ExecutionLogEntry(BaseModel):
    """One node attempt. Created RUNNING, finalised to SUCCESS or ERROR."""
    node_id: str
    node_name: str = ""
    node_type: Optional[NodeType] = None
    status: LogStatus = LogStatus.RUNNING
    output: Any = None
    error: Optional[str] = None
    error_kind: Optional[str] = None    # NodeError.kind
    attempt: int = 1
    iteration: Optional[int] = None     # loop body iteration index
    parent_node_id: Optional[str] = None  # enclosing loop / parallel node
    timestamp: datetime = Field(default_factory=_utcnow)
    duration_ms: Optional[float] = None


class ChainExecution(BaseModel):
    """Result of one run. Always carries the final variables and the full log."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    chain_id: str
    chain_version: int = 1
    status: RunStatus = RunStatus.IDLE
    variables: dict[str, Any] = Field(default_factory=dict)
    log: list[ExecutionLogEntry] = Field(default_factory=list)
    visited: list[str] = Field(default_factory=list)
    output: Any = None                  # Output node result, if one was reached
    termination: Optional[Termination] = None
    error: Optional[str] = None
    failed_node_id: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
