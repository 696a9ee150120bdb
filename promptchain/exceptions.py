"""Typed exception hierarchy. Every error promptchain can raise."""


class PromptChainError(Exception):
    """Base exception for all promptchain errors."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.details = details or {}


# ── Definition errors ──────────────────────────────────────────────────


class ChainValidationError(PromptChainError):
    """Chain definition is structurally invalid (dangling edges, missing entry, etc.).

    Raised before execution starts; never recovered by the engine.
    """
    def __init__(self, message: str, violations: list = None, **kwargs):
        super().__init__(message, **kwargs)
        self.violations = violations or []


class ChainNotFound(PromptChainError):
    """Requested chain definition does not exist in the Definition Store."""
    def __init__(self, message: str, chain_id: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.chain_id = chain_id


class TemplateNotFound(PromptChainError):
    """Requested prompt template does not exist in the Definition Store."""
    def __init__(self, message: str, template_id: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.template_id = template_id


# ── Node-level failures ────────────────────────────────────────────────
# Everything below is caught at the node boundary and routed through the
# chain's error-handling policy.


class NodeError(PromptChainError):
    """A single node failed to produce a result."""
    kind = "service_error"

    def __init__(self, message: str, node_id: str = "", kind: str = None, **kwargs):
        super().__init__(message, **kwargs)
        self.node_id = node_id
        if kind is not None:
            self.kind = kind


class EvaluationError(NodeError):
    """Expression could not be parsed or evaluated."""
    kind = "evaluation"

    def __init__(self, message: str, expression: str = "", position: int = None, **kwargs):
        super().__init__(message, **kwargs)
        self.expression = expression
        self.position = position


class NodeTimeoutError(NodeError):
    """Node handler exceeded its timeout."""
    kind = "timeout"

    def __init__(self, message: str, timeout_ms: int = 0, **kwargs):
        super().__init__(message, **kwargs)
        self.timeout_ms = timeout_ms


class ServiceError(NodeError):
    """Inference Service, Definition Store or registered function failed.

    ``kind`` is one of ``service_error``, ``rate_limited``, ``not_found`` or
    ``function_error``.
    """
    pass


# ── Inference Service failures ─────────────────────────────────────────


class InferenceError(PromptChainError):
    """Base for failures reported by an Inference Service."""
    pass


class InferenceTimeout(InferenceError):
    """The inference call did not complete in time."""
    pass


class RateLimited(InferenceError):
    """The inference provider rejected the call due to rate limiting."""
    def __init__(self, message: str, retry_after: float = None, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class InferenceServiceError(InferenceError):
    """Any other inference provider failure."""
    pass
