"""Application configuration. All env vars defined here with defaults."""

from typing import Optional

from pydantic_settings import BaseSettings

from promptchain.types import NodeType


class PromptChainConfig(BaseSettings):
    # ── App ──
    app_name: str = "promptchain"
    debug: bool = False
    log_level: str = "INFO"

    # ── LLM (litellm) ──
    default_llm_model: str = "anthropic/claude-sonnet-4-20250514"
    llm_api_key: Optional[str] = None          # or ANTHROPIC_API_KEY / OPENAI_API_KEY in env
    llm_max_tokens: int = 4096
    llm_temperature: float = 0.1
    llm_timeout_seconds: float = 30.0

    # ── Node timeouts (ms) ──
    prompt_timeout_ms: int = 30000
    condition_timeout_ms: int = 5000
    function_timeout_ms: int = 30000
    transform_timeout_ms: int = 5000
    loop_timeout_ms: int = 60000
    parallel_timeout_ms: int = 60000
    output_timeout_ms: int = 1000

    # ── Error handling ──
    retry_backoff_multiplier: float = 2.0       # applied to timeout / rate_limited retries
    max_retry_delay_ms: int = 30000

    # ── Limits ──
    max_chain_nodes: int = 200
    max_loop_iterations: int = 1000             # hard cap over loop_max_iterations
    parallel_max_concurrency: int = 8

    # ── Expressions ──
    strict_prompt_variables: bool = True        # unresolved $name in a prompt fails the node

    model_config = {"env_prefix": "PROMPTCHAIN_", "env_file": ".env", "extra": "ignore"}

    def default_timeout_ms(self, node_type: NodeType) -> int:
        """Per-type handler timeout used when a node sets no ``timeout_ms``."""
        return getattr(self, f"{NodeType(node_type).value}_timeout_ms")


config = PromptChainConfig()
