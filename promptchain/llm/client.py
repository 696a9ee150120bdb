"""Thin wrapper around litellm that implements the Inference Service interface.

litellm handles Anthropic, OpenAI, Ollama, and 100+ providers.
This wrapper adds: a single-prompt ``invoke`` entry point, usage extraction,
and normalisation of provider errors onto the InferenceError family so the
engine can apply its retry / fallback policies.
"""

import asyncio
import logging
import math
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Optional

import litellm

from promptchain.config import PromptChainConfig, config as default_config
from promptchain.exceptions import InferenceServiceError, InferenceTimeout, RateLimited

logger = logging.getLogger(__name__)


def is_local_model(model: str) -> bool:
    """Return True if the model runs locally via Ollama (no API key required)."""
    return model.startswith("ollama/") or model.startswith("ollama_chat/")


def retry_after_seconds(error: Exception) -> Optional[float]:
    """Read the provider's Retry-After hint off a litellm error, in seconds.

    Accepts delta-seconds or an HTTP date.  Returns None when the header is
    absent or unparseable.
    """
    headers: Any = getattr(error, "litellm_response_headers", None)
    if not headers:
        headers = getattr(getattr(error, "response", None), "headers", None)
    if not headers:
        return None
    value = headers.get("retry-after") or headers.get("Retry-After")
    if value is None:
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        try:
            when = parsedate_to_datetime(str(value))
        except (TypeError, ValueError):
            return None
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        seconds = (when - datetime.now(timezone.utc)).total_seconds()
    if not math.isfinite(seconds):
        return None
    return max(seconds, 0.0)


class LLMClient:
    """Inference Service backed by ``litellm.acompletion``."""

    def __init__(
        self,
        model: Optional[str] = None,
        system_prompt: Optional[str] = None,
        config: Optional[PromptChainConfig] = None,
        api_base: Optional[str] = None,
    ):
        """
        Args:
            model:         Explicit model string, e.g. "anthropic/claude-sonnet-4-20250514"
                           or "ollama/llama3".  Defaults to config.default_llm_model.
            system_prompt: Optional system message sent ahead of every prompt.
            config:        PromptChainConfig; the module-level config when omitted.
            api_base:      Provider base URL (required for local Ollama models
                           not served on the default port).
        """
        self.config = config or default_config
        self.model = model or self.config.default_llm_model
        self.system_prompt = system_prompt
        self.api_base = api_base
        litellm.drop_params = True  # ignore unsupported params per provider

    async def invoke(self, prompt: str) -> str:
        """Send one resolved prompt and return the reply text.

        Raises:
            InferenceTimeout:      the provider did not answer in time
            RateLimited:           the provider throttled the request
            InferenceServiceError: any other provider failure
        """
        messages = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.append({"role": "user", "content": prompt})
        response = await self.complete(messages)
        return response["content"]

    async def complete(
        self,
        messages: list[dict],
        temperature: float = None,
        max_tokens: int = None,
    ) -> dict:
        """Call LLM via litellm.acompletion().

        Args:
            messages:    Chat messages [{"role": "user", "content": "..."}]
            temperature: Override config temperature
            max_tokens:  Override config max_tokens

        Returns:
            {"content": str, "usage": {"input_tokens": int, "output_tokens": int}}
        """
        kwargs = {
            "model": self.model,
            "messages": messages,
            "temperature": self.config.llm_temperature if temperature is None else temperature,
            "max_tokens": self.config.llm_max_tokens if max_tokens is None else max_tokens,
        }
        if self.config.llm_api_key:
            kwargs["api_key"] = self.config.llm_api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base

        try:
            response = await asyncio.wait_for(
                litellm.acompletion(**kwargs), timeout=self.config.llm_timeout_seconds
            )
        except (asyncio.TimeoutError, litellm.Timeout) as e:
            raise InferenceTimeout(
                f"LLM call timed out: {e}", details={"model": self.model}
            ) from e
        except litellm.RateLimitError as e:
            raise RateLimited(
                f"LLM rate limited: {e}",
                retry_after=retry_after_seconds(e),
                details={"model": self.model},
            ) from e
        except Exception as e:
            raise InferenceServiceError(
                f"LLM call failed: {e}", details={"model": self.model}
            ) from e

        choice = response.choices[0]
        usage = getattr(response, "usage", None)
        result = {
            "content": choice.message.content or "",
            "usage": {
                "input_tokens": getattr(usage, "prompt_tokens", 0) or 0,
                "output_tokens": getattr(usage, "completion_tokens", 0) or 0,
            },
        }
        logger.debug(
            f"[LLM] {self.model} in={result['usage']['input_tokens']} "
            f"out={result['usage']['output_tokens']}"
        )
        return result
