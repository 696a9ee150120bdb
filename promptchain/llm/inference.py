"""Inference Service interface and a deterministic in-process implementation.

The engine's Prompt handler depends only on ``InferenceService.invoke``.
Implementations signal failures with the InferenceError family:

  InferenceTimeout       — the call did not finish in time
  RateLimited            — the provider throttled the call
  InferenceServiceError  — anything else
"""

import asyncio
import inspect
from typing import Any, Callable, Optional, Protocol, Union, runtime_checkable


@runtime_checkable
class InferenceService(Protocol):
    async def invoke(self, prompt: str) -> Any:
        """Return the model's reply for a fully resolved prompt."""
        ...


Reply = Union[Any, Callable[[str], Any]]


class StaticInferenceService:
    """Returns fixed replies without calling any model.

    Used by tests and by ``promptchain run --reply``.  Deterministic: the
    same prompt sequence always yields the same replies.

    Args:
        reply:   Default reply, or a callable ``reply(prompt)`` (sync or
                 async) computing one.  A callable may raise InferenceError
                 subclasses to simulate provider failures.
        replies: Exact-prompt overrides checked before ``reply``.
        delay:   Optional seconds to sleep before answering.
    """

    def __init__(
        self,
        reply: Reply = "",
        replies: Optional[dict[str, Any]] = None,
        delay: float = 0.0,
    ):
        self._reply = reply
        self._replies = dict(replies or {})
        self._delay = delay
        self.prompts: list[str] = []   # every prompt received, in order

    async def invoke(self, prompt: str) -> Any:
        self.prompts.append(prompt)
        if self._delay:
            await asyncio.sleep(self._delay)
        if prompt in self._replies:
            return self._replies[prompt]
        if callable(self._reply):
            result = self._reply(prompt)
            if inspect.isawaitable(result):
                result = await result
            return result
        return self._reply

    @property
    def call_count(self) -> int:
        return len(self.prompts)
