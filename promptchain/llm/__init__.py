"""promptchain.llm — Inference Service interface and implementations."""

from .client import LLMClient
from .inference import InferenceService, StaticInferenceService

__all__ = ["InferenceService", "LLMClient", "StaticInferenceService"]
