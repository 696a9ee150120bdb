"""Callback/hook system for chain run lifecycle events."""

from promptchain.callbacks.base import BaseCallback, ChainCallback
from promptchain.callbacks.logging import LoggingCallback

__all__ = ["BaseCallback", "ChainCallback", "LoggingCallback"]
