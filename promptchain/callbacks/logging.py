"""Structured JSON logging callback for chain run lifecycle events."""

import json
import logging
from datetime import datetime, timezone
from typing import Any

from promptchain.callbacks.base import BaseCallback

logger = logging.getLogger("promptchain.audit")


def _now() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


def _clip(value: Any) -> Any:
    if value is None or isinstance(value, (int, float, bool)):
        return value
    return str(value)[:200]


class LoggingCallback(BaseCallback):
    """Emits one self-contained JSON log line per lifecycle event.

    Each line carries:
      - event: event type name
      - ts: ISO-8601 UTC timestamp
      - the event's fields (long values clipped to 200 chars)

    Log level: INFO for normal events, ERROR for node failures and failed runs.
    Logger name: promptchain.audit (configure in your logging setup)

        engine = ChainEngine(..., callbacks=[LoggingCallback()])
    """

    def _emit(self, event: str, data: dict[str, Any], level: int = logging.INFO) -> None:
        logger.log(level, json.dumps({
            "event": event,
            "ts": _now(),
            **{k: _clip(v) for k, v in data.items()},
        }))

    async def on_run_started(self, data: dict[str, Any], **kwargs: Any) -> None:
        self._emit("run_started", data)

    async def on_node_started(self, data: dict[str, Any], **kwargs: Any) -> None:
        self._emit("node_started", data)

    async def on_node_succeeded(self, data: dict[str, Any], **kwargs: Any) -> None:
        self._emit("node_succeeded", {
            "run_id": data.get("run_id", ""),
            "node_id": data.get("node_id", ""),
            "attempt": data.get("attempt", 1),
            "output_type": type(data.get("output")).__name__,
        })

    async def on_node_failed(self, data: dict[str, Any], **kwargs: Any) -> None:
        self._emit("node_failed", data, level=logging.ERROR)

    async def on_node_retrying(self, data: dict[str, Any], **kwargs: Any) -> None:
        self._emit("node_retrying", data)

    async def on_run_completed(self, data: dict[str, Any], **kwargs: Any) -> None:
        level = logging.ERROR if data.get("status") == "failed" else logging.INFO
        self._emit("run_completed", data, level=level)
