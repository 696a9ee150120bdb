"""Base callback protocol for chain run lifecycle hooks.

The engine calls every registered callback as ``cb(event, data)`` at key points
of a run.  Implement this protocol to observe or instrument runs without
modifying the engine.

Usage:
    class MyCallback(BaseCallback):
        async def on_node_failed(self, data, **kw):
            print(f"{data['node_id']} failed: {data['error']}")

    engine = ChainEngine(..., callbacks=[MyCallback()])
"""

from typing import Any, Protocol, runtime_checkable

EVENTS = (
    "run_started",
    "node_started",
    "node_succeeded",
    "node_failed",
    "node_retrying",
    "run_completed",
)


@runtime_checkable
class ChainCallback(Protocol):
    """Protocol defining hooks for run lifecycle events.

    All methods are optional; unimplemented hooks return None.
    All methods are async; the engine awaits each registered callback in order.
    """

    async def on_run_started(self, data: dict[str, Any], **kwargs: Any) -> None:
        """Called once the definition is validated and the store seeded."""
        ...

    async def on_node_started(self, data: dict[str, Any], **kwargs: Any) -> None:
        """Called before every node attempt, including loop bodies and branches."""
        ...

    async def on_node_succeeded(self, data: dict[str, Any], **kwargs: Any) -> None:
        ...

    async def on_node_failed(self, data: dict[str, Any], **kwargs: Any) -> None:
        """Called for every failed attempt, before the error policy applies."""
        ...

    async def on_node_retrying(self, data: dict[str, Any], **kwargs: Any) -> None:
        ...

    async def on_run_completed(self, data: dict[str, Any], **kwargs: Any) -> None:
        """Called when the run reaches succeeded, failed or stopped."""
        ...


class BaseCallback:
    """Concrete base with no-op hooks and ``__call__`` dispatch.

    Subclass this instead of implementing the Protocol directly; an instance
    can be passed straight to ChainEngine as a callback.
    """

    async def __call__(self, event: str, data: dict) -> None:
        if event in EVENTS:
            await getattr(self, f"on_{event}")(data)

    async def on_run_started(self, data: dict[str, Any], **kwargs: Any) -> None:
        pass

    async def on_node_started(self, data: dict[str, Any], **kwargs: Any) -> None:
        pass

    async def on_node_succeeded(self, data: dict[str, Any], **kwargs: Any) -> None:
        pass

    async def on_node_failed(self, data: dict[str, Any], **kwargs: Any) -> None:
        pass

    async def on_node_retrying(self, data: dict[str, Any], **kwargs: Any) -> None:
        pass

    async def on_run_completed(self, data: dict[str, Any], **kwargs: Any) -> None:
        pass
