"""Chain execution engine. Walks a ChainDefinition node by node.

State machine per run::

    idle → running → succeeded | failed | stopped

Each run owns its VariableStore, visited set and log.  Nothing run-specific
is kept on the engine, so one engine can drive many concurrent runs.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from promptchain.chains.validator import ChainValidator
from promptchain.config import PromptChainConfig, config as default_config
from promptchain.exceptions import NodeError, NodeTimeoutError, PromptChainError, ServiceError
from promptchain.types import (
    ChainDefinition, ChainExecution, ErrorHandling, ErrorPolicy, ExecutionLogEntry,
    LogStatus, Node, NodeType, RunStatus, Termination,
)

from .handlers import HANDLERS, FunctionRegistry, NodeContext, ResponseCache
from .resolver import resolve_error_edge, resolve_next
from .variables import VariableStore

logger = logging.getLogger(__name__)

# Retry delays grow exponentially only for transient failure kinds.
_BACKOFF_KINDS = {"timeout", "rate_limited"}


class _RunCancelled(Exception):
    """Raised inside a loop body when the run's cancel event is set."""


def _discard_outcome(task: asyncio.Future) -> None:
    """Retrieve an abandoned handler's exception so asyncio does not report it."""
    if not task.cancelled() and task.exception() is not None:
        logger.debug(f"[Engine] abandoned handler finished with {task.exception()!r}")


@dataclass
class _RunState:
    chain: ChainDefinition
    execution: ChainExecution
    variables: VariableStore
    cancel_event: asyncio.Event
    callbacks: list
    ctx: Optional[NodeContext] = None
    visited: set = field(default_factory=set)


class ChainEngine:
    """Runs chain definitions against an Inference Service.

    Constructor dependencies (all injected):
        - inference_service: anything with ``async invoke(prompt)``
        - definition_store:  DefinitionStore for templates and ``run_chain``
        - functions:         FunctionRegistry for Function nodes
        - config:            PromptChainConfig (module-level config by default)
        - callbacks:         async ``cb(event, data)`` lifecycle hooks
        - validator:         ChainValidator
    """

    def __init__(
        self,
        inference_service: Any,
        definition_store: Any = None,
        functions: Optional[FunctionRegistry] = None,
        config: Optional[PromptChainConfig] = None,
        callbacks: Optional[list[Callable]] = None,
        validator: Optional[ChainValidator] = None,
    ):
        self.inference_service = inference_service
        self.definition_store = definition_store
        self.functions = functions or FunctionRegistry()
        self.config = config or default_config
        self.callbacks = list(callbacks or [])
        self.validator = validator or ChainValidator()
        self.response_cache = ResponseCache()

    # ── Public API ────────────────────────────────────────────────────────────

    async def run_chain(
        self,
        chain_id: str,
        inputs: Optional[dict[str, Any]] = None,
        cancel_event: Optional[asyncio.Event] = None,
        callbacks: Optional[list[Callable]] = None,
    ) -> ChainExecution:
        """Load chain_id from the Definition Store and run it.

        Raises:
            ChainNotFound: if the store has no such chain.
            ChainValidationError: as for ``run``.
        """
        if self.definition_store is None:
            raise PromptChainError("ChainEngine has no definition_store configured.")
        chain = await self.definition_store.load_chain(chain_id)
        return await self.run(chain, inputs=inputs, cancel_event=cancel_event, callbacks=callbacks)

    async def run(
        self,
        chain: ChainDefinition,
        inputs: Optional[dict[str, Any]] = None,
        cancel_event: Optional[asyncio.Event] = None,
        callbacks: Optional[list[Callable]] = None,
    ) -> ChainExecution:
        """Execute a chain definition to a terminal state.

        Args:
            chain:        The definition to run.  Never mutated.
            inputs:       Run inputs overlaid on global variable defaults.
            cancel_event: Set it to stop the run between steps.
            callbacks:    Per-run callbacks; replace the engine's for this run.

        Returns:
            ChainExecution in ``succeeded``, ``failed`` or ``stopped`` state with
            the final variable snapshot and the full step log.

        Raises:
            ChainValidationError: the definition has hard errors, or inputs are
                missing / mistyped.  Raised before any node runs.
        """
        warnings = self.validator.validate_or_raise(
            chain, functions=self.functions, max_nodes=self.config.max_chain_nodes
        )
        for warning in warnings:
            logger.debug(f"[Engine] chain={chain.id} {warning}")
        variables = VariableStore.seed(chain.global_variables, inputs)

        execution = ChainExecution(
            chain_id=chain.id,
            chain_version=chain.version,
            status=RunStatus.RUNNING,
            started_at=datetime.now(timezone.utc),
        )
        state = _RunState(
            chain=chain,
            execution=execution,
            variables=variables,
            cancel_event=cancel_event or asyncio.Event(),
            callbacks=self.callbacks if callbacks is None else list(callbacks),
        )
        state.ctx = NodeContext(
            chain=chain,
            inference=self.inference_service,
            config=self.config,
            functions=self.functions,
            definition_store=self.definition_store,
            cache=self.response_cache,
            run_body=lambda loop_node, body_id, iteration: self._run_body(
                state, loop_node, body_id, iteration
            ),
            run_branch=lambda parallel_node, branch, branch_vars: self._run_branch(
                state, parallel_node, branch, branch_vars
            ),
        )

        logger.info(
            f"[Engine] run chain={chain.id} v{chain.version} run={execution.id} "
            f"nodes={len(chain.nodes)}"
        )
        await self._fire_callbacks(state, "run_started", {
            "run_id": execution.id,
            "chain_id": chain.id,
            "chain_version": chain.version,
        })

        await self._traverse(state)
        return execution

    # ── Traversal ─────────────────────────────────────────────────────────────

    async def _traverse(self, state: _RunState) -> None:
        chain = state.chain
        handling = chain.error_handling
        current = chain.entry_node_id

        while True:
            if state.cancel_event.is_set():
                return await self._finish(state, RunStatus.STOPPED, Termination.CANCELLED)
            if current is None:
                return await self._finish(state, RunStatus.SUCCEEDED, Termination.NO_NEXT_NODE)
            if current in state.visited:
                logger.warning(
                    f"[Engine] run={state.execution.id} revisited node '{current}'; "
                    "ending run (cycle detected)"
                )
                return await self._finish(state, RunStatus.SUCCEEDED, Termination.CYCLE_DETECTED)

            node = chain.get_node(current)
            state.visited.add(node.id)
            state.execution.visited.append(node.id)

            max_retries = 0
            if handling.on_node_error == ErrorPolicy.RETRY:
                max_retries = node.config.get("retry_count", handling.max_retries)

            attempt = 1
            error: Optional[NodeError] = None
            while True:
                try:
                    result, next_id = await self._step(state, node, attempt)
                    break
                except _RunCancelled:
                    return await self._finish(state, RunStatus.STOPPED, Termination.CANCELLED)
                except NodeError as exc:
                    if attempt > max_retries:
                        error = exc
                        break
                    delay_ms = self._retry_delay_ms(node, handling, exc, attempt)
                    logger.info(
                        f"[Engine] retrying node '{node.id}' attempt={attempt + 1}/"
                        f"{max_retries + 1} in {delay_ms}ms ({exc.kind})"
                    )
                    await self._fire_callbacks(state, "node_retrying", {
                        "run_id": state.execution.id,
                        "node_id": node.id,
                        "attempt": attempt + 1,
                        "delay_ms": delay_ms,
                        "error": str(exc),
                    })
                    if await self._wait_or_cancelled(state.cancel_event, delay_ms):
                        return await self._finish(state, RunStatus.STOPPED, Termination.CANCELLED)
                    attempt += 1

            if error is None:
                if node.type == NodeType.OUTPUT:
                    state.execution.output = result
                    return await self._finish(state, RunStatus.SUCCEEDED, Termination.OUTPUT_NODE)
                current = next_id
                continue

            recovery = self._recovery_target(chain, node, error)
            if recovery is None:
                return await self._finish(
                    state, RunStatus.FAILED, Termination.NODE_FAILED,
                    error=str(error), failed_node_id=node.id,
                )
            # an already-visited recovery target ends the run via the cycle check
            logger.info(
                f"[Engine] node '{node.id}' failed ({error.kind}); recovering at '{recovery}'"
            )
            current = recovery

    def _recovery_target(
        self, chain: ChainDefinition, node: Node, error: NodeError
    ) -> Optional[str]:
        """Where the run continues after node failed for good, or None to fail."""
        policy = chain.error_handling.on_node_error
        if policy == ErrorPolicy.CONTINUE:
            return resolve_error_edge(node.id, chain.edges)
        if policy == ErrorPolicy.FALLBACK:
            return (
                node.config.get("fallback_node_id")
                or chain.error_handling.fallback_node_id
                or resolve_error_edge(node.id, chain.edges)
            )
        return None  # stop, or retry exhausted

    def _retry_delay_ms(
        self, node: Node, handling: ErrorHandling, error: NodeError, attempt: int
    ) -> float:
        delay = float(node.config.get("retry_delay_ms", handling.retry_delay_ms))
        if error.kind in _BACKOFF_KINDS:
            delay *= self.config.retry_backoff_multiplier ** (attempt - 1)
            retry_after = getattr(error.__cause__, "retry_after", None)
            if retry_after:
                delay = max(delay, retry_after * 1000)
        return min(delay, self.config.max_retry_delay_ms)

    @staticmethod
    async def _wait_or_cancelled(cancel_event: asyncio.Event, delay_ms: float) -> bool:
        """Sleep delay_ms unless cancelled first.  Returns True if cancelled."""
        if cancel_event.is_set():
            return True
        if delay_ms <= 0:
            return False
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=delay_ms / 1000)
        except asyncio.TimeoutError:
            return False
        return True

    # ── Single step ───────────────────────────────────────────────────────────

    async def _step(
        self,
        state: _RunState,
        node: Node,
        attempt: int = 1,
        *,
        variables: Optional[VariableStore] = None,
        iteration: Optional[int] = None,
        parent_node_id: Optional[str] = None,
        resolve: bool = True,
    ) -> tuple[Any, Optional[str]]:
        """Run one node attempt: log entry, handler under timeout, write, resolve.

        Returns:
            (result, next_node_id).  next_node_id is None when resolve is False.

        Raises:
            NodeError: the handler or edge resolution failed.  The log entry is
                already finalised to ``error``.
        """
        variables = state.variables if variables is None else variables
        entry = ExecutionLogEntry(
            node_id=node.id,
            node_name=node.name,
            node_type=node.type,
            attempt=attempt,
            iteration=iteration,
            parent_node_id=parent_node_id,
        )
        state.execution.log.append(entry)
        await self._fire_callbacks(state, "node_started", {
            "run_id": state.execution.id,
            "node_id": node.id,
            "node_type": node.type.value,
            "attempt": attempt,
            "iteration": iteration,
            "parent_node_id": parent_node_id,
        })
        started = time.monotonic()

        try:
            result = await self._invoke(state, node, variables)
            if node.output_variable:
                variables.set(node.output_variable, result)
            next_id = (
                resolve_next(node.id, state.chain.edges, result, variables) if resolve else None
            )
        except _RunCancelled:
            self._finalise(entry, started, error="Run cancelled", error_kind="cancelled")
            raise
        except asyncio.CancelledError:
            # sibling parallel branch failed first, or the caller cancelled the task
            self._finalise(entry, started, error="Step cancelled", error_kind="cancelled")
            raise
        except NodeError as exc:
            if not exc.node_id:
                exc.node_id = node.id
            self._finalise(entry, started, error=str(exc), error_kind=exc.kind)
            logger.warning(f"[Engine] node '{node.id}' failed ({exc.kind}): {exc}")
            await self._fire_callbacks(state, "node_failed", {
                "run_id": state.execution.id,
                "node_id": node.id,
                "attempt": attempt,
                "error": str(exc),
                "kind": exc.kind,
            })
            raise
        except Exception as exc:
            wrapped = ServiceError(f"Unexpected error: {exc}", node_id=node.id)
            self._finalise(entry, started, error=str(wrapped), error_kind=wrapped.kind)
            logger.error(f"[Engine] node '{node.id}' raised unexpectedly: {exc}", exc_info=True)
            await self._fire_callbacks(state, "node_failed", {
                "run_id": state.execution.id,
                "node_id": node.id,
                "attempt": attempt,
                "error": str(wrapped),
                "kind": wrapped.kind,
            })
            raise wrapped from exc

        self._finalise(entry, started, output=result)
        await self._fire_callbacks(state, "node_succeeded", {
            "run_id": state.execution.id,
            "node_id": node.id,
            "attempt": attempt,
            "output": result,
        })
        return result, next_id

    async def _invoke(self, state: _RunState, node: Node, variables: VariableStore) -> Any:
        """Race the node's handler against its timeout.

        The timeout fires at the deadline even if the handler ignores or delays
        cancellation.  The losing handler is cancelled and left to finish on its
        own; its late result is discarded.
        """
        handler = HANDLERS[node.type]
        timeout_ms = node.config.get("timeout_ms") or self.config.default_timeout_ms(node.type)
        task = asyncio.ensure_future(handler(node, variables, state.ctx))
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000)
        except asyncio.CancelledError:
            task.cancel()
            raise
        if task in done:
            return task.result()

        task.cancel()
        task.add_done_callback(_discard_outcome)
        raise NodeTimeoutError(
            f"Node '{node.name or node.id}' timed out after {timeout_ms}ms",
            node_id=node.id,
            timeout_ms=timeout_ms,
        )

    @staticmethod
    def _finalise(
        entry: ExecutionLogEntry,
        started: float,
        output: Any = None,
        error: Optional[str] = None,
        error_kind: Optional[str] = None,
    ) -> None:
        entry.duration_ms = round((time.monotonic() - started) * 1000, 3)
        if error is None:
            entry.status = LogStatus.SUCCESS
            entry.output = output
        else:
            entry.status = LogStatus.ERROR
            entry.error = error
            entry.error_kind = error_kind

    # ── Loop bodies and parallel branches ─────────────────────────────────────

    async def _run_body(
        self, state: _RunState, loop_node: Node, body_id: str, iteration: int
    ) -> Any:
        """Traverse the loop body from body_id until it ends or returns to the loop node.

        Body nodes have their own visited set per iteration.  Failures propagate
        to the loop node, whose error policy then applies.
        """
        visited: set[str] = set()
        current: Optional[str] = body_id
        result: Any = None
        while current is not None and current != loop_node.id:
            if state.cancel_event.is_set():
                raise _RunCancelled()
            if current in visited:
                logger.warning(
                    f"[Engine] loop '{loop_node.id}' iteration {iteration} revisited "
                    f"'{current}'; ending iteration"
                )
                break
            visited.add(current)
            node = state.chain.get_node(current)
            result, current = await self._step(
                state, node, iteration=iteration, parent_node_id=loop_node.id
            )
            if node.type == NodeType.OUTPUT:
                break
        return result

    async def _run_branch(
        self, state: _RunState, parallel_node: Node, branch: Node, variables: VariableStore
    ) -> Any:
        result, _ = await self._step(
            state, branch, variables=variables, parent_node_id=parallel_node.id, resolve=False
        )
        return result

    # ── Completion and callbacks ──────────────────────────────────────────────

    async def _finish(
        self,
        state: _RunState,
        status: RunStatus,
        termination: Termination,
        error: Optional[str] = None,
        failed_node_id: Optional[str] = None,
    ) -> None:
        execution = state.execution
        execution.status = status
        execution.termination = termination
        execution.error = error
        execution.failed_node_id = failed_node_id
        execution.variables = state.variables.snapshot()
        execution.completed_at = datetime.now(timezone.utc)

        log = logger.error if status == RunStatus.FAILED else logger.info
        log(
            f"[Engine] run={execution.id} {status.value} ({termination.value}) "
            f"steps={len(execution.log)}" + (f" error={error}" if error else "")
        )
        await self._fire_callbacks(state, "run_completed", {
            "run_id": execution.id,
            "chain_id": execution.chain_id,
            "status": status.value,
            "termination": termination.value,
            "error": error,
            "failed_node_id": failed_node_id,
            "steps": len(execution.log),
        })

    async def _fire_callbacks(self, state: _RunState, event: str, data: dict) -> None:
        """Invoke all callbacks for a lifecycle event.  Callback errors never affect the run."""
        for cb in state.callbacks:
            try:
                outcome = cb(event, data)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as cb_exc:
                logger.warning(f"[Engine] Callback error on '{event}': {cb_exc}")
