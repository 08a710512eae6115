"""Workflow execution engine.

The engine walks a :class:`WorkflowGraph` depth first from its trigger
nodes. After each dispatch only the edges on the port the executor fired
are followed, so branching is decided at run time. Each run gets a fresh
:class:`ExecutionContext`; the engine itself only carries run controls
(pause, resume, step, stop) and the injected collaborators.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, InstanceOf
from rich.markup import escape

from flowchord.core.config import EngineSettings, RunOptions, get_settings
from flowchord.core.context import (
    ExecutionContext,
    LogEntry,
    LogType,
    NodeContext,
    NodeResult,
    output_preview,
)
from flowchord.core.graph import EdgeSpec, NodeSpec, NodeType, WorkflowGraph
from flowchord.core.ports import DONE_PORT, ERROR_PORT, LOOP_PORT, RESERVED_PORTS, output_ports
from flowchord.errors.exceptions import (
    ConfigError,
    NodeExecutionError,
    NoTriggerNodeError,
    RecursionDepthExceededError,
    WorkflowAlreadyRunningError,
    WorkflowStoppedError,
)
from flowchord.logging import FlowChordLogger, get_logger
from flowchord.nodes.base import Collaborators, ExecutorOutput, LoopPlan
from flowchord.nodes.control import ControlFlowRunner, IterationOutcome
from flowchord.nodes.registry import NodeExecutorRegistry
from flowchord.resilience.retry import RetryPolicy
from flowchord.resilience.timeout import Deadline, TimeoutManager

# Nodes that wait on people or on whole nested runs; only an explicit
# ``timeout`` bounds them.
UNTIMED_TYPES = frozenset({NodeType.WAIT_FOR_APPROVAL, NodeType.SUB_WORKFLOW})


class EngineState(str, Enum):
    """Lifecycle of an engine run."""

    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    STOPPED = "stopped"
    FAILED = "failed"

    @property
    def is_active(self) -> bool:
        return self in (EngineState.RUNNING, EngineState.PAUSED)


class RunResult(BaseModel):
    """Outcome of :meth:`ExecutionEngine.execute`.

    ``results`` maps each root (and any error trigger that ran) to its
    terminal output: the value itself when the branch ended once, a list
    when it ended in several places.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    state: EngineState
    success: bool
    results: dict[str, Any]
    error: str | None = None
    context: InstanceOf[ExecutionContext]

    @property
    def output(self) -> Any:
        """Terminal output of the first root."""
        return next(iter(self.results.values()), None)


def fingerprint(value: Any) -> str:
    """Stable digest of a payload, used to tell repeat visits apart."""
    try:
        text = json.dumps(value, sort_keys=True, default=str)
    except (TypeError, ValueError):
        text = repr(value)
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class _Path:
    """Visits on the current branch. Passed down by value, never shared."""

    visits: frozenset[tuple[str, str]] = frozenset()
    loops: frozenset[str] = frozenset()

    def visit(self, key: tuple[str, str]) -> _Path:
        return _Path(self.visits | {key}, self.loops)

    def enter_loop(self, node_id: str) -> _Path:
        return _Path(self.visits, self.loops | {node_id})


@dataclass
class _Outcome:
    """Terminal outputs reached from one visit, and whether anything failed."""

    outputs: list[Any] = field(default_factory=list)
    failed: bool = False

    def absorb(self, other: _Outcome) -> None:
        self.outputs.extend(other.outputs)
        self.failed = self.failed or other.failed

    @property
    def value(self) -> Any:
        if not self.outputs:
            return None
        return self.outputs[0] if len(self.outputs) == 1 else list(self.outputs)


class _RunSession:
    """Traversal state for one run. Also serves as the executors' run host."""

    def __init__(
        self,
        engine: ExecutionEngine,
        graph: WorkflowGraph,
        execution: ExecutionContext,
        options: RunOptions,
    ) -> None:
        self.engine = engine
        self.graph = graph
        self.execution = execution
        self.options = options
        self.error_outputs: dict[str, Any] = {}
        self.last_error: str | None = None

    # RunHost

    def log(self, execution: ExecutionContext, entry: LogEntry) -> None:
        if not execution.append_log(entry):
            return
        logger = self.engine.logger
        text = escape(f"[{entry.node_name}] {entry.message}" if entry.node_name else entry.message)
        if entry.type == LogType.ERROR:
            logger.error(text)
        elif entry.type == LogType.WARNING:
            logger.warning(text)
        else:
            logger.debug(text)

    async def invoke_node(self, node_id: str, input: Any, *, caller: NodeContext) -> NodeResult:
        node = self.graph.get_node(node_id)
        if node is None:
            return NodeResult.failure(f"Tool node '{node_id}' not found in workflow")
        if self.engine.stop_requested:
            return NodeResult.failure(str(WorkflowStoppedError()))
        result, output = await self.dispatch(node, input, None)
        if output is not None and output.loop is not None:
            result = result.model_copy(update={"output": list(output.loop.items)})
        return result

    async def run_subworkflow(
        self,
        graph: WorkflowGraph,
        input: Any,
        *,
        caller: NodeContext,
        wait: bool = True,
    ) -> Any:
        child = self.engine.spawn_child()
        options = RunOptions(depth=caller.depth + 1, workflow_id=graph.id)
        if not wait:
            self.engine.run_in_background(child.execute(graph, input, options), graph.id)
            return None

        result = await child.execute(graph, input, options)
        if not result.success:
            raise NodeExecutionError(
                f"Sub-workflow '{graph.id}' {result.state.value}: {result.error or 'no branch completed'}",
                node_id=caller.node_id,
            )
        return result.output

    # Dispatch

    def _timeout_for(self, node: NodeSpec) -> float | None:
        explicit = node.data.get("timeout")
        if explicit:
            return float(explicit) / 1000
        if node.type in UNTIMED_TYPES:
            return None
        return self.engine.timeouts.get_timeout(node.type.value)

    def _node_context(
        self, node: NodeSpec, incoming: EdgeSpec | None, deadline: Deadline | None
    ) -> NodeContext:
        return NodeContext(
            node,
            self.execution,
            graph=self.graph,
            collaborators=self.engine.collaborators,
            settings=self.engine.settings,
            host=self,
            control=self.engine.control,
            incoming_edge=incoming,
            deadline=deadline,
        )

    def _log_node(self, node: NodeSpec, type: LogType, message: str, data: dict[str, Any] | None = None) -> None:
        self.log(
            self.execution,
            LogEntry(type=type, message=message, node_id=node.id, node_name=node.label, data=data),
        )

    async def dispatch(
        self, node: NodeSpec, input: Any, incoming: EdgeSpec | None
    ) -> tuple[NodeResult, ExecutorOutput | None]:
        """Run one node with its retry policy and timeout, and record the result."""
        engine = self.engine
        settings = engine.settings
        self.execution.current_node_id = node.id
        engine.logger.node_start(node.id, node.label)
        self._log_node(node, LogType.NODE, f"Executing {node.label}")

        timeout = self._timeout_for(node)
        attempts = 0

        async def attempt() -> ExecutorOutput:
            nonlocal attempts
            if engine.stop_requested:
                raise WorkflowStoppedError()
            attempts += 1
            if timeout is None:
                return await engine.registry.run(node, input, self._node_context(node, incoming, None))
            deadline = engine.timeouts.deadline_for(node.type.value, timeout)
            return await engine.timeouts.execute(
                engine.registry.run,
                node,
                input,
                self._node_context(node, incoming, deadline),
                node_type=node.type.value,
                deadline=deadline,
            )

        def on_retry(attempt_number: int, delay: float, error: Exception) -> None:
            engine.logger.node_retry(node.id, attempt_number, int(delay * 1000))
            self._log_node(node, LogType.WARNING, f"Retry {attempt_number} in {int(delay * 1000)}ms: {error}")

        policy = RetryPolicy.for_node(
            node.data,
            default_delay_ms=settings.default_retry_delay_ms,
            max_delay_ms=settings.max_retry_delay_ms,
            on_retry=on_retry,
        )

        started = time.perf_counter()
        try:
            output = await policy.execute(attempt)
            if output.port is not None and output.port not in output_ports(node):
                raise ConfigError(f"{node.label} fired port '{output.port}' which it does not expose")
        except Exception as e:
            elapsed = int((time.perf_counter() - started) * 1000)
            result = NodeResult.failure(str(e), execution_time_ms=elapsed, attempts=max(attempts, 1))
            self.execution.record_result(node.id, result)
            self.last_error = f"{node.label}: {e}"
            engine.logger.node_error(node.id, str(e), result.attempts)
            self._log_node(node, LogType.ERROR, f"Error: {e}", {"attempts": result.attempts})
            return result, None

        elapsed = int((time.perf_counter() - started) * 1000)
        result = NodeResult(
            success=True,
            output=output.output,
            execution_time_ms=elapsed,
            attempts=attempts,
            port=output.port,
        )
        self.execution.record_result(node.id, result)
        engine.logger.node_end(node.id, elapsed, output.port)
        self._log_node(
            node,
            LogType.SUCCESS,
            f"Completed in {elapsed}ms",
            {
                "preview": output_preview(output.output, settings.output_preview_length),
                "port": output.port,
            },
        )
        return result, output

    # Traversal

    async def visit(
        self,
        node: NodeSpec,
        input: Any,
        incoming: EdgeSpec | None,
        path: _Path,
        handling_error: bool = False,
    ) -> _Outcome:
        if node.id in path.loops:
            # Body edge back into its own loop node ends the iteration.
            return _Outcome(outputs=[input])

        key = (node.id, fingerprint(input))
        if key in path.visits:
            self._log_node(node, LogType.DEBUG, "Skipped repeat visit with identical input")
            return _Outcome()
        path = path.visit(key)

        if not await self.engine.checkpoint(self.execution):
            return _Outcome()

        result, output = await self.dispatch(node, input, incoming)
        if output is None:
            return await self._route_error(node, input, result, path, handling_error)
        if output.halt:
            return _Outcome()

        if output.loop is not None:
            return await self._run_loop(node, output.loop, path, handling_error)

        if output.port is None:
            edges = [e for e in self.graph.outgoing(node.id) if e.source_handle not in RESERVED_PORTS]
        else:
            edges = self.graph.outgoing(node.id, output.port)
        if not edges:
            return _Outcome(outputs=[output.output])
        return await self._follow(edges, output.output, path, handling_error)

    async def _follow(
        self,
        edges: list[EdgeSpec],
        payload: Any,
        path: _Path,
        handling_error: bool,
    ) -> _Outcome:
        outcome = _Outcome()
        targets = [(edge, self.graph.get_node(edge.target)) for edge in edges]
        targets = [(edge, target) for edge, target in targets if target is not None]

        if self.options.parallel_branches and len(targets) > 1:
            branches = await asyncio.gather(
                *(self.visit(target, payload, edge, path, handling_error) for edge, target in targets)
            )
            for branch in branches:
                outcome.absorb(branch)
            return outcome

        for edge, target in targets:
            if self.engine.stop_requested:
                break
            outcome.absorb(await self.visit(target, payload, edge, path, handling_error))
        return outcome

    async def _route_error(
        self,
        node: NodeSpec,
        input: Any,
        result: NodeResult,
        path: _Path,
        handling_error: bool,
    ) -> _Outcome:
        """Send a failure down the node's error port, else to the error triggers."""
        if self.engine.stop_requested:
            return _Outcome(failed=True)
        payload = {"error": result.error, "failedNodeId": node.id, "input": input}

        edges = self.graph.outgoing(node.id, ERROR_PORT)
        if edges:
            outcome = await self._follow(edges, payload, path, handling_error)
            outcome.failed = True
            return outcome

        if not handling_error:
            for trigger in self.graph.error_trigger_nodes():
                handled = await self.visit(trigger, payload, None, _Path(), handling_error=True)
                if handled.outputs:
                    self.error_outputs[trigger.id] = handled.value
        return _Outcome(failed=True)

    async def _run_loop(
        self,
        node: NodeSpec,
        plan: LoopPlan,
        path: _Path,
        handling_error: bool,
    ) -> _Outcome:
        body_edges = self.graph.outgoing(node.id, LOOP_PORT)
        if body_edges:
            body_path = path.enter_loop(node.id)

            async def body(payload: dict[str, Any]) -> IterationOutcome:
                if self.engine.stop_requested:
                    return IterationOutcome(success=False)
                iteration = await self._follow(body_edges, payload, body_path, handling_error)
                return IterationOutcome(success=not iteration.failed, output=iteration.value)

            done = await self.engine.control.run_loop(plan, body)
        else:
            done = {"results": list(plan.items), "itemCount": plan.total, "iterations": plan.total, "errors": 0}

        self.execution.settle_result(
            node.id,
            NodeResult(success=True, output=done, port=DONE_PORT, attempts=1),
        )
        self._log_node(node, LogType.INFO, f"Loop complete: {done['iterations']} iteration(s), {done['errors']} error(s)")

        if self.engine.stop_requested:
            return _Outcome()
        edges = self.graph.outgoing(node.id, DONE_PORT)
        if not edges:
            return _Outcome(outputs=[done])
        return await self._follow(edges, done, path, handling_error)


class ExecutionEngine:
    """Runs workflow graphs.

    Attributes:
        collaborators: External services injected into executors.
        settings: Engine limits and timeouts.
        registry: Node type to executor table.

    Example:
        >>> engine = ExecutionEngine(Collaborators(llm=provider))
        >>> result = await engine.execute(graph, {"text": "hello"})
        >>> result.state
        <EngineState.COMPLETED: 'completed'>
    """

    def __init__(
        self,
        collaborators: Collaborators | None = None,
        settings: EngineSettings | None = None,
        registry: NodeExecutorRegistry | None = None,
        logger: FlowChordLogger | None = None,
    ) -> None:
        self.collaborators = collaborators or Collaborators()
        self.settings = settings or get_settings()
        self.registry = registry or NodeExecutorRegistry()
        self.logger = logger or get_logger()
        self.control = ControlFlowRunner()
        self.timeouts = TimeoutManager(
            default_timeout=self.settings.default_node_timeout,
            per_type_timeouts={t.value: self.settings.ai_node_timeout for t in NodeType if t.is_slow},
        )

        self._state = EngineState.IDLE
        self._stop_requested = False
        # True from the start of a run until its traversal has unwound,
        # including after stop() has already reported STOPPED.
        self._in_flight = False
        self._resume = asyncio.Event()
        self._resume.set()
        self._step_waiters: deque[asyncio.Future[None]] = deque()
        self._execution: ExecutionContext | None = None
        self._children: list[ExecutionEngine] = []
        self._background: set[asyncio.Task[Any]] = set()

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def context(self) -> ExecutionContext | None:
        """Context of the current or most recent run."""
        return self._execution

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    @property
    def waiting_for_step(self) -> int:
        """Dispatches held at a debug suspension point."""
        return sum(1 for waiter in self._step_waiters if not waiter.done())

    async def execute(
        self,
        graph: WorkflowGraph | dict[str, Any],
        initial_data: Any = None,
        options: RunOptions | None = None,
    ) -> RunResult:
        """Run a workflow to completion.

        Args:
            graph: Workflow to run (a graph or its dict export).
            initial_data: Input handed to every root trigger.
            options: Per-run switches (debug stepping, nesting depth).

        Returns:
            RunResult with the final state and per-root outputs. Node
            failures never raise; they are reflected in the state.

        Raises:
            WorkflowAlreadyRunningError: A run is already in progress.
            RecursionDepthExceededError: ``options.depth`` is over the limit.
        """
        if self._state.is_active or self._in_flight:
            raise WorkflowAlreadyRunningError()
        if not isinstance(graph, WorkflowGraph):
            graph = WorkflowGraph.model_validate(graph)
        options = options or RunOptions()
        if options.depth > self.settings.max_subworkflow_depth:
            raise RecursionDepthExceededError(
                options.depth, self.settings.max_subworkflow_depth, workflow_id=graph.id
            )

        execution = ExecutionContext(
            workflow_id=options.workflow_id or graph.id,
            is_running=True,
            is_debug_mode=options.debug,
            depth=options.depth,
            max_log_entries=self.settings.max_log_entries,
        )
        self._execution = execution
        self._in_flight = True
        self._state = EngineState.RUNNING
        self._stop_requested = False
        self._resume.set()
        self._step_waiters.clear()
        self._children = []
        self.control.reset()

        session = _RunSession(self, graph, execution, options)
        roots = graph.trigger_nodes()
        started = time.perf_counter()
        self.logger.workflow_start(execution.run_id, len(roots), debug=options.debug)

        results: dict[str, Any] = {}
        succeeded = False
        error: str | None = None
        try:
            if not roots:
                raise NoTriggerNodeError()
            session.log(
                execution,
                LogEntry(type=LogType.INFO, message=f"Starting workflow with {len(roots)} trigger(s)"),
            )
            for root in roots:
                if self._stop_requested:
                    break
                outcome = await session.visit(root, initial_data, None, _Path())
                if outcome.outputs:
                    succeeded = True
                    results[root.id] = outcome.value
            results.update(session.error_outputs)
        except NoTriggerNodeError as e:
            error = str(e)
            session.log(execution, LogEntry(type=LogType.ERROR, message=error))
        finally:
            self._in_flight = False
            execution.is_running = False
            execution.is_paused = False
            execution.current_node_id = None

        if self._stop_requested:
            state = EngineState.STOPPED
            error = error or "Workflow was stopped"
        elif succeeded:
            state = EngineState.COMPLETED
        else:
            state = EngineState.FAILED
            error = error or session.last_error or "No branch completed successfully"
        self._state = state

        duration_ms = int((time.perf_counter() - started) * 1000)
        session.log(
            execution,
            LogEntry(
                type=LogType.SUCCESS if state == EngineState.COMPLETED else LogType.WARNING,
                message=f"Workflow {state.value} in {duration_ms}ms",
            ),
        )
        self.logger.workflow_end(execution.run_id, state.value, duration_ms)
        return RunResult(
            state=state,
            success=state == EngineState.COMPLETED,
            results=results,
            error=None if state == EngineState.COMPLETED else error,
            context=execution,
        )

    start = execute

    async def checkpoint(self, execution: ExecutionContext) -> bool:
        """Suspension point before each dispatch. Returns False once stopped."""
        while not self._resume.is_set():
            await self._resume.wait()
        if self._stop_requested:
            return False
        if execution.is_debug_mode:
            waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
            self._step_waiters.append(waiter)
            await waiter
            while not self._resume.is_set():
                await self._resume.wait()
        return not self._stop_requested

    def pause(self) -> bool:
        """Hold the run before its next dispatch. No-op unless running."""
        if self._state != EngineState.RUNNING:
            return False
        self._state = EngineState.PAUSED
        self._resume.clear()
        if self._execution is not None:
            self._execution.is_paused = True
        return True

    def resume(self) -> bool:
        """Continue a paused run. No-op unless paused."""
        if self._state != EngineState.PAUSED:
            return False
        self._state = EngineState.RUNNING
        self._resume.set()
        if self._execution is not None:
            self._execution.is_paused = False
        return True

    def step(self) -> bool:
        """Release exactly one dispatch held in debug mode."""
        while self._step_waiters:
            waiter = self._step_waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return True
        return False

    def stop(self) -> bool:
        """Stop the run cooperatively.

        No node is dispatched after this returns. A node already running
        may finish; approvals it waits on are cancelled.
        """
        if not self._state.is_active:
            return False
        self._stop_requested = True
        self._state = EngineState.STOPPED
        self._resume.set()
        while self._step_waiters:
            waiter = self._step_waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
        if self._execution is not None:
            self._execution.is_paused = False
            self.collaborators.approvals.cancel_run(self._execution.run_id)
        for child in self._children:
            child.stop()
        return True

    def spawn_child(self) -> ExecutionEngine:
        """Engine for a nested sub-workflow run, sharing collaborators."""
        child = ExecutionEngine(
            self.collaborators,
            settings=self.settings,
            registry=self.registry,
            logger=self.logger,
        )
        self._children.append(child)
        return child

    def run_in_background(self, run: Any, label: str | None = None) -> asyncio.Task[Any]:
        """Schedule a detached sub-workflow run and keep a reference to it."""
        task = asyncio.ensure_future(run)
        self._background.add(task)

        def _done(finished: asyncio.Task[Any]) -> None:
            self._background.discard(finished)
            if finished.cancelled():
                return
            error = finished.exception()
            if error is not None:
                self.logger.error(f"Background sub-workflow {label or ''} failed: {error}")

        task.add_done_callback(_done)
        return task

    async def wait_background(self) -> None:
        """Wait for detached sub-workflow runs to settle."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
