"""Control-flow nodes: branching, loops, merges, sub-workflows and approvals.

Branching executors only pick a port. Loops and merges need state that
outlives a single dispatch; that state lives in :class:`ControlFlowRunner`,
one per run, reset when the run starts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from flowchord.core.context import LogType
from flowchord.core.graph import NodeSpec
from flowchord.core.ports import (
    APPROVED_PORT,
    FALSE_PORT,
    REJECTED_PORT,
    SWITCH_DEFAULT_PORT,
    TRUE_PORT,
    indexed_port,
    output_ports,
)
from flowchord.errors.exceptions import (
    ConfigError,
    ExpressionError,
    InvalidConfigError,
    LoopBoundExceededError,
    RecursionDepthExceededError,
)
from flowchord.expressions import stringify
from flowchord.expressions.evaluator import loose_equals, to_number
from flowchord.expressions.functions import is_empty
from flowchord.nodes.base import ExecutorOutput, LoopPlan, get_path, utc_timestamp

if TYPE_CHECKING:
    from flowchord.core.context import NodeContext

logger = logging.getLogger(__name__)


# If/Else

def _as_number(value: Any) -> float | int | None:
    try:
        return to_number(value)
    except ExpressionError:
        return None


def _contains(left: Any, right: Any) -> bool:
    if isinstance(left, list):
        return any(loose_equals(item, right) for item in left)
    if isinstance(left, dict):
        return stringify(right) in left
    return stringify(right) in stringify(left)


def _greater(left: Any, right: Any) -> bool:
    a, b = _as_number(left), _as_number(right)
    return a is not None and b is not None and a > b


def _less(left: Any, right: Any) -> bool:
    a, b = _as_number(left), _as_number(right)
    return a is not None and b is not None and a < b


CONDITION_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "equals": loose_equals,
    "notEquals": lambda left, right: not loose_equals(left, right),
    "contains": _contains,
    "greaterThan": _greater,
    "lessThan": _less,
    "isEmpty": lambda left, _: is_empty(left),
    "isNotEmpty": lambda left, _: not is_empty(left),
    "isTrue": lambda left, _: left is True or stringify(left).lower() == "true",
    "isFalse": lambda left, _: left is False or stringify(left).lower() == "false",
    "exists": lambda left, _: left is not None,
}


def evaluate_condition(left: Any, operator: str, right: Any) -> bool:
    """Apply an If/Else operator.

    Raises:
        InvalidConfigError: For an unknown operator.
    """
    check = CONDITION_OPERATORS.get(operator)
    if check is None:
        raise InvalidConfigError(
            "operator", operator, f"Use one of: {', '.join(CONDITION_OPERATORS)}"
        )
    return check(left, right)


def _field_value(node: NodeSpec, input: Any, context: NodeContext) -> tuple[str | None, Any]:
    path = node.data.get("field") or node.data.get("condition")
    if isinstance(path, str) and "{{" in path:
        return path, context.resolve(path, input)
    return path, get_path(input, path)


async def if_else(node: NodeSpec, input: Any, context: NodeContext) -> ExecutorOutput:
    path, left = _field_value(node, input, context)
    operator = node.data.get("operator") or "equals"
    right = context.resolve(node.data.get("compareValue"), input)

    result = evaluate_condition(left, operator, right)
    context.add_log(LogType.INFO, f"Check: {path} {operator} {right} -> {str(result).lower()}")
    return ExecutorOutput(output=input, port=TRUE_PORT if result else FALSE_PORT)


async def switch(node: NodeSpec, input: Any, context: NodeContext) -> ExecutorOutput:
    """Fire the first route whose value equals the field, else the default port."""
    path, value = _field_value(node, input, context)
    ports = output_ports(node)
    routes = node.data.get("routes") or []

    port = SWITCH_DEFAULT_PORT
    for index, route in enumerate(routes):
        expected = route.get("value") if isinstance(route, dict) else route
        if stringify(expected) == stringify(value):
            port = indexed_port(index)
            break

    if port not in ports:
        raise ConfigError(f"{node.label}: port '{port}' is not exposed")
    context.add_log(LogType.INFO, f'Switch on "{path}": value = "{stringify(value)}" -> {port}')
    return ExecutorOutput(output=input, port=port)


# Loop

async def loop(node: NodeSpec, input: Any, context: NodeContext) -> ExecutorOutput:
    """Plan the iterations; the engine drives the body.

    ``count`` mode runs ``iterations`` times with the index as the item.
    ``array`` mode walks the list at ``itemsPath`` (or the input itself),
    truncated to ``maxIterations``.

    Raises:
        LoopBoundExceededError: The plan is larger than the hard ceiling.
    """
    ceiling = context.settings.max_loop_iterations
    mode = node.data.get("mode") or ("array" if node.data.get("itemsPath") else "count")

    if mode == "count":
        raw = node.data.get("iterations", 1)
        try:
            count = int(raw)
        except (TypeError, ValueError):
            raise InvalidConfigError("iterations", raw, "Must be an integer") from None
        if count < 0:
            raise InvalidConfigError("iterations", raw, "Cannot be negative")
        if count > ceiling:
            raise LoopBoundExceededError(count, ceiling)
        plan = LoopPlan(items=list(range(count)), mode="count")
    elif mode == "array":
        items = get_path(input, node.data.get("itemsPath")) if node.data.get("itemsPath") else input
        if items is None:
            items = []
        if not isinstance(items, list):
            raise ConfigError(f"{node.label}: itemsPath does not point to a list")
        raw_limit = node.data.get("maxIterations") or context.settings.default_loop_iterations
        try:
            limit = int(raw_limit)
        except (TypeError, ValueError):
            raise InvalidConfigError("maxIterations", raw_limit, "Must be an integer") from None
        if limit < 0:
            raise InvalidConfigError("maxIterations", raw_limit, "Cannot be negative")
        planned = items[:limit]
        if len(planned) > ceiling:
            raise LoopBoundExceededError(len(planned), ceiling)
        plan = LoopPlan(items=list(planned), mode="array")
    else:
        raise InvalidConfigError("mode", mode, "Use 'count' or 'array'")

    context.add_log(LogType.INFO, f"Starting loop with {plan.total} item(s)")
    return ExecutorOutput(output=input, loop=plan)


# Merge

@dataclass
class MergeBarrier:
    """Arrivals at one merge node during one run.

    ``wait`` fires once every expected edge has delivered, then starts a
    fresh round. ``first`` fires on the first arrival and drops the rest.
    """

    node_id: str
    expected: int
    mode: str = "wait"
    arrivals: dict[str, Any] = field(default_factory=dict)
    fired: int = 0

    def arrive(self, edge_id: str, value: Any) -> bool:
        """Record an arrival. Returns True when the barrier fires."""
        if self.mode == "first":
            if self.fired:
                return False
            self.arrivals = {edge_id: value}
            self.fired += 1
            return True

        # A repeat on the same edge replaces the earlier value.
        self.arrivals[edge_id] = value
        if len(self.arrivals) >= self.expected:
            self.fired += 1
            return True
        return False

    def collect(self, edge_order: list[str]) -> list[Any]:
        """Arrived values in incoming-edge order, clearing them for the next round."""
        ranked = sorted(
            self.arrivals.items(),
            key=lambda kv: edge_order.index(kv[0]) if kv[0] in edge_order else len(edge_order),
        )
        self.arrivals = {}
        return [value for _, value in ranked]

    @property
    def waiting(self) -> int:
        return max(self.expected - len(self.arrivals), 0)


def aggregate(values: list[Any], aggregator: str, separator: str = "\n") -> Any:
    """Combine merged inputs.

    ``array`` keeps them as a list; ``object`` shallow-merges dicts (other
    values land under ``input{i}``); ``concat`` flattens lists or joins text.
    """
    if aggregator == "array":
        return list(values)
    if aggregator == "object":
        merged: dict[str, Any] = {}
        for i, value in enumerate(values):
            if isinstance(value, dict):
                merged.update(value)
            else:
                merged[f"input{i}"] = value
        return merged
    if aggregator == "concat":
        if values and all(isinstance(v, list) for v in values):
            return [item for value in values for item in value]
        return separator.join(stringify(v) for v in values)
    raise InvalidConfigError("aggregator", aggregator, "Use 'array', 'object' or 'concat'")


async def merge(node: NodeSpec, input: Any, context: NodeContext) -> ExecutorOutput:
    mode = node.data.get("mode") or "wait"
    if mode not in ("wait", "first"):
        raise InvalidConfigError("mode", mode, "Use 'wait' or 'first'")
    aggregator = node.data.get("aggregator") or "array"
    separator = node.data.get("separator", "\n")

    edge = context.incoming_edge
    if edge is None:
        # Invoked as a tool or as a root: nothing to wait for.
        return ExecutorOutput(output=input)

    edge_order = [e.id for e in context.graph.incoming(node.id)]
    expected = int(node.data.get("inputCount") or len(edge_order) or 1)
    barrier = context.control.barrier_for(node.id, expected, mode)

    if not barrier.arrive(edge.id, input):
        if mode == "first":
            logger.debug("Merge %s already fired; dropping arrival from %s", node.id, edge.source)
        else:
            context.add_log(LogType.INFO, f"Waiting for {barrier.waiting} more input(s)")
        return ExecutorOutput(halt=True)

    values = barrier.collect(edge_order)
    if mode == "first":
        context.add_log(LogType.INFO, f"First input arrived from {edge.source}")
        return ExecutorOutput(output=values[0])

    context.add_log(LogType.INFO, f"Merged {len(values)} input(s) ({aggregator})")
    return ExecutorOutput(output=aggregate(values, aggregator, separator))


# Sub-workflow

async def sub_workflow(node: NodeSpec, input: Any, context: NodeContext) -> ExecutorOutput:
    """Run another stored workflow, nested one level deeper."""
    workflow_id = node.data.get("workflowId")
    if not workflow_id:
        raise ConfigError(f"{node.label}: no workflow selected")

    depth = context.depth + 1
    limit = context.settings.max_subworkflow_depth
    if depth > limit:
        raise RecursionDepthExceededError(depth, limit, workflow_id=workflow_id)

    graph = await context.collaborators.require_workflows().load(workflow_id)
    if graph is None:
        raise ConfigError(f"Workflow '{workflow_id}' not found")

    child_input = input if node.data.get("passInput", True) else {}
    run_async = node.data.get("mode") == "async" or bool(node.data.get("async"))
    context.add_log(LogType.INFO, f"Executing sub-workflow: {workflow_id}{' (async)' if run_async else ''}")

    if run_async:
        await context.run_subworkflow(graph, child_input, wait=False)
        return ExecutorOutput(output={"subWorkflowId": workflow_id, "started": True})

    result = await context.run_subworkflow(graph, child_input)
    return ExecutorOutput(output=result)


# Approval

async def wait_for_approval(node: NodeSpec, input: Any, context: NodeContext) -> ExecutorOutput:
    """Suspend the branch until the approval gate settles this node."""
    title = context.resolve(node.data.get("title") or "Approval Required", input)
    message = context.resolve(node.data.get("message") or "", input)
    timeout_ms = node.data.get("timeoutMs")
    timeout = timeout_ms / 1000 if timeout_ms else context.settings.approval_timeout

    context.add_log(LogType.WARNING, f"Waiting for approval: {title}", {"message": message})
    decision = await context.collaborators.approvals.request(
        context.run_id,
        node.id,
        {"title": title, "message": message, "input": input},
        timeout,
    )

    if decision.approved:
        context.add_log(LogType.SUCCESS, "Approved")
        return ExecutorOutput(
            output={
                "approved": True,
                "approvedAt": utc_timestamp(),
                "comment": decision.comment,
                "originalInput": input,
            },
            port=APPROVED_PORT,
        )

    context.add_log(LogType.INFO, "Rejected (timed out)" if decision.timed_out else "Rejected")
    return ExecutorOutput(
        output={
            "approved": False,
            "rejectedAt": utc_timestamp(),
            "reason": decision.comment,
            "timedOut": decision.timed_out,
            "originalInput": input,
        },
        port=REJECTED_PORT,
    )


# Run-scoped state

@dataclass(frozen=True)
class IterationOutcome:
    success: bool
    output: Any = None


LoopBody = Callable[[dict[str, Any]], Awaitable[IterationOutcome]]


class ControlFlowRunner:
    """Loop driving and merge barriers for one run.

    Example:
        >>> runner = ControlFlowRunner()
        >>> done = await runner.run_loop(plan, body)
        >>> done["iterations"]
        3
    """

    def __init__(self) -> None:
        self._barriers: dict[str, MergeBarrier] = {}

    def reset(self) -> None:
        """Forget all barrier state. Called at run start."""
        self._barriers.clear()

    def barrier_for(self, node_id: str, expected: int, mode: str = "wait") -> MergeBarrier:
        barrier = self._barriers.get(node_id)
        if barrier is None:
            barrier = MergeBarrier(node_id=node_id, expected=expected, mode=mode)
            self._barriers[node_id] = barrier
        return barrier

    @property
    def barriers(self) -> dict[str, MergeBarrier]:
        return dict(self._barriers)

    async def run_loop(self, plan: LoopPlan, body: LoopBody) -> dict[str, Any]:
        """Run the body once per planned item and build the ``done`` payload.

        Failed iterations are counted and skipped; their outputs are not
        collected.
        """
        results: list[Any] = []
        errors = 0
        for index in range(plan.total):
            outcome = await body(plan.payload(index))
            if outcome.success:
                results.append(outcome.output)
            else:
                errors += 1
        return {
            "results": results,
            "itemCount": plan.total,
            "iterations": plan.total,
            "errors": errors,
        }
