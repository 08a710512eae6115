"""Executor lookup by node type."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, Mapping

from flowchord.core.context import NodeResult
from flowchord.core.graph import NodeSpec, NodeType
from flowchord.errors.exceptions import ConfigError, UnknownNodeTypeError
from flowchord.nodes import actions, ai, control, triggers
from flowchord.nodes.base import ExecutorOutput, NodeExecutor

if TYPE_CHECKING:
    from flowchord.core.context import NodeContext

logger = logging.getLogger(__name__)


DEFAULT_EXECUTORS: dict[NodeType, NodeExecutor] = {
    NodeType.MANUAL_TRIGGER: triggers.manual_trigger,
    NodeType.SCHEDULE_TRIGGER: triggers.schedule_trigger,
    NodeType.WEBHOOK_TRIGGER: triggers.webhook_trigger,
    NodeType.ERROR_TRIGGER: triggers.error_trigger,
    NodeType.CODE_EXECUTOR: actions.code_executor,
    NodeType.HTTP_REQUEST: actions.http_request,
    NodeType.SET_VARIABLE: actions.set_variable,
    NodeType.DELAY: actions.delay,
    NodeType.OUTPUT: actions.output,
    NodeType.TOOL_CALL: actions.tool_call,
    NodeType.FILE_SYSTEM: actions.delegate(NodeType.FILE_SYSTEM),
    NodeType.LOCAL_STORAGE: actions.local_storage,
    NodeType.VECTOR_MEMORY: actions.delegate(NodeType.VECTOR_MEMORY),
    NodeType.TEXT_TO_SPEECH: actions.delegate(NodeType.TEXT_TO_SPEECH),
    NodeType.IMAGE_GENERATION: actions.delegate(NodeType.IMAGE_GENERATION),
    NodeType.PYTHON_EXECUTOR: actions.delegate(NodeType.PYTHON_EXECUTOR),
    NodeType.IF_ELSE: control.if_else,
    NodeType.SWITCH: control.switch,
    NodeType.LOOP: control.loop,
    NodeType.MERGE: control.merge,
    NodeType.SUB_WORKFLOW: control.sub_workflow,
    NodeType.WAIT_FOR_APPROVAL: control.wait_for_approval,
    NodeType.AI_AGENT: ai.ai_agent,
    NodeType.SEMANTIC_ROUTER: ai.semantic_router,
    NodeType.EVALUATOR: ai.evaluator,
    NodeType.CRITIC: ai.critic,
    NodeType.CHAT_MODEL: actions.chat_model,
}


class NodeExecutorRegistry:
    """Maps every node type to its executor.

    The table must cover the whole :class:`NodeType` enum; a gap is a
    configuration error caught when the registry is built, not when a
    workflow happens to use the missing type.

    Example:
        >>> registry = NodeExecutorRegistry(overrides={NodeType.DELAY: my_delay})
        >>> result = await registry.dispatch(node, input, context)
    """

    def __init__(
        self,
        executors: Mapping[NodeType, NodeExecutor] | None = None,
        *,
        overrides: Mapping[NodeType, NodeExecutor] | None = None,
    ) -> None:
        table = dict(DEFAULT_EXECUTORS if executors is None else executors)
        table.update(overrides or {})

        missing = [t.value for t in NodeType if t not in table]
        if missing:
            raise ConfigError(f"No executor registered for node type(s): {', '.join(missing)}")
        self._executors = table

    def __contains__(self, node_type: object) -> bool:
        return node_type in self._executors

    def __len__(self) -> int:
        return len(self._executors)

    def get(self, node_type: NodeType | str) -> NodeExecutor:
        """Look up the executor for a type tag.

        Raises:
            UnknownNodeTypeError: The tag is not a known node type.
        """
        return self._executors[NodeType.parse(node_type)]

    async def run(self, node: NodeSpec, input: Any, context: NodeContext) -> ExecutorOutput:
        """Run the executor and return its raw output. Errors propagate."""
        executor = self.get(node.type)
        result = await executor(node, input, context)
        if not isinstance(result, ExecutorOutput):
            result = ExecutorOutput(output=result)
        return result

    async def dispatch(self, node: NodeSpec, input: Any, context: NodeContext) -> NodeResult:
        """Run a node once and capture the outcome as a :class:`NodeResult`.

        Used when a node runs outside graph traversal, e.g. as an agent
        tool. Executor errors become failed results; an unknown type tag
        still raises.
        """
        executor = self.get(node.type)
        started = time.perf_counter()
        try:
            output = await executor(node, input, context)
        except Exception as e:
            logger.debug("Node %s failed as a tool: %s", node.id, e)
            return NodeResult.failure(str(e), execution_time_ms=_elapsed_ms(started))

        if not isinstance(output, ExecutorOutput):
            output = ExecutorOutput(output=output)
        value = output.output
        if output.loop is not None:
            value = list(output.loop.items)
        return NodeResult(
            success=True,
            output=value,
            port=output.port,
            execution_time_ms=_elapsed_ms(started),
        )


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
