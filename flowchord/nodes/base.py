"""Executor contract and injected collaborators."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Protocol, runtime_checkable

from flowchord.core.approvals import ApprovalGate
from flowchord.core.graph import NodeSpec, NodeType
from flowchord.core.workflows import WorkflowStore
from flowchord.errors.exceptions import ConfigError, ExternalCallError
from flowchord.llm.base import BaseLLMProvider
from flowchord.sandbox.executor import SandboxedCodeExecutor
from flowchord.tools.base import ToolHandler
from flowchord.tools.http import HttpRequestTool

if TYPE_CHECKING:
    from flowchord.core.context import NodeContext


@dataclass(frozen=True)
class LoopPlan:
    """Iterations a loop node asks the engine to drive."""

    items: list[Any]
    mode: str = "array"

    @property
    def total(self) -> int:
        return len(self.items)

    def payload(self, index: int) -> dict[str, Any]:
        """Input delivered to the loop body on iteration ``index``."""
        return {
            "item": self.items[index],
            "index": index,
            "total": self.total,
            "isFirst": index == 0,
            "isLast": index == self.total - 1,
        }


@dataclass(frozen=True)
class ExecutorOutput:
    """What an executor hands back to the engine.

    Attributes:
        output: Data passed along the fired edges.
        port: Port to follow. ``None`` follows every non-reserved data edge.
        loop: Set by loop nodes; the engine drives the iterations.
        halt: End this branch without failure (a merge still waiting).
        extras: Executor-specific metadata, not passed downstream.
    """

    output: Any = None
    port: str | None = None
    loop: LoopPlan | None = None
    halt: bool = False
    extras: dict[str, Any] = field(default_factory=dict)


NodeExecutor = Callable[[NodeSpec, Any, "NodeContext"], Awaitable[ExecutorOutput]]


@runtime_checkable
class KeyValueStore(Protocol):
    """Persistent key/value storage used by ``localStorage`` nodes."""

    async def get(self, key: str) -> Any:
        ...

    async def set(self, key: str, value: Any) -> None:
        ...

    async def delete(self, key: str) -> bool:
        ...


class InMemoryKeyValueStore:
    """Process-local key/value store. Values are kept as JSON text."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    async def get(self, key: str) -> Any:
        raw = self._data.get(key)
        return None if raw is None else json.loads(raw)

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value, default=str)

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def __contains__(self, key: object) -> bool:
        return key in self._data


@dataclass
class Collaborators:
    """External services the executors call.

    Everything the engine does not own is injected here: the model
    provider, HTTP, the code sandbox, workflow lookup for sub-workflows,
    the approval gate, key/value storage, and handlers for node types
    whose work happens outside the engine (files, speech, images, the
    Python runtime and vector memory).

    Example:
        >>> collaborators = Collaborators(
        ...     llm=my_provider,
        ...     handlers={NodeType.TEXT_TO_SPEECH: FunctionToolHandler(speak)},
        ... )
    """

    llm: BaseLLMProvider | None = None
    http: HttpRequestTool = field(default_factory=HttpRequestTool)
    sandbox: SandboxedCodeExecutor = field(default_factory=SandboxedCodeExecutor)
    workflows: WorkflowStore | None = None
    approvals: ApprovalGate = field(default_factory=ApprovalGate)
    storage: KeyValueStore = field(default_factory=InMemoryKeyValueStore)
    handlers: dict[NodeType, ToolHandler] = field(default_factory=dict)
    tools: dict[str, ToolHandler] = field(default_factory=dict)

    def require_llm(self) -> BaseLLMProvider:
        if self.llm is None:
            raise ConfigError("No LLM provider configured for AI nodes")
        return self.llm

    def require_workflows(self) -> WorkflowStore:
        if self.workflows is None:
            raise ConfigError("No workflow store configured for sub-workflows")
        return self.workflows

    def handler_for(self, node_type: NodeType) -> ToolHandler:
        handler = self.handlers.get(node_type)
        if handler is None:
            raise ConfigError(f"No handler configured for node type '{node_type.value}'")
        return handler

    def tool_named(self, name: str) -> ToolHandler:
        handler = self.tools.get(name)
        if handler is None:
            raise ConfigError(f"No tool registered under '{name}'")
        return handler


async def run_handler(handler: ToolHandler, node: NodeSpec, input: Any, context: NodeContext) -> Any:
    """Run an external handler, turning an error result into a retryable failure."""
    result = await handler.execute(node, input, context)
    if not result.success:
        raise ExternalCallError(
            f"{node.label} failed: {result.error or 'unknown error'}",
            source=node.type.value,
        )
    return result.output


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def get_path(value: Any, path: str | None) -> Any:
    """Read a dotted path (``user.address.city``) from nested dicts and lists."""
    if not path:
        return value
    current = value
    for key in str(path).split("."):
        if isinstance(current, dict):
            current = current.get(key)
        elif isinstance(current, list) and key.lstrip("-").isdigit():
            index = int(key)
            current = current[index] if -len(current) <= index < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current


def merged_overrides(data: dict[str, Any], input: Any, keys: tuple[str, ...]) -> dict[str, Any]:
    """Node config with selected keys overridden by the incoming payload."""
    merged = dict(data)
    if isinstance(input, dict):
        for key in keys:
            if input.get(key) is not None:
                merged[key] = input[key]
    return merged


def input_text(input: Any) -> str:
    """Best-effort text view of an arbitrary payload."""
    if isinstance(input, str):
        return input
    if isinstance(input, dict):
        for key in ("text", "content", "response", "output", "message"):
            if isinstance(input.get(key), str):
                return input[key]
    if input is None:
        return ""
    return json.dumps(input, default=str)
