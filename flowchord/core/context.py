"""Run-scoped state.

:class:`ExecutionContext` is created once per run by the engine and only
ever grows: results are recorded, logs and artifacts appended. Executors
never see it directly. They receive a :class:`NodeContext`, a per-dispatch
handle with read-only views and append-only operations.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Mapping, Protocol

from pydantic import BaseModel, ConfigDict, Field

from flowchord.core.graph import EdgeSpec, NodeSpec, WorkflowGraph
from flowchord.expressions import resolve_expressions_in_object

if TYPE_CHECKING:
    from flowchord.core.config import EngineSettings
    from flowchord.nodes.base import Collaborators
    from flowchord.nodes.control import ControlFlowRunner
    from flowchord.resilience.timeout import Deadline


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LogType(str, Enum):
    """Kind of run log entry."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    NODE = "node"
    DEBUG = "debug"


class LogEntry(BaseModel):
    """One line of the run log."""

    model_config = ConfigDict(frozen=True)

    type: LogType
    message: str
    node_id: str | None = None
    node_name: str | None = None
    data: dict[str, Any] | None = None
    timestamp: datetime = Field(default_factory=_utcnow)


class Artifact(BaseModel):
    """A file-like output produced by a node."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    filename: str
    mime_type: str = "text/plain"
    data: Any = None
    node_id: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)


class NodeResult(BaseModel):
    """Outcome of one node dispatch. Immutable once recorded."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    success: bool
    output: Any = None
    error: str | None = None
    execution_time_ms: int = 0
    attempts: int = 1
    port: str | None = None

    @classmethod
    def failure(cls, error: str, *, execution_time_ms: int = 0, attempts: int = 1) -> NodeResult:
        return cls(
            success=False,
            error=error,
            execution_time_ms=execution_time_ms,
            attempts=attempts,
        )


@dataclass
class ExecutionContext:
    """Everything recorded about one run.

    Entries are appended, never rewritten. ``node_results`` keeps the most
    recent result per node; ``execution_path`` keeps every dispatch in order.
    """

    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    workflow_id: str | None = None
    current_node_id: str | None = None
    execution_path: list[str] = field(default_factory=list)
    node_results: dict[str, NodeResult] = field(default_factory=dict)
    logs: list[LogEntry] = field(default_factory=list)
    artifacts: list[Artifact] = field(default_factory=list)
    variables: dict[str, Any] = field(default_factory=dict)
    is_running: bool = False
    is_paused: bool = False
    is_debug_mode: bool = False
    depth: int = 0
    max_log_entries: int = 1000
    dropped_logs: int = 0
    started_at: datetime = field(default_factory=_utcnow)

    def record_result(self, node_id: str, result: NodeResult) -> None:
        self.node_results[node_id] = result
        self.execution_path.append(node_id)

    def settle_result(self, node_id: str, result: NodeResult) -> None:
        """Replace a node's latest result without counting a new dispatch.

        Loop nodes settle on their ``done`` payload once the body finishes.
        """
        self.node_results[node_id] = result

    def append_log(self, entry: LogEntry) -> bool:
        """Append a log entry. Returns False once the log is full."""
        if len(self.logs) >= self.max_log_entries:
            self.dropped_logs += 1
            return False
        self.logs.append(entry)
        return True

    def append_artifact(self, artifact: Artifact) -> None:
        self.artifacts.append(artifact)


class RunHost(Protocol):
    """What the engine offers to executors beyond the run record."""

    def log(self, execution: ExecutionContext, entry: LogEntry) -> None:
        ...

    async def invoke_node(self, node_id: str, input: Any, *, caller: NodeContext) -> NodeResult:
        ...

    async def run_subworkflow(
        self,
        graph: WorkflowGraph,
        input: Any,
        *,
        caller: NodeContext,
        wait: bool = True,
    ) -> Any:
        ...


def output_preview(value: Any, limit: int = 100) -> str:
    """Short text rendering of a node output for logs."""
    if isinstance(value, str):
        text = value
    elif isinstance(value, (bytes, bytearray)):
        return f"[binary {len(value)} bytes]"
    else:
        try:
            text = json.dumps(value, default=str)
        except (TypeError, ValueError):
            text = str(value)
    return text[:limit] + ("..." if len(text) > limit else "")


class NodeContext:
    """Per-dispatch handle passed to node executors.

    Example:
        >>> async def execute(node, input, context):
        ...     context.add_log(LogType.INFO, "Fetching", {"url": url})
        ...     context.heartbeat()
    """

    def __init__(
        self,
        node: NodeSpec,
        execution: ExecutionContext,
        *,
        graph: WorkflowGraph,
        collaborators: Collaborators,
        settings: EngineSettings,
        host: RunHost,
        control: ControlFlowRunner,
        incoming_edge: EdgeSpec | None = None,
        deadline: Deadline | None = None,
    ) -> None:
        self.node = node
        self.graph = graph
        self.collaborators = collaborators
        self.settings = settings
        self.control = control
        self.incoming_edge = incoming_edge
        self._execution = execution
        self._host = host
        self._deadline = deadline

    @property
    def node_id(self) -> str:
        return self.node.id

    @property
    def run_id(self) -> str:
        return self._execution.run_id

    @property
    def depth(self) -> int:
        return self._execution.depth

    @property
    def is_debug_mode(self) -> bool:
        return self._execution.is_debug_mode

    @property
    def variables(self) -> Mapping[str, Any]:
        return MappingProxyType(self._execution.variables)

    @property
    def node_results(self) -> Mapping[str, NodeResult]:
        return MappingProxyType(self._execution.node_results)

    @property
    def execution_path(self) -> tuple[str, ...]:
        return tuple(self._execution.execution_path)

    def add_log(self, type: LogType | str, message: str, data: dict[str, Any] | None = None) -> None:
        """Append a log entry attributed to this node."""
        entry = LogEntry(
            type=LogType(type),
            message=message,
            node_id=self.node.id,
            node_name=self.node.label,
            data=data,
        )
        self._host.log(self._execution, entry)

    def add_artifact(self, filename: str, data: Any, mime_type: str = "text/plain") -> Artifact:
        artifact = Artifact(filename=filename, data=data, mime_type=mime_type, node_id=self.node.id)
        self._execution.append_artifact(artifact)
        return artifact

    def set_variable(self, name: str, value: Any) -> None:
        """Write a workflow variable. Visible to later nodes as ``$vars.name``."""
        self._execution.variables[name] = value

    def heartbeat(self) -> None:
        """Reset this node's timeout window while it is still making progress."""
        if self._deadline is not None:
            self._deadline.reset()

    def expression_scope(self, input: Any, **extra: Any) -> dict[str, Any]:
        """Build the context dict templates are resolved against."""
        scope: dict[str, Any] = {
            "input": input,
            "variables": dict(self._execution.variables),
            "nodeData": {
                node_id: result.output for node_id, result in self._execution.node_results.items()
            },
            "workflowData": {
                "id": self._execution.workflow_id or self.graph.id,
                "name": self.graph.name,
                "runId": self._execution.run_id,
                "depth": self._execution.depth,
            },
        }
        if isinstance(input, dict):
            if "index" in input:
                scope["index"] = input["index"]
            if "item" in input:
                scope["item"] = input["item"]
        scope.update(extra)
        return scope

    def resolve(self, value: Any, input: Any, **extra: Any) -> Any:
        """Resolve ``{{ }}`` templates in a config value against ``input``."""
        return resolve_expressions_in_object(value, self.expression_scope(input, **extra))

    def resources(self) -> dict[str, list[NodeSpec]]:
        """Nodes plugged into this node's resource slots, keyed by slot."""
        slots: dict[str, list[NodeSpec]] = {}
        for edge in self.graph.resource_edges(self.node.id):
            source = self.graph.get_node(edge.source)
            if source is not None and edge.target_handle:
                slots.setdefault(edge.target_handle, []).append(source)
        return slots

    async def invoke_node(self, node_id: str, input: Any) -> NodeResult:
        """Dispatch another node as a tool and return its result."""
        return await self._host.invoke_node(node_id, input, caller=self)

    async def run_subworkflow(self, graph: WorkflowGraph, input: Any, *, wait: bool = True) -> Any:
        return await self._host.run_subworkflow(graph, input, caller=self, wait=wait)
