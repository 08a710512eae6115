"""Pytest configuration and fixtures for FlowChord tests."""

from __future__ import annotations

from typing import Any, Callable

import pytest

from flowchord.core.config import EngineSettings
from flowchord.core.context import ExecutionContext, LogEntry, NodeContext, NodeResult
from flowchord.core.graph import NodeSpec, WorkflowGraph
from flowchord.core.types import LLMResponse, Message, Usage
from flowchord.core.workflows import InMemoryWorkflowStore
from flowchord.core.engine import ExecutionEngine
from flowchord.llm.base import BaseLLMProvider, ModelCapabilities
from flowchord.logging import FlowChordLogger
from flowchord.nodes.base import Collaborators
from flowchord.nodes.control import ControlFlowRunner
from flowchord.tools.base import ToolResult


class ScriptedLLMProvider(BaseLLMProvider):
    """Mock LLM provider that replays a list of responses.

    Once the script runs out the last response is repeated.
    """

    def __init__(
        self,
        responses: list[str] | None = None,
        model: str = "mock-model",
        supports_tools: bool = True,
        ready: bool = True,
        error: Exception | None = None,
    ) -> None:
        self._responses = responses or ["Mock response"]
        self._model = model
        self._supports_tools = supports_tools
        self._ready = ready
        self._error = error
        self.call_count = 0
        self.received_messages: list[list[Message]] = []
        self.received_kwargs: list[dict[str, Any]] = []

    async def complete(
        self,
        messages: list[Message],
        *,
        temperature: float = 0.7,
        max_tokens: int = 2000,
        **kwargs: Any,
    ) -> LLMResponse:
        """Return the next scripted response."""
        self.received_messages.append(list(messages))
        self.received_kwargs.append({"temperature": temperature, "max_tokens": max_tokens})
        index = self.call_count
        self.call_count += 1
        if self._error is not None:
            raise self._error
        content = self._responses[min(index, len(self._responses) - 1)]
        return LLMResponse(
            content=content,
            model=self._model,
            usage=Usage(prompt_tokens=10, completion_tokens=5),
        )

    @property
    def model(self) -> str:
        return self._model

    @property
    def provider_name(self) -> str:
        return "mock"

    @property
    def is_ready(self) -> bool:
        return self._ready

    @property
    def capabilities(self) -> ModelCapabilities:
        return ModelCapabilities(supports_tools=self._supports_tools)


class RecordingToolHandler:
    """ToolHandler that records every call and returns a canned result."""

    def __init__(self, output: Any = None, error: str | None = None) -> None:
        self._output = output
        self._error = error
        self.calls: list[tuple[str, Any]] = []

    async def execute(self, node: NodeSpec, input: Any, context: NodeContext) -> ToolResult:
        self.calls.append((node.id, input))
        if self._error is not None:
            return ToolResult.error_result(self._error)
        if self._output is None:
            return ToolResult.success_result({"echo": input})
        return ToolResult.success_result(self._output)


class RecordingHost:
    """Minimal run host for executor-level tests."""

    def __init__(self) -> None:
        self.logs: list[LogEntry] = []
        self.invocations: list[tuple[str, Any]] = []
        self.results: dict[str, list[NodeResult]] = {}
        self.subworkflows: list[tuple[WorkflowGraph, Any, bool]] = []
        self.subworkflow_output: Any = None

    def log(self, execution: ExecutionContext, entry: LogEntry) -> None:
        if execution.append_log(entry):
            self.logs.append(entry)

    async def invoke_node(self, node_id: str, input: Any, *, caller: NodeContext) -> NodeResult:
        self.invocations.append((node_id, input))
        queued = self.results.get(node_id)
        if queued:
            return queued.pop(0)
        return NodeResult(success=True, output={"node": node_id, "input": input})

    async def run_subworkflow(
        self,
        graph: WorkflowGraph,
        input: Any,
        *,
        caller: NodeContext,
        wait: bool = True,
    ) -> Any:
        self.subworkflows.append((graph, input, wait))
        return self.subworkflow_output if wait else None


# Graph builders

def node(node_id: str, node_type: str, **data: Any) -> dict[str, Any]:
    """Node dict in the editor's export shape."""
    return {"id": node_id, "type": node_type, "data": data}


def edge(
    source: str,
    target: str,
    source_handle: str | None = None,
    target_handle: str | None = None,
    edge_id: str | None = None,
) -> dict[str, Any]:
    """Edge dict; the id defaults to ``source-port-target``."""
    return {
        "id": edge_id or f"{source}-{source_handle or 'out'}-{target}",
        "source": source,
        "target": target,
        "sourceHandle": source_handle,
        "targetHandle": target_handle,
    }


def build_graph(
    nodes: list[dict[str, Any]],
    edges: list[dict[str, Any]] | None = None,
    **kwargs: Any,
) -> WorkflowGraph:
    return WorkflowGraph.from_lists(nodes=nodes, edges=edges or [], **kwargs)


def make_context(
    target: dict[str, Any] | NodeSpec,
    *,
    graph: WorkflowGraph | None = None,
    collaborators: Collaborators | None = None,
    settings: EngineSettings | None = None,
    host: RecordingHost | None = None,
    execution: ExecutionContext | None = None,
    control: ControlFlowRunner | None = None,
    incoming_edge: Any = None,
) -> NodeContext:
    """NodeContext for calling one executor directly."""
    spec = target if isinstance(target, NodeSpec) else NodeSpec.model_validate(target)
    if graph is None:
        graph = WorkflowGraph.from_lists(nodes=[spec])
    return NodeContext(
        spec,
        execution or ExecutionContext(),
        graph=graph,
        collaborators=collaborators or Collaborators(),
        settings=settings or EngineSettings(),
        host=host or RecordingHost(),
        control=control or ControlFlowRunner(),
        incoming_edge=incoming_edge,
    )


# Fixtures

@pytest.fixture
def settings() -> EngineSettings:
    """Settings with short delays so retries and timeouts stay fast."""
    return EngineSettings(
        default_retry_delay_ms=1,
        max_retry_delay_ms=10,
        default_node_timeout=5.0,
        ai_node_timeout=5.0,
        sandbox_timeout=2.0,
    )


@pytest.fixture
def quiet_logger() -> FlowChordLogger:
    return FlowChordLogger(enabled=False)


@pytest.fixture
def mock_provider() -> ScriptedLLMProvider:
    """Create a mock LLM provider."""
    return ScriptedLLMProvider()


@pytest.fixture
def workflow_store() -> InMemoryWorkflowStore:
    return InMemoryWorkflowStore()


@pytest.fixture
def engine_factory(
    settings: EngineSettings, quiet_logger: FlowChordLogger
) -> Callable[..., ExecutionEngine]:
    """Factory fixture for engines with test settings and a silent logger."""

    def _factory(
        collaborators: Collaborators | None = None,
        **overrides: Any,
    ) -> ExecutionEngine:
        engine_settings = settings.model_copy(update=overrides) if overrides else settings
        return ExecutionEngine(collaborators, settings=engine_settings, logger=quiet_logger)

    return _factory


@pytest.fixture
def engine(engine_factory: Callable[..., ExecutionEngine]) -> ExecutionEngine:
    return engine_factory()
