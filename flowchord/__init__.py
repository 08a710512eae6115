"""FlowChord - workflow execution engine for node graphs.

FlowChord runs graphs of typed nodes (triggers, actions, branching and
looping logic, AI agents and their tools) with per-node retries and
timeouts, safe template expressions and sandboxed user code.

Example:
    >>> from flowchord import ExecutionEngine, WorkflowGraph
    >>> graph = WorkflowGraph.from_lists(
    ...     nodes=[
    ...         {"id": "start", "type": "manualTrigger"},
    ...         {"id": "out", "type": "output"},
    ...     ],
    ...     edges=[{"id": "e1", "source": "start", "target": "out"}],
    ... )
    >>> result = await ExecutionEngine().execute(graph, {"text": "hi"})
    >>> result.state
    <EngineState.COMPLETED: 'completed'>
"""

__version__ = "0.1.0"

# Core exports
from flowchord.core.config import EngineSettings, RunOptions, get_settings
from flowchord.core.context import (
    Artifact,
    ExecutionContext,
    LogEntry,
    LogType,
    NodeContext,
    NodeResult,
)
from flowchord.core.graph import EdgeSpec, NodeCategory, NodeSpec, NodeType, WorkflowGraph
from flowchord.core.ports import output_ports
from flowchord.core.types import LLMResponse, Message, MessageRole, Usage
from flowchord.core.approvals import ApprovalGate
from flowchord.core.workflows import InMemoryWorkflowStore, WorkflowStore

# Error exports
from flowchord.errors.exceptions import (
    BoundExceededError,
    ConfigError,
    ExpressionError,
    ExternalCallError,
    FlowChordError,
    InvalidConfigError,
    LoopBoundExceededError,
    NoTriggerNodeError,
    RecursionDepthExceededError,
    SandboxError,
    TimeoutError,
    UnknownNodeTypeError,
    UnsafeExpressionError,
    WorkflowAlreadyRunningError,
    WorkflowError,
)

# Expressions and sandbox
from flowchord.expressions import evaluate, resolve_expressions, resolve_expressions_in_object
from flowchord.sandbox import SandboxedCodeExecutor

# LLM and tools
from flowchord.llm.base import BaseLLMProvider, ModelCapabilities
from flowchord.tools.base import FunctionToolHandler, ToolDefinition, ToolHandler, ToolResult
from flowchord.tools.http import HttpRequestTool

# Agents
from flowchord.agents.react import ReActOptions, ReActResult, ToolCallingLoop
from flowchord.agents.critic import Critic

# Engine
from flowchord.nodes.base import Collaborators
from flowchord.nodes.registry import NodeExecutorRegistry
from flowchord.core.engine import EngineState, ExecutionEngine, RunResult

__all__ = [
    # Version
    "__version__",
    # Core
    "EngineSettings",
    "RunOptions",
    "get_settings",
    "Artifact",
    "ExecutionContext",
    "LogEntry",
    "LogType",
    "NodeContext",
    "NodeResult",
    "EdgeSpec",
    "NodeCategory",
    "NodeSpec",
    "NodeType",
    "WorkflowGraph",
    "output_ports",
    "LLMResponse",
    "Message",
    "MessageRole",
    "Usage",
    "ApprovalGate",
    "InMemoryWorkflowStore",
    "WorkflowStore",
    # Errors
    "BoundExceededError",
    "ConfigError",
    "ExpressionError",
    "ExternalCallError",
    "FlowChordError",
    "InvalidConfigError",
    "LoopBoundExceededError",
    "NoTriggerNodeError",
    "RecursionDepthExceededError",
    "SandboxError",
    "TimeoutError",
    "UnknownNodeTypeError",
    "UnsafeExpressionError",
    "WorkflowAlreadyRunningError",
    "WorkflowError",
    # Expressions and sandbox
    "evaluate",
    "resolve_expressions",
    "resolve_expressions_in_object",
    "SandboxedCodeExecutor",
    # LLM and tools
    "BaseLLMProvider",
    "ModelCapabilities",
    "FunctionToolHandler",
    "ToolDefinition",
    "ToolHandler",
    "ToolResult",
    "HttpRequestTool",
    # Agents
    "ReActOptions",
    "ReActResult",
    "ToolCallingLoop",
    "Critic",
    # Engine
    "Collaborators",
    "NodeExecutorRegistry",
    "EngineState",
    "ExecutionEngine",
    "RunResult",
]
