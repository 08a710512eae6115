"""FlowChord core components."""

from flowchord.core.types import LLMResponse, Message, MessageRole, Usage
from flowchord.core.config import EngineSettings, RunOptions, get_settings
from flowchord.core.graph import EdgeSpec, NodeCategory, NodeSpec, NodeType, WorkflowGraph
from flowchord.core.ports import output_ports
from flowchord.core.context import (
    Artifact,
    ExecutionContext,
    LogEntry,
    LogType,
    NodeContext,
    NodeResult,
)
from flowchord.core.approvals import ApprovalDecision, ApprovalGate
from flowchord.core.workflows import InMemoryWorkflowStore, WorkflowStore

__all__ = [
    "LLMResponse",
    "Message",
    "MessageRole",
    "Usage",
    "EngineSettings",
    "RunOptions",
    "get_settings",
    "EdgeSpec",
    "NodeCategory",
    "NodeSpec",
    "NodeType",
    "WorkflowGraph",
    "output_ports",
    "Artifact",
    "ExecutionContext",
    "LogEntry",
    "LogType",
    "NodeContext",
    "NodeResult",
    "ApprovalDecision",
    "ApprovalGate",
    "InMemoryWorkflowStore",
    "WorkflowStore",
]
