"""Workflow graph model.

A workflow is a set of typed nodes joined by edges between named ports.
The graph validates its structural invariants on construction, so any
``WorkflowGraph`` the engine receives is well formed.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from flowchord.errors.exceptions import UnknownNodeTypeError, WorkflowValidationError


class NodeCategory(str, Enum):
    """Broad family a node type belongs to."""

    TRIGGER = "trigger"
    ACTION = "action"
    LOGIC = "logic"
    AI = "ai"
    RESOURCE = "resource"


class NodeType(str, Enum):
    """Every node type the engine can dispatch."""

    # Triggers
    MANUAL_TRIGGER = "manualTrigger"
    SCHEDULE_TRIGGER = "scheduleTrigger"
    WEBHOOK_TRIGGER = "webhookTrigger"
    ERROR_TRIGGER = "errorTrigger"

    # Actions
    CODE_EXECUTOR = "codeExecutor"
    HTTP_REQUEST = "httpRequest"
    SET_VARIABLE = "setVariable"
    DELAY = "delay"
    OUTPUT = "output"
    TOOL_CALL = "toolCall"
    FILE_SYSTEM = "fileSystem"
    LOCAL_STORAGE = "localStorage"
    VECTOR_MEMORY = "vectorMemory"
    TEXT_TO_SPEECH = "textToSpeech"
    IMAGE_GENERATION = "imageGeneration"
    PYTHON_EXECUTOR = "pythonExecutor"

    # Logic
    IF_ELSE = "ifElse"
    SWITCH = "switchNode"
    LOOP = "loop"
    MERGE = "merge"
    SUB_WORKFLOW = "subWorkflow"
    WAIT_FOR_APPROVAL = "waitForApproval"

    # AI
    AI_AGENT = "aiAgent"
    SEMANTIC_ROUTER = "semanticRouter"
    EVALUATOR = "evaluator"
    CRITIC = "critic"

    # Resources
    CHAT_MODEL = "chatModel"

    @property
    def category(self) -> NodeCategory:
        """Category used for trigger discovery and timeout selection."""
        return _CATEGORIES[self]

    @property
    def is_trigger(self) -> bool:
        return self.category == NodeCategory.TRIGGER

    @property
    def is_slow(self) -> bool:
        """Node types that get the long AI timeout window."""
        return self in _SLOW_TYPES

    @classmethod
    def parse(cls, tag: str | NodeType) -> NodeType:
        """Resolve a type tag, raising UnknownNodeTypeError for unknown tags."""
        if isinstance(tag, NodeType):
            return tag
        try:
            return cls(tag)
        except ValueError:
            raise UnknownNodeTypeError(str(tag)) from None


_CATEGORIES: dict[NodeType, NodeCategory] = {
    NodeType.MANUAL_TRIGGER: NodeCategory.TRIGGER,
    NodeType.SCHEDULE_TRIGGER: NodeCategory.TRIGGER,
    NodeType.WEBHOOK_TRIGGER: NodeCategory.TRIGGER,
    NodeType.ERROR_TRIGGER: NodeCategory.TRIGGER,
    NodeType.CODE_EXECUTOR: NodeCategory.ACTION,
    NodeType.HTTP_REQUEST: NodeCategory.ACTION,
    NodeType.SET_VARIABLE: NodeCategory.ACTION,
    NodeType.DELAY: NodeCategory.ACTION,
    NodeType.OUTPUT: NodeCategory.ACTION,
    NodeType.TOOL_CALL: NodeCategory.ACTION,
    NodeType.FILE_SYSTEM: NodeCategory.ACTION,
    NodeType.LOCAL_STORAGE: NodeCategory.ACTION,
    NodeType.VECTOR_MEMORY: NodeCategory.ACTION,
    NodeType.TEXT_TO_SPEECH: NodeCategory.ACTION,
    NodeType.IMAGE_GENERATION: NodeCategory.ACTION,
    NodeType.PYTHON_EXECUTOR: NodeCategory.ACTION,
    NodeType.IF_ELSE: NodeCategory.LOGIC,
    NodeType.SWITCH: NodeCategory.LOGIC,
    NodeType.LOOP: NodeCategory.LOGIC,
    NodeType.MERGE: NodeCategory.LOGIC,
    NodeType.SUB_WORKFLOW: NodeCategory.LOGIC,
    NodeType.WAIT_FOR_APPROVAL: NodeCategory.LOGIC,
    NodeType.AI_AGENT: NodeCategory.AI,
    NodeType.SEMANTIC_ROUTER: NodeCategory.AI,
    NodeType.EVALUATOR: NodeCategory.AI,
    NodeType.CRITIC: NodeCategory.AI,
    NodeType.CHAT_MODEL: NodeCategory.RESOURCE,
}

_SLOW_TYPES = frozenset({
    NodeType.AI_AGENT,
    NodeType.CRITIC,
    NodeType.TEXT_TO_SPEECH,
    NodeType.IMAGE_GENERATION,
})

# Target handles that carry configuration into an AI agent, never data.
MODEL_SLOT = "model-slot"
MEMORY_SLOT = "memory-slot"
TOOL_SLOT = "tool-slot"
RESOURCE_SLOTS = frozenset({MODEL_SLOT, MEMORY_SLOT, TOOL_SLOT})


class NodeSpec(BaseModel):
    """A typed node in the workflow graph."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    type: NodeType
    data: dict[str, Any] = Field(default_factory=dict)

    @field_validator("type", mode="before")
    @classmethod
    def _parse_type(cls, value: Any) -> NodeType:
        return NodeType.parse(value)

    @property
    def label(self) -> str:
        """Display name, falling back to the type tag."""
        return self.data.get("label") or self.type.value


class EdgeSpec(BaseModel):
    """A connection from one node's output port to another node's input port."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    source: str
    target: str
    source_handle: str | None = Field(default=None, alias="sourceHandle")
    target_handle: str | None = Field(default=None, alias="targetHandle")

    @property
    def is_resource(self) -> bool:
        """Resource edges configure an AI agent and are never traversed."""
        return self.target_handle in RESOURCE_SLOTS

    @property
    def key(self) -> tuple[str, str | None, str, str | None]:
        return (self.source, self.source_handle, self.target, self.target_handle)


class WorkflowGraph(BaseModel):
    """Nodes keyed by id plus the edges between them.

    Invariants (checked on construction):
        - every edge's source and target exist
        - no edge connects a node to itself
        - at most one edge per (source, sourceHandle, target, targetHandle)

    Example:
        >>> graph = WorkflowGraph.from_lists(
        ...     nodes=[{"id": "t", "type": "manualTrigger"}],
        ...     edges=[],
        ... )
    """

    id: str | None = None
    name: str | None = None
    nodes: dict[str, NodeSpec] = Field(default_factory=dict)
    edges: list[EdgeSpec] = Field(default_factory=list)

    @field_validator("nodes", mode="before")
    @classmethod
    def _index_nodes(cls, value: Any) -> Any:
        if isinstance(value, list):
            indexed: dict[str, Any] = {}
            for node in value:
                node_id = node.id if isinstance(node, NodeSpec) else node.get("id")
                if node_id in indexed:
                    raise WorkflowValidationError(f"Duplicate node id '{node_id}'")
                indexed[node_id] = node
            return indexed
        return value

    @model_validator(mode="after")
    def _check_invariants(self) -> WorkflowGraph:
        errors: list[str] = []
        seen: set[tuple[str, str | None, str, str | None]] = set()

        for key, node in self.nodes.items():
            if key != node.id:
                errors.append(f"Node key '{key}' does not match node id '{node.id}'")

        for edge in self.edges:
            if edge.source not in self.nodes:
                errors.append(f"Edge '{edge.id}' references unknown source '{edge.source}'")
            if edge.target not in self.nodes:
                errors.append(f"Edge '{edge.id}' references unknown target '{edge.target}'")
            if edge.source == edge.target:
                errors.append(f"Edge '{edge.id}' connects '{edge.source}' to itself")
            if edge.key in seen:
                errors.append(f"Edge '{edge.id}' duplicates an existing connection")
            seen.add(edge.key)

        if errors:
            raise WorkflowValidationError(
                f"Invalid workflow: {errors[0]}", errors=errors
            )
        return self

    @classmethod
    def from_lists(
        cls,
        nodes: list[dict[str, Any] | NodeSpec],
        edges: list[dict[str, Any] | EdgeSpec] | None = None,
        **kwargs: Any,
    ) -> WorkflowGraph:
        """Build a graph from node and edge lists (the editor's export shape)."""
        return cls(nodes=nodes, edges=edges or [], **kwargs)

    def get_node(self, node_id: str) -> NodeSpec | None:
        return self.nodes.get(node_id)

    def outgoing(self, node_id: str, port: str | None = None) -> list[EdgeSpec]:
        """Data edges leaving a node, optionally only those on one port."""
        return [
            e for e in self.edges
            if e.source == node_id
            and not e.is_resource
            and (port is None or e.source_handle == port)
        ]

    def incoming(self, node_id: str) -> list[EdgeSpec]:
        """Data edges entering a node."""
        return [e for e in self.edges if e.target == node_id and not e.is_resource]

    def resource_edges(self, node_id: str) -> list[EdgeSpec]:
        """Resource-slot edges feeding an AI agent."""
        return [e for e in self.edges if e.target == node_id and e.is_resource]

    def trigger_nodes(self) -> list[NodeSpec]:
        """Run roots: trigger nodes without incoming data edges.

        Error triggers are excluded; they start only when a node fails.
        """
        return [
            node for node in self.nodes.values()
            if node.type.is_trigger
            and node.type != NodeType.ERROR_TRIGGER
            and not self.incoming(node.id)
        ]

    def error_trigger_nodes(self) -> list[NodeSpec]:
        return [n for n in self.nodes.values() if n.type == NodeType.ERROR_TRIGGER]
