"""Tool contracts shared by node executors and the agent loop."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from flowchord.core.graph import NodeSpec, NodeType

if TYPE_CHECKING:
    from flowchord.core.context import NodeContext


class ToolParameter(BaseModel):
    """Tool parameter definition."""

    name: str
    type: str  # "string", "integer", "number", "boolean", "array", "object"
    description: str = ""
    required: bool = True


class ToolResult(BaseModel):
    """Result of running an external tool for a node."""

    success: bool
    output: Any = None
    error: str | None = None

    @classmethod
    def success_result(cls, output: Any) -> ToolResult:
        """Create a successful result."""
        return cls(success=True, output=output)

    @classmethod
    def error_result(cls, error: str) -> ToolResult:
        """Create an error result."""
        return cls(success=False, error=error)


@runtime_checkable
class ToolHandler(Protocol):
    """External collaborator that performs the work of one node type.

    File access, speech, image generation, Python runtimes and vector search
    live outside the engine and are plugged in through this contract.
    """

    async def execute(self, node: NodeSpec, input: Any, context: "NodeContext") -> ToolResult:
        ...


class FunctionToolHandler:
    """Adapt a plain (sync or async) function to :class:`ToolHandler`.

    Example:
        >>> async def speak(node, input, context):
        ...     return {"type": "audio", "text": input}
        >>> handler = FunctionToolHandler(speak)
    """

    def __init__(self, func: Callable[..., Any] | Callable[..., Awaitable[Any]]) -> None:
        self._func = func

    @property
    def is_async(self) -> bool:
        return asyncio.iscoroutinefunction(self._func)

    async def execute(self, node: NodeSpec, input: Any, context: "NodeContext") -> ToolResult:
        try:
            if self.is_async:
                result = await self._func(node, input, context)
            else:
                result = self._func(node, input, context)
        except Exception as e:
            return ToolResult.error_result(str(e))
        if isinstance(result, ToolResult):
            return result
        return ToolResult.success_result(result)


TOOL_DESCRIPTIONS: dict[NodeType, str] = {
    NodeType.CODE_EXECUTOR: "Execute Python code. Pass data to process and receive the result.",
    NodeType.PYTHON_EXECUTOR: "Run a Python script and return its result.",
    NodeType.HTTP_REQUEST: "Make HTTP requests to APIs. Returns the response data.",
    NodeType.SET_VARIABLE: "Store a value in workflow memory for later use.",
    NodeType.IF_ELSE: "Evaluate a condition and return the result.",
    NodeType.LOOP: "Iterate through an array of items.",
    NodeType.SWITCH: "Route based on a value matching specific cases.",
    NodeType.DELAY: "Wait for a specified duration.",
    NodeType.MERGE: "Combine multiple inputs into one output.",
    NodeType.TEXT_TO_SPEECH: "Convert text to speech audio.",
    NodeType.IMAGE_GENERATION: "Generate an image from a text prompt.",
    NodeType.FILE_SYSTEM: "Read or write a local file.",
    NodeType.VECTOR_MEMORY: "Store or search long-term memory.",
    NodeType.AI_AGENT: "Ask another AI agent.",
    NodeType.SEMANTIC_ROUTER: "Classify text into one of several routes.",
    NodeType.EVALUATOR: "Validate data against rules.",
    NodeType.OUTPUT: "Emit a workflow output artifact.",
}

TOOL_CAPABLE_TYPES = frozenset(TOOL_DESCRIPTIONS)


class ToolDefinition(BaseModel):
    """A graph node an AI agent may invoke as a tool."""

    model_config = ConfigDict(frozen=True)

    node_id: str
    name: str
    type: str
    description: str = ""
    input_schema: dict[str, Any] = Field(default_factory=lambda: {"input": "any"})

    @classmethod
    def from_node(cls, node: NodeSpec) -> ToolDefinition:
        """Describe a node as a tool using its label, type and description."""
        description = node.data.get("toolDescription") or TOOL_DESCRIPTIONS.get(
            node.type, f"Execute {node.type.value} node."
        )
        schema = node.data.get("inputSchema") or {"input": "any"}
        return cls(
            node_id=node.id,
            name=node.label,
            type=node.type.value,
            description=description,
            input_schema=schema,
        )

    def _parameters(self) -> list[ToolParameter]:
        params = []
        for name, spec in self.input_schema.items():
            json_type = spec if spec in ("string", "integer", "number", "boolean", "array", "object") else "string"
            params.append(ToolParameter(name=name, type=json_type, required=False))
        return params

    def _properties(self) -> dict[str, Any]:
        return {
            p.name: {"type": p.type} | ({"description": p.description} if p.description else {})
            for p in self._parameters()
        }

    def to_openai_schema(self) -> dict[str, Any]:
        """Convert to OpenAI function calling schema."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": self._properties(),
                    "required": [p.name for p in self._parameters() if p.required],
                },
            },
        }

    def to_anthropic_schema(self) -> dict[str, Any]:
        """Convert to Anthropic tool schema."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": {
                "type": "object",
                "properties": self._properties(),
                "required": [p.name for p in self._parameters() if p.required],
            },
        }
