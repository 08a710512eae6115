"""Tool contracts and built-in collaborators."""

from flowchord.tools.base import (
    FunctionToolHandler,
    ToolDefinition,
    ToolHandler,
    ToolParameter,
    ToolResult,
)
from flowchord.tools.http import HttpRequestTool

__all__ = [
    "FunctionToolHandler",
    "HttpRequestTool",
    "ToolDefinition",
    "ToolHandler",
    "ToolParameter",
    "ToolResult",
]
