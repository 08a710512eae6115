"""Unit tests for tool contracts."""

from __future__ import annotations

from typing import Any

import pytest

from flowchord.core.graph import NodeSpec
from flowchord.tools.base import (
    TOOL_CAPABLE_TYPES,
    FunctionToolHandler,
    ToolDefinition,
    ToolHandler,
    ToolResult,
)
from tests.conftest import RecordingToolHandler, make_context, node


class TestToolResult:
    """Tests for ToolResult."""

    def test_constructors(self) -> None:
        """Helpers should set success and payload."""
        assert ToolResult.success_result({"a": 1}) == ToolResult(success=True, output={"a": 1})
        assert ToolResult.error_result("boom").error == "boom"
        assert ToolResult.error_result("boom").success is False


class TestFunctionToolHandler:
    """Tests for FunctionToolHandler."""

    @pytest.mark.asyncio
    async def test_sync_function(self) -> None:
        """Plain functions should be wrapped in a success result."""
        handler = FunctionToolHandler(lambda node, input, context: {"len": len(input)})
        context = make_context(node("f", "fileSystem"))

        result = await handler.execute(context.node, "abc", context)

        assert result == ToolResult(success=True, output={"len": 3})
        assert handler.is_async is False

    @pytest.mark.asyncio
    async def test_async_function(self) -> None:
        """Coroutine functions should be awaited."""

        async def speak(node: NodeSpec, input: Any, context: Any) -> dict[str, Any]:
            return {"type": "audio", "text": input}

        handler = FunctionToolHandler(speak)
        context = make_context(node("s", "textToSpeech"))

        result = await handler.execute(context.node, "hi", context)

        assert result.output == {"type": "audio", "text": "hi"}
        assert handler.is_async is True

    @pytest.mark.asyncio
    async def test_exception_becomes_error(self) -> None:
        """Exceptions are captured as error results."""

        def broken(node: NodeSpec, input: Any, context: Any) -> None:
            raise RuntimeError("disk full")

        context = make_context(node("f", "fileSystem"))

        result = await FunctionToolHandler(broken).execute(context.node, None, context)

        assert result.success is False
        assert result.error == "disk full"

    @pytest.mark.asyncio
    async def test_tool_result_passthrough(self) -> None:
        """A returned ToolResult is used as-is."""
        handler = FunctionToolHandler(lambda node, input, context: ToolResult.error_result("nope"))
        context = make_context(node("f", "fileSystem"))

        assert (await handler.execute(context.node, None, context)).error == "nope"

    def test_protocol(self) -> None:
        """Handlers satisfy the ToolHandler protocol."""
        assert isinstance(FunctionToolHandler(print), ToolHandler)
        assert isinstance(RecordingToolHandler(), ToolHandler)


class TestToolDefinition:
    """Tests for ToolDefinition."""

    def test_from_node(self) -> None:
        """Name comes from the label, description from the type default."""
        spec = NodeSpec(id="h", type="httpRequest", data={"label": "Weather API"})

        definition = ToolDefinition.from_node(spec)

        assert definition.node_id == "h"
        assert definition.name == "Weather API"
        assert definition.type == "httpRequest"
        assert definition.description.startswith("Make HTTP requests")

    def test_fallback_description(self) -> None:
        """Types without a default get a generic description."""
        definition = ToolDefinition.from_node(NodeSpec(id="d", type="toolCall"))

        assert definition.description == "Execute toolCall node."

    def test_openai_schema(self) -> None:
        """OpenAI schema should use the function wrapper."""
        spec = NodeSpec(id="c", type="codeExecutor", data={"label": "calc", "inputSchema": {"expression": "string"}})

        schema = ToolDefinition.from_node(spec).to_openai_schema()

        assert schema["type"] == "function"
        assert schema["function"]["name"] == "calc"
        assert schema["function"]["parameters"]["properties"] == {"expression": {"type": "string"}}
        assert schema["function"]["parameters"]["required"] == []

    def test_anthropic_schema(self) -> None:
        """Anthropic schema should expose input_schema."""
        schema = ToolDefinition.from_node(NodeSpec(id="c", type="codeExecutor")).to_anthropic_schema()

        assert schema["name"] == "codeExecutor"
        assert schema["input_schema"]["properties"] == {"input": {"type": "string"}}

    def test_tool_capable_types(self) -> None:
        """Every described type can be used as a tool."""
        assert NodeSpec(id="x", type="httpRequest").type in TOOL_CAPABLE_TYPES
