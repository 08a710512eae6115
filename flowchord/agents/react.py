"""JSON ReAct loop for AI agent nodes.

The model is told which tools exist and must answer with a JSON object,
either ``{"action": "tool", ...}`` to call a tool or ``{"action":
"answer", ...}`` to finish. Tool results are fed back as user messages
until the model answers or the iteration bound is reached.
"""

from __future__ import annotations

import json
import re
import time
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from flowchord.core.context import LogType
from flowchord.core.graph import NodeType
from flowchord.core.types import Message, MessageRole
from flowchord.logging import get_logger
from flowchord.tools.base import ToolDefinition

if TYPE_CHECKING:
    from flowchord.core.context import NodeContext
    from flowchord.llm.base import BaseLLMProvider

DEFAULT_MAX_ITERATIONS = 10
MAX_ITERATIONS_CAP = 25

NO_ANSWER = "Max iterations reached without final answer."

TOOL_PROMPT = """You have access to these tools:
{tools}

IMPORTANT: When you need to use a tool, respond ONLY with this JSON format:
{{"action": "tool", "tool": "tool_name", "input": "your input for the tool"}}

When you have the final answer (after tool results or if no tool needed), respond with:
{{"action": "answer", "content": "your final response to the user"}}

Always respond with valid JSON. Do not include any text outside the JSON object."""

ANSWER_HINT = '{"action": "answer", "content": "..."}'

_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_RAW_JSON = re.compile(r"\{[\s\S]*\}")

_BLOB_KEYS = ("audioBlob", "imageBlob", "videoBlob", "blob")
_MEDIA_TYPES = ("audio", "speech", "image", "video")
_MEDIA_MIME_PREFIXES = ("audio", "image", "video")
# Tools whose results are media whatever their shape
_MEDIA_TOOL_TYPES = frozenset({NodeType.TEXT_TO_SPEECH.value, NodeType.IMAGE_GENERATION.value})


class ReActOptions(BaseModel):
    """Per-invocation settings for :class:`ToolCallingLoop`."""

    system_prompt: str = ""
    max_iterations: int = Field(default=DEFAULT_MAX_ITERATIONS, ge=1)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=2000, gt=0)
    history: list[Message] = Field(default_factory=list)


class ReActResult(BaseModel):
    """Outcome of one agent invocation."""

    output: Any = None
    iterations: int = 0
    history: list[Message] = Field(default_factory=list)
    tool_calls: int = 0


def parse_action(text: str) -> dict[str, Any] | None:
    """Extract the JSON action object from a model response.

    A fenced ```json block wins over a bare ``{...}`` span. Returns None
    when the response holds no JSON object, which callers treat as a
    direct answer.
    """
    fenced = _FENCED_JSON.search(text)
    if fenced:
        candidate = fenced.group(1).strip()
    else:
        raw = _RAW_JSON.search(text)
        candidate = raw.group(0) if raw else text.strip()
    try:
        parsed = json.loads(candidate)
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def is_binary_output(value: Any, tool_type: str | None = None) -> bool:
    """Whether a tool result is media that should bypass the model.

    ``tool_type`` is the declared node type of the tool that produced it.
    """
    if value is None:
        return False
    if tool_type in _MEDIA_TOOL_TYPES:
        return True
    if isinstance(value, (bytes, bytearray, memoryview)):
        return True
    if isinstance(value, str):
        return value.startswith("data:")
    if isinstance(value, dict):
        if any(value.get(key) for key in _BLOB_KEYS):
            return True
        if value.get("type") in _MEDIA_TYPES:
            return True
        mime_type = value.get("mimeType")
        if isinstance(mime_type, str) and mime_type.split("/", 1)[0] in _MEDIA_MIME_PREFIXES:
            return True
    return False


def _normalize(name: str) -> str:
    return re.sub(r"[\s_\-]", "", name.lower())


def find_tool(name: str, tools: list[ToolDefinition]) -> ToolDefinition | None:
    """Resolve a tool the model asked for.

    Exact case-insensitive name match first, then a case and
    separator-insensitive substring match against name or type. The first
    match in catalogue order wins.
    """
    if not name:
        return None
    lowered = name.lower()
    for tool in tools:
        if tool.name.lower() == lowered:
            return tool

    wanted = _normalize(name)
    if not wanted:
        return None
    for tool in tools:
        for candidate in (_normalize(tool.name), _normalize(tool.type)):
            if candidate and (wanted in candidate or candidate in wanted):
                return tool
    return None


def build_tool_prompt(tools: list[ToolDefinition]) -> str:
    """Tool catalogue plus the JSON-only response instructions."""
    if tools:
        lines = "\n".join(
            f"- {tool.name}: {tool.description or f'Execute {tool.type} node'}" for tool in tools
        )
    else:
        lines = "No tools available."
    return TOOL_PROMPT.format(tools=lines)


def _stringify_result(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


class ToolCallingLoop:
    """Drives the model through tool calls until it produces an answer.

    Example:
        >>> loop = ToolCallingLoop(provider)
        >>> result = await loop.run("What's 2+2?", tools, ReActOptions(), context)
        >>> result.output
        '4'
    """

    def __init__(self, provider: BaseLLMProvider, *, max_iterations_cap: int = MAX_ITERATIONS_CAP) -> None:
        self._provider = provider
        self._cap = max_iterations_cap

    def iteration_limit(self, requested: int) -> int:
        """Clamp a requested iteration count to the hard cap."""
        return max(1, min(requested, self._cap))

    async def _generate(self, messages: list[Message], options: ReActOptions) -> str:
        started = time.perf_counter()
        response = await self._provider.complete(
            messages,
            temperature=options.temperature,
            max_tokens=options.max_tokens,
        )
        get_logger().llm_call(
            response.model,
            response.usage.total_tokens,
            int((time.perf_counter() - started) * 1000),
        )
        return response.content.strip()

    def _resolve(self, action: dict[str, Any], tools: list[ToolDefinition]) -> tuple[str | None, ToolDefinition | None, Any]:
        """Pick the requested tool name, its definition and its input."""
        kind = action.get("action")
        if kind == "tool":
            name = action.get("tool")
            if not isinstance(name, str) or not name:
                return None, None, None
            return name, find_tool(name, tools), action.get("input")

        # Some models put the tool name in "action" itself.
        if isinstance(kind, str) and kind:
            tool = find_tool(kind, tools)
            if tool is not None:
                tool_input = action.get("input", action.get("tool", action.get("content")))
                return kind, tool, tool_input
        return None, None, None

    async def run(
        self,
        user_message: str,
        tools: list[ToolDefinition],
        options: ReActOptions,
        context: NodeContext,
    ) -> ReActResult:
        """Run the loop for one agent invocation.

        Args:
            user_message: Current user turn.
            tools: Tool catalogue, in the order fuzzy matching prefers.
            options: Prompt, sampling and iteration settings.
            context: Handle of the agent node; tools run through it.

        Returns:
            ReActResult with the final output, iterations used and the
            conversation built along the way.
        """
        limit = self.iteration_limit(options.max_iterations)
        system_prompt = "\n\n".join(p for p in (options.system_prompt.strip(), build_tool_prompt(tools)) if p)

        history: list[Message] = [m for m in options.history if m.role != MessageRole.SYSTEM]
        if user_message:
            history.append(Message.user(user_message))

        iterations = 0
        tool_calls = 0
        last_response: str | None = None

        while iterations < limit:
            iterations += 1
            context.heartbeat()
            context.add_log(
                LogType.INFO,
                "Generating response..." if iterations == 1 else f"Processing tool result (iteration {iterations})...",
            )

            response = await self._generate([Message.system(system_prompt), *history], options)
            last_response = response
            context.heartbeat()

            action = parse_action(response)
            if action is None:
                context.add_log(LogType.INFO, "Response is not JSON, treating as direct answer")
                history.append(Message.assistant(response))
                return ReActResult(output=response, iterations=iterations, history=history, tool_calls=tool_calls)

            if action.get("action") == "answer":
                history.append(Message.assistant(response))
                return ReActResult(
                    output=action.get("content") or response,
                    iterations=iterations,
                    history=history,
                    tool_calls=tool_calls,
                )

            name, tool, tool_input = self._resolve(action, tools)
            if name is None:
                # Unknown action and no matching tool: the text is the answer.
                history.append(Message.assistant(response))
                return ReActResult(
                    output=action.get("content") or response,
                    iterations=iterations,
                    history=history,
                    tool_calls=tool_calls,
                )

            history.append(Message.assistant(response))
            available = ", ".join(t.name for t in tools) or "none"

            if tool is None or context.graph.get_node(tool.node_id) is None:
                context.add_log(LogType.ERROR, f"Tool '{name}' not connected. Available: {available}")
                history.append(
                    Message.user(
                        f'Tool "{name}" is not available. Available tools: {available}.\n\n'
                        "Please provide your answer without using that tool."
                    )
                )
                continue

            context.add_log(LogType.WARNING, f"Agent calling tool: {tool.name}", {"tool": tool.name, "input": tool_input})
            started = time.perf_counter()
            result = await context.invoke_node(tool.node_id, tool_input)
            tool_calls += 1
            get_logger().tool_call(tool.name, result.success, int((time.perf_counter() - started) * 1000))
            context.heartbeat()

            if not result.success:
                context.add_log(LogType.ERROR, f"Tool '{tool.name}' failed: {result.error}")
                history.append(
                    Message.user(
                        f'Tool "{tool.name}" failed with error: {result.error}\n\n'
                        f"Please handle this error and provide your final answer using: {ANSWER_HINT}"
                    )
                )
                continue

            if is_binary_output(result.output, tool.type):
                context.add_log(LogType.INFO, "Binary output detected, passing through directly")
                return ReActResult(output=result.output, iterations=iterations, history=history, tool_calls=tool_calls)

            context.add_log(LogType.SUCCESS, f"Tool '{tool.name}' executed successfully")
            history.append(
                Message.user(
                    f'Tool "{tool.name}" returned:\n{_stringify_result(result.output)}\n\n'
                    f"Based on this result, please provide your final answer using: {ANSWER_HINT}"
                )
            )

        context.add_log(LogType.WARNING, f"Max tool iterations reached ({limit})")
        return ReActResult(
            output=last_response or NO_ANSWER,
            iterations=iterations,
            history=history,
            tool_calls=tool_calls,
        )
