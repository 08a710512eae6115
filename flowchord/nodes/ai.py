"""AI node executors: agent, semantic router, evaluator and critic."""

from __future__ import annotations

import json
import re
from typing import TYPE_CHECKING, Any

from simpleeval import EvalWithCompoundTypes

from flowchord.agents.critic import Critic
from flowchord.agents.react import ReActOptions, ToolCallingLoop
from flowchord.core.context import LogType
from flowchord.core.graph import MEMORY_SLOT, MODEL_SLOT, TOOL_SLOT, NodeSpec, NodeType
from flowchord.core.ports import (
    PASS_PORT,
    RETRY_PORT,
    SWITCH_DEFAULT_PORT,
    TOOLS_PORT,
    indexed_port,
)
from flowchord.core.types import Message, MessageRole
from flowchord.errors.exceptions import ExternalCallError, InvalidConfigError
from flowchord.nodes.base import ExecutorOutput, input_text, merged_overrides
from flowchord.tools.base import ToolDefinition

if TYPE_CHECKING:
    from flowchord.core.context import NodeContext
    from flowchord.llm.base import BaseLLMProvider


# AI Agent

def _as_history(input: Any) -> list[Message] | None:
    """Read a conversation-history array, or None if the input is not one."""
    if not isinstance(input, list) or not input:
        return None
    messages = []
    for item in input:
        if not isinstance(item, dict) or "role" not in item or "content" not in item:
            return None
        try:
            role = MessageRole(item["role"])
        except ValueError:
            return None
        messages.append(Message(role=role, content=str(item["content"])))
    return messages


def _model_settings(context: NodeContext, config: dict[str, Any]) -> dict[str, Any]:
    """Node config overlaid with the chat model plugged into the model slot."""
    models = context.resources().get(MODEL_SLOT, [])
    if models:
        model_data = models[0].data
        for source, target in (("temperature", "temperature"), ("maxTokens", "maxTokens"), ("modelId", "modelId")):
            if model_data.get(source) is not None:
                config[target] = model_data[source]
    return config


def collect_tools(node: NodeSpec, context: NodeContext) -> list[ToolDefinition]:
    """Tool catalogue for an agent: tool-slot resources, then ``tools`` port targets."""
    tools: list[ToolDefinition] = []
    seen: set[str] = set()
    candidates = list(context.resources().get(TOOL_SLOT, []))
    for edge in context.graph.outgoing(node.id, TOOLS_PORT):
        target = context.graph.get_node(edge.target)
        if target is not None:
            candidates.append(target)
    for candidate in candidates:
        if candidate.id not in seen:
            seen.add(candidate.id)
            tools.append(ToolDefinition.from_node(candidate))
    return tools


async def _memory_block(context: NodeContext, query: str) -> str:
    """Context retrieved from vector memory nodes in the memory slot."""
    memories = context.resources().get(MEMORY_SLOT, [])
    handler = context.collaborators.handlers.get(NodeType.VECTOR_MEMORY)
    if not memories or handler is None:
        return ""

    lines: list[str] = []
    for memory in memories:
        namespace = memory.data.get("namespace") or "default"
        context.add_log(LogType.INFO, f"Retrieving memories from {namespace}...")
        request = {"mode": "query", "query": query, "namespace": namespace, "topK": memory.data.get("topK", 5)}
        result = await handler.execute(memory, request, context)
        if not result.success:
            context.add_log(LogType.WARNING, f"Memory retrieval failed: {result.error}")
            continue
        output = result.output
        matches = output.get("matches", []) if isinstance(output, dict) else output or []
        for match in matches:
            text = match.get("text") if isinstance(match, dict) else match
            lines.append(f"- {text if isinstance(text, str) else json.dumps(text, default=str)}")
        if matches:
            context.add_log(LogType.INFO, f"Found {len(matches)} relevant memories")

    if not lines:
        return ""
    return (
        "[CONTEXT FROM MEMORY]\nUse the following retrieved context to answer the user:\n"
        + "\n".join(lines)
        + "\n[/CONTEXT]"
    )


async def _ensure_model(provider: BaseLLMProvider, model_id: str | None, context: NodeContext) -> None:
    if getattr(provider, "is_ready", True) and (not model_id or model_id == provider.model):
        return
    context.add_log(LogType.INFO, f"Loading AI model: {model_id or provider.model}...")
    await provider.ensure_ready(model_id)
    context.heartbeat()
    if not getattr(provider, "is_ready", True):
        raise ExternalCallError(
            f"Model '{model_id or provider.model}' is not ready",
            source=NodeType.AI_AGENT.value,
        )


async def ai_agent(node: NodeSpec, input: Any, context: NodeContext) -> ExecutorOutput:
    """Answer with the injected model, calling connected tools as needed.

    The model slot overrides sampling settings, the memory slot prepends
    retrieved context to the system prompt, and tools come from the tool
    slot and the ``tools`` port. A conversation-history array as input is
    continued instead of building a fresh prompt.
    """
    provider = context.collaborators.require_llm()
    config = merged_overrides(node.data, input, ("model", "temperature", "maxTokens", "systemMessage"))
    config = _model_settings(context, config)

    system_message = config.get("systemMessage") or ""
    history = _as_history(input)
    if history is not None:
        current = history[-1].content
        history = history[:-1]
        system_messages = [m for m in history if m.role == MessageRole.SYSTEM]
        if system_messages:
            system_message = system_messages[0].content
        history = [m for m in history if m.role != MessageRole.SYSTEM]
    else:
        history = []
        system_message = context.resolve(system_message, input)
        user_message = node.data.get("userMessage")
        if user_message:
            current = context.resolve(user_message, input)
        else:
            current = input if isinstance(input, str) else json.dumps(input, default=str)

    context.add_log(LogType.INFO, "AI processing...")
    memory = await _memory_block(context, str(current))
    if memory:
        system_message = f"{system_message}\n\n{memory}".strip()

    await _ensure_model(provider, config.get("modelId") or config.get("model"), context)

    temperature = float(config.get("temperature", context.settings.temperature))
    max_tokens = int(config.get("maxTokens") or context.settings.max_tokens)

    tools = collect_tools(node, context)
    if tools and not provider.capabilities.supports_tools:
        context.add_log(LogType.WARNING, f"Model {provider.model} cannot call tools; ignoring {len(tools)} tool(s)")
        tools = []

    if not tools:
        response = await provider.complete(
            [Message.system(system_message), *history, Message.user(str(current))]
            if system_message
            else [*history, Message.user(str(current))],
            temperature=temperature,
            max_tokens=max_tokens,
        )
        context.add_log(LogType.SUCCESS, "Generation complete")
        return ExecutorOutput(output=response.content.strip(), extras={"iterations": 1, "toolCalls": 0})

    loop = ToolCallingLoop(provider, max_iterations_cap=context.settings.max_tool_iterations_cap)
    result = await loop.run(
        str(current),
        tools,
        ReActOptions(
            system_prompt=system_message,
            max_iterations=int(node.data.get("maxIterations") or context.settings.max_tool_iterations),
            temperature=temperature,
            max_tokens=max_tokens,
            history=history,
        ),
        context,
    )
    return ExecutorOutput(
        output=result.output,
        extras={"iterations": result.iterations, "toolCalls": result.tool_calls},
    )


# Semantic Router

async def semantic_router(node: NodeSpec, input: Any, context: NodeContext) -> ExecutorOutput:
    """Route by keyword: the first route with a keyword found in the text fires."""
    mode = node.data.get("classificationMode") or "keyword"
    if mode != "keyword":
        raise InvalidConfigError("classificationMode", mode, "Only 'keyword' classification is supported")

    routes = node.data.get("routes") or []
    text = input_text(input).lower()
    context.add_log(LogType.INFO, f"Classifying input ({mode} mode)...")

    port = SWITCH_DEFAULT_PORT
    label = "Other"
    for index, route in enumerate(routes):
        if not isinstance(route, dict):
            continue
        keywords = route.get("keywords") or []
        if isinstance(keywords, str):
            keywords = [k.strip() for k in keywords.split(",")]
        if any(k and k.lower() in text for k in keywords):
            port = indexed_port(index)
            label = route.get("label") or port
            break

    context.add_log(LogType.SUCCESS, f"Routed to: {label} ({port})")
    return ExecutorOutput(output=input, port=port)


# Evaluator

def _condition_names(input: Any, context: NodeContext) -> dict[str, Any]:
    return {
        "input": input,
        "variables": dict(context.variables),
        "true": True,
        "false": False,
        "none": None,
        "True": True,
        "False": False,
        "None": None,
    }


SAFE_FUNCTIONS = {
    "len": len,
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "abs": abs,
    "min": min,
    "max": max,
    "any": any,
    "all": all,
}


def validate_output(data: dict[str, Any], input: Any, context: NodeContext) -> str | None:
    """Check ``input`` against the evaluator's rule. Returns an error or None."""
    evaluation = data.get("evaluationType") or "schema"

    if evaluation == "schema":
        schema = data.get("schema")
        if isinstance(schema, str) and schema.strip():
            try:
                schema = json.loads(schema)
            except ValueError:
                raise InvalidConfigError("schema", schema, "Schema must be a JSON object") from None
        if not isinstance(schema, dict) or not schema:
            return None
        subject = input
        if isinstance(subject, str):
            try:
                subject = json.loads(subject)
            except ValueError:
                return "Output is not valid JSON"
        if not isinstance(subject, dict):
            return "Output is not a JSON object"
        missing = [key for key in schema if key not in subject]
        return f"Missing required keys: {', '.join(missing)}" if missing else None

    if evaluation == "regex":
        pattern = data.get("regexPattern")
        if not pattern:
            return None
        try:
            regex = re.compile(pattern)
        except re.error as e:
            raise InvalidConfigError("regexPattern", pattern, str(e)) from None
        text = input if isinstance(input, str) else json.dumps(input, default=str)
        return None if regex.search(text) else f"Pattern not matched: {pattern}"

    if evaluation in ("expression", "condition"):
        expression = data.get("expression") or data.get("condition")
        if not expression:
            return None
        evaluator = EvalWithCompoundTypes(names=_condition_names(input, context), functions=SAFE_FUNCTIONS)
        try:
            passed = bool(evaluator.eval(expression))
        except Exception as e:
            return f"Expression error: {e}"
        return None if passed else f"Expression not satisfied: {expression}"

    if evaluation == "llm":
        return None
    raise InvalidConfigError("evaluationType", evaluation, "Use 'schema', 'regex' or 'expression'")


def _generator_id(node: NodeSpec, context: NodeContext) -> str | None:
    if node.data.get("generatorNodeId"):
        return node.data["generatorNodeId"]
    edges = context.graph.outgoing(node.id, RETRY_PORT)
    return edges[0].target if edges else None


async def evaluator(node: NodeSpec, input: Any, context: NodeContext) -> ExecutorOutput:
    """Validate the input, asking the generator to try again on failure.

    Retries are local: the node behind the ``retry`` port (or
    ``generatorNodeId``) is re-invoked with feedback and its new output is
    re-validated, at most ``maxRetries`` times. The ``pass`` port always
    fires; an output that never validated carries ``_validationFailed``.
    """
    max_retries = int(node.data.get("maxRetries", context.settings.evaluator_max_retries))
    generator = _generator_id(node, context)
    candidate = input
    retry_count = 0

    while True:
        context.add_log(
            LogType.INFO,
            f"Evaluating output ({node.data.get('evaluationType') or 'schema'}, attempt {retry_count + 1}/{max_retries + 1})...",
        )
        error = validate_output(node.data, candidate, context)
        if error is None:
            context.add_log(LogType.SUCCESS, "Validation passed")
            return ExecutorOutput(output=candidate, port=PASS_PORT, extras={"retries": retry_count})

        if retry_count >= max_retries or generator is None:
            context.add_log(LogType.ERROR, f"Max retries reached. Validation failed: {error}")
            base = candidate if isinstance(candidate, dict) else {"output": candidate}
            return ExecutorOutput(
                output={**base, "_validationFailed": True, "_validationError": error},
                port=PASS_PORT,
                extras={"retries": retry_count},
            )

        retry_count += 1
        context.add_log(LogType.WARNING, f"Validation failed: {error}. Retrying...")
        result = await context.invoke_node(
            generator,
            {
                "originalInput": candidate,
                "error": error,
                "retryCount": retry_count,
                "feedback": f"Your output was invalid: {error}. Please try again.",
            },
        )
        context.heartbeat()
        if result.success:
            candidate = result.output
        else:
            context.add_log(LogType.WARNING, f"Generator failed on retry: {result.error}")


# Critic

async def critic(node: NodeSpec, input: Any, context: NodeContext) -> ExecutorOutput:
    """Review the incoming response and emit the (possibly corrected) result."""
    provider = context.collaborators.require_llm()
    question = context.resolve(node.data.get("question"), input)
    if not question and isinstance(input, dict):
        question = input.get("question") or input.get("originalQuestion") or ""
    response = input_text(input)

    reviewer = Critic(
        provider,
        max_iterations=int(node.data.get("maxIterations", context.settings.critic_max_iterations)),
        max_tokens=int(node.data.get("maxTokens") or 1000),
        response_max_tokens=context.settings.max_tokens,
    )
    result = await reviewer.review(
        str(question or ""),
        response,
        auto_correct=node.data.get("autoCorrect", True),
        context=context,
    )
    return ExecutorOutput(output=result.to_output(), extras={"iterations": result.iterations})
