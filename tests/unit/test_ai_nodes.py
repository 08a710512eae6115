"""Unit tests for the AI node executors."""

from __future__ import annotations

import pytest

from flowchord.core.context import LogType, NodeResult
from flowchord.core.graph import NodeType
from flowchord.core.types import MessageRole
from flowchord.errors.exceptions import ConfigError, ExternalCallError, InvalidConfigError
from flowchord.nodes import ai
from flowchord.nodes.ai import collect_tools, validate_output
from flowchord.nodes.base import Collaborators
from tests.conftest import (
    RecordingHost,
    RecordingToolHandler,
    ScriptedLLMProvider,
    build_graph,
    edge,
    make_context,
    node,
)


class TestAIAgent:
    """Tests for the aiAgent executor."""

    @pytest.mark.asyncio
    async def test_plain_completion(self) -> None:
        """Without tools the agent makes one templated completion."""
        provider = ScriptedLLMProvider(["  Hello there  "])
        spec = node("a", "aiAgent", systemMessage="Be {{ $json.tone }}.", userMessage="Say {{ $json.word }}")
        context = make_context(spec, collaborators=Collaborators(llm=provider))

        result = await ai.ai_agent(context.node, {"tone": "kind", "word": "hi"}, context)

        assert result.output == "Hello there"
        assert result.extras == {"iterations": 1, "toolCalls": 0}
        sent = provider.received_messages[0]
        assert [(m.role, m.content) for m in sent] == [
            (MessageRole.SYSTEM, "Be kind."),
            (MessageRole.USER, "Say hi"),
        ]
        assert provider.received_kwargs[0] == {"temperature": 0.7, "max_tokens": 2000}

    @pytest.mark.asyncio
    async def test_input_as_prompt(self) -> None:
        """Without userMessage a dict input is sent as JSON."""
        provider = ScriptedLLMProvider(["ok"])
        context = make_context(node("a", "aiAgent"), collaborators=Collaborators(llm=provider))

        await ai.ai_agent(context.node, {"q": 1}, context)

        assert len(provider.received_messages[0]) == 1
        assert provider.received_messages[0][0].content == '{"q": 1}'

    @pytest.mark.asyncio
    async def test_model_slot_overrides(self) -> None:
        """A chat model in the model slot sets sampling parameters."""
        provider = ScriptedLLMProvider(["ok"])
        graph = build_graph(
            [node("m", "chatModel", temperature=0.1, maxTokens=50), node("a", "aiAgent", temperature=0.9)],
            [edge("m", "a", target_handle="model-slot")],
        )
        context = make_context(graph.get_node("a"), graph=graph, collaborators=Collaborators(llm=provider))

        await ai.ai_agent(context.node, "hi", context)

        assert provider.received_kwargs[0] == {"temperature": 0.1, "max_tokens": 50}

    @pytest.mark.asyncio
    async def test_tools_from_slot(self) -> None:
        """Tool-slot nodes are offered to the model and invoked through the host."""
        provider = ScriptedLLMProvider(
            [
                '{"action": "tool", "tool": "Calculator", "input": "6*7"}',
                '{"action": "answer", "content": "42"}',
            ]
        )
        graph = build_graph(
            [node("calc", "codeExecutor", label="Calculator"), node("a", "aiAgent")],
            [edge("calc", "a", target_handle="tool-slot")],
        )
        host = RecordingHost()
        host.results["calc"] = [NodeResult(success=True, output=42)]
        context = make_context(
            graph.get_node("a"), graph=graph, host=host, collaborators=Collaborators(llm=provider)
        )

        result = await ai.ai_agent(context.node, "what is 6*7?", context)

        assert result.output == "42"
        assert result.extras == {"iterations": 2, "toolCalls": 1}
        assert host.invocations == [("calc", "6*7")]

    def test_collect_tools_deduplicates(self) -> None:
        """A node on both the tool slot and the tools port is listed once."""
        graph = build_graph(
            [node("a", "aiAgent"), node("h", "httpRequest", label="Fetch"), node("d", "delay")],
            [
                edge("h", "a", target_handle="tool-slot"),
                edge("a", "h", "tools"),
                edge("a", "d", "tools"),
            ],
        )
        context = make_context(graph.get_node("a"), graph=graph)

        assert [t.node_id for t in collect_tools(context.node, context)] == ["h", "d"]

    @pytest.mark.asyncio
    async def test_tools_ignored_without_support(self) -> None:
        """Models that cannot call tools get a plain completion."""
        provider = ScriptedLLMProvider(["plain"], supports_tools=False)
        graph = build_graph(
            [node("calc", "codeExecutor"), node("a", "aiAgent")],
            [edge("calc", "a", target_handle="tool-slot")],
        )
        host = RecordingHost()
        context = make_context(
            graph.get_node("a"), graph=graph, host=host, collaborators=Collaborators(llm=provider)
        )

        result = await ai.ai_agent(context.node, "hi", context)

        assert result.output == "plain"
        assert any(entry.type == LogType.WARNING for entry in host.logs)

    @pytest.mark.asyncio
    async def test_model_not_ready(self) -> None:
        """A model that stays unloaded is a retryable external failure."""
        provider = ScriptedLLMProvider(ready=False)
        context = make_context(node("a", "aiAgent"), collaborators=Collaborators(llm=provider))

        with pytest.raises(ExternalCallError) as exc_info:
            await ai.ai_agent(context.node, "hi", context)

        assert exc_info.value.retryable is True
        assert provider.call_count == 0

    @pytest.mark.asyncio
    async def test_no_provider(self) -> None:
        """AI nodes need an injected provider."""
        context = make_context(node("a", "aiAgent"))

        with pytest.raises(ConfigError):
            await ai.ai_agent(context.node, "hi", context)

    @pytest.mark.asyncio
    async def test_history_input(self) -> None:
        """A message array input continues the conversation."""
        provider = ScriptedLLMProvider(["a2"])
        context = make_context(node("a", "aiAgent"), collaborators=Collaborators(llm=provider))
        history = [
            {"role": "system", "content": "S"},
            {"role": "user", "content": "u1"},
            {"role": "assistant", "content": "a1"},
            {"role": "user", "content": "u2"},
        ]

        result = await ai.ai_agent(context.node, history, context)

        assert result.output == "a2"
        assert [m.content for m in provider.received_messages[0]] == ["S", "u1", "a1", "u2"]

    @pytest.mark.asyncio
    async def test_memory_slot(self) -> None:
        """Vector memory matches are added to the system prompt."""
        provider = ScriptedLLMProvider(["Paris"])
        memory = RecordingToolHandler(output={"matches": [{"text": "Paris is the capital of France"}]})
        graph = build_graph(
            [node("mem", "vectorMemory", namespace="geo"), node("a", "aiAgent", systemMessage="Answer.")],
            [edge("mem", "a", target_handle="memory-slot")],
        )
        context = make_context(
            graph.get_node("a"),
            graph=graph,
            collaborators=Collaborators(llm=provider, handlers={NodeType.VECTOR_MEMORY: memory}),
        )

        await ai.ai_agent(context.node, "capital of France?", context)

        system = provider.received_messages[0][0].content
        assert system.startswith("Answer.")
        assert "[CONTEXT FROM MEMORY]" in system
        assert "- Paris is the capital of France" in system
        assert memory.calls[0][1]["namespace"] == "geo"


class TestSemanticRouter:
    """Tests for keyword routing."""

    ROUTES = [
        {"label": "Billing", "keywords": "invoice, refund"},
        {"label": "Tech", "keywords": ["error", "crash"]},
    ]

    @pytest.mark.asyncio
    async def test_keyword_match(self) -> None:
        """The first route with a matching keyword fires, case-insensitively."""
        context = make_context(node("r", "semanticRouter", routes=self.ROUTES))

        billing = await ai.semantic_router(context.node, {"text": "I need a Refund"}, context)
        tech = await ai.semantic_router(context.node, "app CRASH on start", context)

        assert billing.port == "output-0"
        assert tech.port == "output-1"

    @pytest.mark.asyncio
    async def test_default_route(self) -> None:
        """No keyword match fires the default port."""
        context = make_context(node("r", "semanticRouter", routes=self.ROUTES))

        result = await ai.semantic_router(context.node, "hello", context)

        assert result.port == "output-default"
        assert result.output == "hello"

    @pytest.mark.asyncio
    async def test_unsupported_mode(self) -> None:
        """Only keyword classification is available."""
        context = make_context(node("r", "semanticRouter", classificationMode="llm"))

        with pytest.raises(InvalidConfigError):
            await ai.semantic_router(context.node, "x", context)


class TestValidateOutput:
    """Tests for validate_output()."""

    def test_schema(self) -> None:
        """Schema mode checks required keys."""
        context = make_context(node("e", "evaluator"))
        data = {"evaluationType": "schema", "schema": '{"name": "string", "age": "number"}'}

        assert validate_output(data, {"name": "x", "age": 1}, context) is None
        assert validate_output(data, '{"name": "x"}', context) == "Missing required keys: age"
        assert validate_output(data, "not json", context) == "Output is not valid JSON"
        assert validate_output(data, [1], context) == "Output is not a JSON object"

    def test_regex(self) -> None:
        """Regex mode searches the text form."""
        context = make_context(node("e", "evaluator"))
        data = {"evaluationType": "regex", "regexPattern": r"^\d+$"}

        assert validate_output(data, "123", context) is None
        assert validate_output(data, "abc", context) == r"Pattern not matched: ^\d+$"

    def test_bad_regex(self) -> None:
        """An invalid pattern is a config error."""
        context = make_context(node("e", "evaluator"))

        with pytest.raises(InvalidConfigError):
            validate_output({"evaluationType": "regex", "regexPattern": "("}, "x", context)

    def test_expression(self) -> None:
        """Expression mode evaluates a safe Python expression."""
        context = make_context(node("e", "evaluator"))
        data = {"evaluationType": "expression", "expression": "len(input['items']) > 2 and input['ok'] == true"}

        assert validate_output(data, {"items": [1, 2, 3], "ok": True}, context) is None
        assert validate_output(data, {"items": [1], "ok": True}, context).startswith("Expression not satisfied")
        broken = {"evaluationType": "expression", "expression": "missing_name > 1"}
        assert validate_output(broken, {}, context).startswith("Expression error")

    def test_unknown_type(self) -> None:
        """Unknown evaluation types are a config error; llm always passes."""
        context = make_context(node("e", "evaluator"))

        assert validate_output({"evaluationType": "llm"}, "x", context) is None
        with pytest.raises(InvalidConfigError):
            validate_output({"evaluationType": "vibes"}, "x", context)


class TestEvaluator:
    """Tests for the evaluator executor."""

    def _graph(self):
        return build_graph(
            [node("g", "aiAgent"), node("e", "evaluator", schema={"name": "string"}, maxRetries=2)],
            [edge("g", "e"), edge("e", "g", "retry")],
        )

    @pytest.mark.asyncio
    async def test_passes_first_time(self) -> None:
        """Valid input fires pass without retries."""
        graph = self._graph()
        host = RecordingHost()
        context = make_context(graph.get_node("e"), graph=graph, host=host)

        result = await ai.evaluator(context.node, {"name": "ok"}, context)

        assert result.port == "pass"
        assert result.extras == {"retries": 0}
        assert host.invocations == []

    @pytest.mark.asyncio
    async def test_retries_generator(self) -> None:
        """Invalid input re-invokes the retry target with feedback."""
        graph = self._graph()
        host = RecordingHost()
        host.results["g"] = [NodeResult(success=True, output={"name": "fixed"})]
        context = make_context(graph.get_node("e"), graph=graph, host=host)

        result = await ai.evaluator(context.node, {}, context)

        assert result.port == "pass"
        assert result.output == {"name": "fixed"}
        assert result.extras == {"retries": 1}
        request = host.invocations[0][1]
        assert request["error"] == "Missing required keys: name"
        assert request["retryCount"] == 1

    @pytest.mark.asyncio
    async def test_exhaustion_marks_output(self) -> None:
        """After maxRetries the output is flagged but still fires pass."""
        graph = self._graph()
        host = RecordingHost()
        context = make_context(graph.get_node("e"), graph=graph, host=host)

        result = await ai.evaluator(context.node, {}, context)

        assert result.port == "pass"
        assert len(host.invocations) == 2
        assert result.output["_validationFailed"] is True
        assert result.output["_validationError"] == "Missing required keys: name"

    @pytest.mark.asyncio
    async def test_no_generator(self) -> None:
        """Without a retry target the first failure is final."""
        spec = node("e", "evaluator", evaluationType="regex", regexPattern=r"^\d+$")
        context = make_context(spec)

        result = await ai.evaluator(context.node, "abc", context)

        assert result.output == {
            "output": "abc",
            "_validationFailed": True,
            "_validationError": r"Pattern not matched: ^\d+$",
        }


class TestCriticNode:
    """Tests for the critic executor."""

    @pytest.mark.asyncio
    async def test_review_payload(self) -> None:
        """The critic node emits the review payload."""
        provider = ScriptedLLMProvider(["Accuracy Score: 9\nHallucination Risk: LOW\nNeeds Correction: NO"])
        context = make_context(node("c", "critic"), collaborators=Collaborators(llm=provider))

        result = await ai.critic(context.node, {"question": "2+2?", "response": "4"}, context)

        assert result.output["approved"] is True
        assert result.output["output"] == "4"
        assert result.output["score"] == 9
        assert "QUESTION: 2+2?" in provider.received_messages[0][1].content
