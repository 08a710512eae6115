"""Unit tests for the workflow graph model and port enumeration."""

from __future__ import annotations

import pytest

from flowchord.core.graph import NodeCategory, NodeSpec, NodeType, WorkflowGraph
from flowchord.core.ports import is_routing_node, output_ports
from flowchord.core.workflows import InMemoryWorkflowStore, WorkflowStore
from flowchord.errors.exceptions import ConfigError, UnknownNodeTypeError, WorkflowValidationError
from tests.conftest import build_graph, edge, node


class TestNodeType:
    """Tests for NodeType."""

    def test_every_type_has_category(self) -> None:
        """Every member should map to a category."""
        for node_type in NodeType:
            assert isinstance(node_type.category, NodeCategory)

    def test_triggers(self) -> None:
        """Trigger types should report is_trigger."""
        assert NodeType.MANUAL_TRIGGER.is_trigger
        assert NodeType.ERROR_TRIGGER.is_trigger
        assert not NodeType.OUTPUT.is_trigger

    def test_slow_types(self) -> None:
        """AI and media nodes get the long timeout."""
        assert NodeType.AI_AGENT.is_slow
        assert NodeType.IMAGE_GENERATION.is_slow
        assert not NodeType.HTTP_REQUEST.is_slow

    def test_parse_unknown(self) -> None:
        """Unknown tags should raise UnknownNodeTypeError."""
        with pytest.raises(UnknownNodeTypeError) as exc_info:
            NodeType.parse("teleport")

        assert exc_info.value.node_type == "teleport"
        assert isinstance(exc_info.value, ConfigError)


class TestNodeSpec:
    """Tests for NodeSpec."""

    def test_label_fallback(self) -> None:
        """Label should fall back to the type tag."""
        assert NodeSpec(id="a", type="delay").label == "delay"
        assert NodeSpec(id="a", type="delay", data={"label": "Wait"}).label == "Wait"

    def test_unknown_type_rejected(self) -> None:
        """Building a node with an unknown type should fail."""
        with pytest.raises(UnknownNodeTypeError):
            NodeSpec(id="a", type="nope")


class TestWorkflowGraph:
    """Tests for WorkflowGraph invariants and queries."""

    def test_from_lists(self) -> None:
        """Should index nodes by id."""
        graph = build_graph(
            [node("t", "manualTrigger"), node("o", "output")],
            [edge("t", "o")],
        )

        assert set(graph.nodes) == {"t", "o"}
        assert graph.get_node("o").type == NodeType.OUTPUT
        assert graph.get_node("missing") is None

    def test_edge_aliases(self) -> None:
        """sourceHandle/targetHandle should populate the handle fields."""
        graph = build_graph(
            [node("i", "ifElse"), node("o", "output")],
            [edge("i", "o", "true")],
        )

        assert graph.edges[0].source_handle == "true"

    def test_unknown_endpoint(self) -> None:
        """Edges must reference existing nodes."""
        with pytest.raises(WorkflowValidationError) as exc_info:
            build_graph([node("t", "manualTrigger")], [edge("t", "ghost")])

        assert "ghost" in str(exc_info.value)

    def test_self_loop(self) -> None:
        """An edge may not connect a node to itself."""
        with pytest.raises(WorkflowValidationError):
            build_graph([node("d", "delay")], [edge("d", "d")])

    def test_duplicate_connection(self) -> None:
        """The same connection may not appear twice."""
        with pytest.raises(WorkflowValidationError):
            build_graph(
                [node("a", "delay"), node("b", "delay")],
                [edge("a", "b", edge_id="e1"), edge("a", "b", edge_id="e2")],
            )

    def test_duplicate_node_id(self) -> None:
        """Node ids must be unique."""
        with pytest.raises(WorkflowValidationError):
            build_graph([node("a", "delay"), node("a", "output")])

    def test_all_errors_collected(self) -> None:
        """Every violation should be listed."""
        with pytest.raises(WorkflowValidationError) as exc_info:
            build_graph(
                [node("a", "delay")],
                [edge("a", "x", edge_id="e1"), edge("a", "a", edge_id="e2")],
            )

        assert len(exc_info.value.errors) == 2

    def test_trigger_nodes(self) -> None:
        """Roots are triggers with no incoming edge, excluding error triggers."""
        graph = build_graph(
            [
                node("t1", "manualTrigger"),
                node("t2", "webhookTrigger"),
                node("err", "errorTrigger"),
                node("o", "output"),
            ],
            [edge("t1", "o")],
        )

        assert [n.id for n in graph.trigger_nodes()] == ["t1", "t2"]
        assert [n.id for n in graph.error_trigger_nodes()] == ["err"]

    def test_outgoing_by_port(self) -> None:
        """outgoing() should filter by source handle."""
        graph = build_graph(
            [node("i", "ifElse"), node("y", "output"), node("n", "output")],
            [edge("i", "y", "true"), edge("i", "n", "false")],
        )

        assert [e.target for e in graph.outgoing("i", "true")] == ["y"]
        assert len(graph.outgoing("i")) == 2

    def test_resource_edges_not_data(self) -> None:
        """Resource-slot edges are excluded from data traversal."""
        graph = build_graph(
            [node("m", "chatModel"), node("a", "aiAgent"), node("o", "output")],
            [edge("m", "a", target_handle="model-slot"), edge("a", "o")],
        )

        assert graph.outgoing("m") == []
        assert graph.incoming("a") == []
        assert [e.source for e in graph.resource_edges("a")] == ["m"]

    def test_dict_round_trip(self) -> None:
        """A graph dict export should validate back into a graph."""
        graph = build_graph(
            [node("t", "manualTrigger"), node("o", "output")],
            [edge("t", "o")],
            id="wf-1",
            name="Demo",
        )

        restored = WorkflowGraph.model_validate(graph.model_dump(by_alias=True))

        assert restored.id == "wf-1"
        assert restored.edges[0].target == "o"


class TestOutputPorts:
    """Tests for output_ports()."""

    def test_default_ports(self) -> None:
        """Plain nodes expose output plus error."""
        assert output_ports(NodeSpec(id="d", type="delay")) == ["output", "error"]

    def test_if_else_ports(self) -> None:
        """If/Else exposes true and false."""
        assert output_ports(NodeSpec(id="i", type="ifElse")) == ["true", "false", "error"]

    def test_switch_ports(self) -> None:
        """Switch exposes one port per route plus the default."""
        spec = NodeSpec(id="s", type="switchNode", data={"routes": [{"value": "a"}, {"value": "b"}]})

        assert output_ports(spec) == ["output-0", "output-1", "output-default", "error"]

    def test_switch_without_routes(self) -> None:
        """A switch with no routes still has its default port."""
        assert output_ports(NodeSpec(id="s", type="switchNode")) == ["output-default", "error"]

    def test_control_ports(self) -> None:
        """Loop, approval, evaluator and agent ports."""
        assert output_ports(NodeSpec(id="l", type="loop"))[:2] == ["loop", "done"]
        assert output_ports(NodeSpec(id="w", type="waitForApproval"))[:2] == ["approved", "rejected"]
        assert output_ports(NodeSpec(id="e", type="evaluator"))[:2] == ["pass", "retry"]
        assert output_ports(NodeSpec(id="a", type="aiAgent"))[:2] == ["output", "tools"]
        assert output_ports(NodeSpec(id="m", type="chatModel")) == ["output"]

    def test_pure(self) -> None:
        """Calling output_ports twice should give equal, independent lists."""
        spec = NodeSpec(id="s", type="switchNode", data={"routes": [{"value": "a"}]})
        first = output_ports(spec)
        first.append("extra")

        assert output_ports(spec) == ["output-0", "output-default", "error"]

    def test_routing_nodes(self) -> None:
        """Routing nodes fire exactly one named port."""
        assert is_routing_node(NodeSpec(id="i", type="ifElse"))
        assert not is_routing_node(NodeSpec(id="d", type="delay"))


class TestInMemoryWorkflowStore:
    """Tests for InMemoryWorkflowStore."""

    @pytest.mark.asyncio
    async def test_add_load_remove(self) -> None:
        """Graphs are stored under their id until removed."""
        store = InMemoryWorkflowStore()
        store.add({"id": "child", "nodes": [node("t", "manualTrigger")], "edges": []})

        assert "child" in store
        assert (await store.load("child")).id == "child"

        store.remove("child")

        assert len(store) == 0
        assert await store.load("child") is None

    def test_id_required(self) -> None:
        """A graph without an id cannot be stored."""
        with pytest.raises(ConfigError):
            InMemoryWorkflowStore().add(build_graph([node("t", "manualTrigger")]))

    def test_protocol(self) -> None:
        """The in-memory store satisfies WorkflowStore."""
        assert isinstance(InMemoryWorkflowStore(), WorkflowStore)
