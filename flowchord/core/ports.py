"""Output port names and per-node port enumeration.

Ports are derived from node configuration by :func:`output_ports`, a pure
function evaluated once per dispatch. Nothing mutates a node's port list.
"""

from __future__ import annotations

from flowchord.core.graph import NodeSpec, NodeType

DEFAULT_PORT = "output"
TRUE_PORT = "true"
FALSE_PORT = "false"
LOOP_PORT = "loop"
DONE_PORT = "done"
APPROVED_PORT = "approved"
REJECTED_PORT = "rejected"
PASS_PORT = "pass"
RETRY_PORT = "retry"
ERROR_PORT = "error"
TOOLS_PORT = "tools"
SWITCH_DEFAULT_PORT = "output-default"

# Ports that are never followed as ordinary data flow.
RESERVED_PORTS = frozenset({ERROR_PORT, TOOLS_PORT, RETRY_PORT})


def indexed_port(index: int) -> str:
    return f"output-{index}"


def route_ports(route_count: int) -> list[str]:
    """One ``output-N`` port per route plus the permanent default port."""
    return [indexed_port(i) for i in range(route_count)] + [SWITCH_DEFAULT_PORT]


def output_ports(node: NodeSpec) -> list[str]:
    """Enumerate the output ports a node exposes for its current config.

    Example:
        >>> node = NodeSpec(id="s", type="switchNode", data={"routes": [{"value": "a"}]})
        >>> output_ports(node)
        ['output-0', 'output-default', 'error']
    """
    node_type = node.type
    if node_type == NodeType.IF_ELSE:
        ports = [TRUE_PORT, FALSE_PORT]
    elif node_type in (NodeType.SWITCH, NodeType.SEMANTIC_ROUTER):
        ports = route_ports(len(node.data.get("routes") or []))
    elif node_type == NodeType.LOOP:
        ports = [LOOP_PORT, DONE_PORT]
    elif node_type == NodeType.WAIT_FOR_APPROVAL:
        ports = [APPROVED_PORT, REJECTED_PORT]
    elif node_type == NodeType.EVALUATOR:
        ports = [PASS_PORT, RETRY_PORT]
    elif node_type == NodeType.AI_AGENT:
        ports = [DEFAULT_PORT, TOOLS_PORT]
    elif node_type == NodeType.CHAT_MODEL:
        return [DEFAULT_PORT]
    else:
        ports = [DEFAULT_PORT]
    return [*ports, ERROR_PORT]


def is_routing_node(node: NodeSpec) -> bool:
    """Routing nodes fire exactly one named port per dispatch."""
    return node.type in (
        NodeType.IF_ELSE,
        NodeType.SWITCH,
        NodeType.SEMANTIC_ROUTER,
        NodeType.WAIT_FOR_APPROVAL,
        NodeType.EVALUATOR,
    )
