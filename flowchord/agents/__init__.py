"""Agent loops used by AI nodes."""

from flowchord.agents.critic import Critic, CriticResult, Review, parse_review
from flowchord.agents.react import (
    ReActOptions,
    ReActResult,
    ToolCallingLoop,
    build_tool_prompt,
    find_tool,
    is_binary_output,
    parse_action,
)

__all__ = [
    "Critic",
    "CriticResult",
    "Review",
    "parse_review",
    "ReActOptions",
    "ReActResult",
    "ToolCallingLoop",
    "build_tool_prompt",
    "find_tool",
    "is_binary_output",
    "parse_action",
]
