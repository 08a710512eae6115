"""Conversation types exchanged between AI nodes and the model provider."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class MessageRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class Message(BaseModel):
    """One turn of a prompt or of an agent's ReAct history.

    Example:
        >>> Message.user("What is 2+2?")
        Message(role=<MessageRole.USER: 'user'>, content='What is 2+2?')
    """

    role: MessageRole
    content: str

    @classmethod
    def system(cls, content: str) -> Message:
        return cls(role=MessageRole.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> Message:
        return cls(role=MessageRole.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> Message:
        return cls(role=MessageRole.ASSISTANT, content=content)


class Usage(BaseModel):
    """Token counts reported by the provider for one call."""

    prompt_tokens: int = Field(default=0, ge=0)
    completion_tokens: int = Field(default=0, ge=0)

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class LLMResponse(BaseModel):
    """What a provider returns from ``complete``.

    Only ``content`` is read by the nodes; ``usage`` feeds the LLM call
    log line.
    """

    content: str
    model: str
    usage: Usage = Field(default_factory=Usage)
    finish_reason: str = "stop"
    raw_response: dict[str, Any] | None = Field(
        default=None, description="Provider payload, kept for debugging"
    )
