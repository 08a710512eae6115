"""Base LLM provider interface.

AI nodes (agent, critic, semantic router) talk to models only through this
interface. The concrete provider is injected into the engine.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

from flowchord.core.types import LLMResponse, Message


class ModelCapabilities(BaseModel):
    """Per-model capability metadata consulted before an AI node runs."""

    supports_tools: bool = Field(default=True, description="Can follow the JSON tool protocol")
    context_window: int = Field(default=8192, gt=0)
    max_output_tokens: int = Field(default=2048, gt=0)


class BaseLLMProvider(ABC):
    """Abstract base class for LLM providers.

    Example:
        >>> class MyProvider(BaseLLMProvider):
        ...     async def complete(self, messages, **kwargs):
        ...         ...
    """

    @property
    @abstractmethod
    def model(self) -> str:
        """Return the model identifier."""
        ...

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name (e.g., 'webllm', 'openai')."""
        ...

    @property
    def is_ready(self) -> bool:
        """Whether the model is loaded and can serve requests."""
        return True

    @property
    def capabilities(self) -> ModelCapabilities:
        """Capability metadata for the active model."""
        return ModelCapabilities()

    async def ensure_ready(self, model: str | None = None) -> None:
        """Load the requested model if the provider needs to.

        Providers that download or warm up models override this.
        """
        return None

    @abstractmethod
    async def complete(
        self,
        messages: list[Message],
        *,
        temperature: float = 0.7,
        max_tokens: int = 2000,
        **kwargs: Any,
    ) -> LLMResponse:
        """Generate a completion for the given messages.

        Args:
            messages: List of conversation messages.
            temperature: Sampling temperature (0.0-2.0).
            max_tokens: Maximum tokens to generate.
            **kwargs: Additional provider-specific parameters.

        Raises:
            ExternalCallError: If the model call fails.
            TimeoutError: If the request times out.
        """
        ...

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(model={self.model!r})"
