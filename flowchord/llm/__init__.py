"""LLM provider interface."""

from flowchord.llm.base import BaseLLMProvider, ModelCapabilities

__all__ = ["BaseLLMProvider", "ModelCapabilities"]
