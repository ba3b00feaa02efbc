"""LLM provider abstraction module."""

from agon.providers.base import GenerateRequest, LLMProvider, LLMResponse, ToolCallRequest

__all__ = ["GenerateRequest", "LLMProvider", "LLMResponse", "ToolCallRequest"]
