"""Base LLM provider interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from agon.store.models import AgentTuning


@dataclass
class ToolCallRequest:
    """A tool call requested by the LLM."""
    id: str
    name: str
    arguments: dict[str, Any]


@dataclass
class LLMResponse:
    """Response from an LLM provider."""
    content: str | None
    reasoning_content: str | None = None
    tool_calls: list[ToolCallRequest] = field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0
    finish_reason: str = "stop"

    @property
    def has_tool_calls(self) -> bool:
        """Check if response contains tool calls."""
        return len(self.tool_calls) > 0

    @property
    def exit_summary(self) -> str | None:
        """Summary passed to ``exit_debate`` when the model decided to leave."""
        for call in self.tool_calls:
            if call.name == "exit_debate":
                summary = call.arguments.get("summary")
                return str(summary).strip() if summary else ""
        return None


@dataclass
class GenerateRequest:
    provider: str
    model: str
    messages: list[dict[str, Any]]
    tools: list[dict[str, Any]] | None = None
    tuning: AgentTuning = field(default_factory=AgentTuning)


class LLMProvider(ABC):
    """
    Abstract base class for LLM providers.

    Implementations raise ``LlmCallFailed`` for transport or API failures and
    ``MissingLlmApiKey`` when the requested provider has no credential.
    """

    @abstractmethod
    async def generate(self, request: GenerateRequest) -> LLMResponse:
        """
        Send one chat completion request.

        Args:
            request: Provider, model, messages, tool definitions and tuning.

        Returns:
            LLMResponse with content, reasoning and/or tool calls.
        """
