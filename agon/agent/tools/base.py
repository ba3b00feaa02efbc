"""Base class for agent tools."""

from abc import ABC, abstractmethod
from typing import Any


class Tool(ABC):
    """
    A capability the model can invoke during its turn.

    Tools return text for the model to read; failures come back as
    ``"Error: ..."`` strings rather than exceptions.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Tool name used in function calls."""

    @property
    @abstractmethod
    def description(self) -> str:
        """What the tool does."""

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]:
        """JSON schema for the tool's arguments."""

    @abstractmethod
    async def execute(self, **kwargs: Any) -> str:
        """Run the tool and return its result as text."""

    def to_schema(self) -> dict[str, Any]:
        """OpenAI function-tool definition."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }
