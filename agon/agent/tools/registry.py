"""Tool registry for dynamic tool management."""

from typing import Any

from loguru import logger

from agon.agent.tools.base import Tool


class ToolRegistry:
    """Registry of the tools offered to the model in one turn."""

    def __init__(self):
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools)

    def get_definitions(self) -> list[dict[str, Any]]:
        """Get all tool definitions in OpenAI format."""
        return [tool.to_schema() for tool in self._tools.values()]

    async def execute(self, name: str, params: dict[str, Any]) -> str:
        """
        Execute a tool by name.

        Args:
            name: Tool name.
            params: Tool arguments from the model.

        Returns:
            Tool result, or an error string the model can react to.
        """
        tool = self._tools.get(name)
        if not tool:
            return f"Error: Tool '{name}' not found"
        try:
            return await tool.execute(**params)
        except TypeError as e:
            return f"Error: invalid arguments for {name}: {e}"
        except Exception as e:
            logger.warning(f"Tool {name} failed: {e}")
            return f"Error executing {name}: {e}"

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools
