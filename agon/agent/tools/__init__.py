"""Agent tools module."""

from agon.agent.tools.base import Tool
from agon.agent.tools.debate import build_debate_tools
from agon.agent.tools.registry import ToolRegistry

__all__ = ["Tool", "ToolRegistry", "build_debate_tools"]
