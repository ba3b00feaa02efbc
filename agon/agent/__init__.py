"""Prompt assembly, history sync and the tool-calling loop."""

from agon.agent.context import ContextBuilder
from agon.agent.history import HistorySynchronizer
from agon.agent.loop import ToolCallLoop, TurnReply

__all__ = ["ContextBuilder", "HistorySynchronizer", "ToolCallLoop", "TurnReply"]
