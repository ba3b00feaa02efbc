"""Chat platform gateways."""

from agon.channels.base import BotIdentity, ChatGateway, ChatMessage, PostedMessage
from agon.channels.discord import DiscordGateway

__all__ = ["BotIdentity", "ChatGateway", "ChatMessage", "DiscordGateway", "PostedMessage"]
