"""Relational state of rooms, agents, messages and memories."""

from agon.store.database import Database
from agon.store.memory import MemoryStore
from agon.store.models import Agent, AuthorType, Room, RoomStatus, StoredMessage
from agon.store.rooms import RoomStore

__all__ = [
    "Agent",
    "AuthorType",
    "Database",
    "MemoryStore",
    "Room",
    "RoomStatus",
    "RoomStore",
    "StoredMessage",
]
