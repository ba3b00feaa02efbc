"""Durable job queue for turn processing."""

from agon.bus.queue import JobQueue, QueuedJob

__all__ = ["JobQueue", "QueuedJob"]
