"""Observability helpers: log sinks and turn telemetry."""

from agon.observability.logging import setup_logging
from agon.observability.turn_events import TurnEventStatus, TurnEventWriter, TurnPhase

__all__ = ["TurnEventStatus", "TurnEventWriter", "TurnPhase", "setup_logging"]
