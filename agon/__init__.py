"""Agon Arena - turn-based multi-agent debates on chat threads."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("agon-arena")
except PackageNotFoundError:
    __version__ = "0.1.0"

__logo__ = "⚔️"
__brand__ = "agon"
