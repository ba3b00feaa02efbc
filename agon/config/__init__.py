"""Configuration module for agon."""

from agon.config.loader import get_config_path, load_config
from agon.config.schema import Config

__all__ = ["Config", "load_config", "get_config_path"]
