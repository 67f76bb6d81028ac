"""Configuration module."""

from koruclub.core.config.loader import load_config
from koruclub.core.config.schema import Config

__all__ = ["Config", "load_config"]
