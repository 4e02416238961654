"""Configuration module for iclockhub."""

from iclockhub.config.loader import get_config_path, load_config
from iclockhub.config.schema import Config

__all__ = ["Config", "load_config", "get_config_path"]
