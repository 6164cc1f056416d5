"""Configuration module for mission-control."""

from mission_control.config.loader import get_config_path, load_config, save_config
from mission_control.config.schema import Config

__all__ = ["Config", "get_config_path", "load_config", "save_config"]
