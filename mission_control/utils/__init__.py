"""Utility functions for mission-control."""

from mission_control.utils.helpers import ensure_dir, get_data_path, setup_logging

__all__ = ["ensure_dir", "get_data_path", "setup_logging"]
