"""Event bus module for registry-to-presentation notifications."""

from mission_control.bus.events import EventHub

__all__ = ["EventHub"]
