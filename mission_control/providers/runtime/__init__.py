"""PTY backends and the per-session runtime."""

from mission_control.providers.runtime.backend import PTYBackend, build_backend
from mission_control.providers.runtime.session import PtyHandle, SessionRuntime

__all__ = ["PTYBackend", "PtyHandle", "SessionRuntime", "build_backend"]
