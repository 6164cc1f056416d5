"""Exception hierarchy for the session orchestration core.

Validation failures subclass ``ValueError``; lifecycle failures subclass
``RuntimeError``. Asynchronous failures (output path, process exit) are never
raised; they surface as status events.
"""

from __future__ import annotations


class MissionControlError(Exception):
    """Base exception for all orchestration errors."""


class InvalidProjectPathError(MissionControlError, ValueError):
    """Project path is missing or not a directory."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Project path {reason}: {path}")


class DuplicateProjectError(MissionControlError, ValueError):
    """A project is already registered for this directory."""

    def __init__(self, path: str, existing_id: str) -> None:
        self.path = path
        self.existing_id = existing_id
        super().__init__(f"Project already exists for {path} (id={existing_id})")


class ProjectNotFoundError(MissionControlError, ValueError):
    def __init__(self, project_id: str) -> None:
        self.project_id = project_id
        super().__init__(f"Project {project_id} not found")


class SessionNotFoundError(MissionControlError, ValueError):
    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Session {session_id} not found")


class SessionAlreadyRunningError(MissionControlError, RuntimeError):
    """start() called while a process handle is attached."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Agent already running for session {session_id}")


class SessionNotRunningError(MissionControlError, RuntimeError):
    """Input sent to a session without a live process handle."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Agent not running for session {session_id}")


class OutputHandlerError(MissionControlError, RuntimeError):
    """A second output reader was registered for one session."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Output handler already attached for session {session_id}")


class PTYSpawnError(MissionControlError, RuntimeError):
    """Pseudo-terminal allocation failed."""

    def __init__(self, command: str, reason: str) -> None:
        self.command = command
        self.reason = reason
        super().__init__(f"Failed to spawn {command!r}: {reason}")
