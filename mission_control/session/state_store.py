"""Durable projects/sessions snapshot stored as one JSON document."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable

from loguru import logger

from mission_control.config.schema import Config
from mission_control.session.models import CommandRecord, OutputLog, Project, Session, new_id, utc_now

_STATE_VERSION = 1


def default_state_path() -> Path:
    """Return default path for the persisted state document."""
    return Config().state_path


@dataclass
class SavedState:
    """What ``StateStore.load`` hands back; sessions are always idle."""

    projects: list[Project] = field(default_factory=list)
    recent_commands: list[CommandRecord] = field(default_factory=list)


class StateStore:
    """Whole-file JSON persistence for projects, sessions and command history.

    Document layout::

        {
          "version": 1,
          "projects": [{"id", "name", "path", "created_at", "updated_at",
                        "sessions": [{"id", "name", "description",
                                      "last_command", "output": [...],
                                      "created_at", "updated_at"}]}],
          "recent_commands": [{"id", "project_id", "session_id",
                               "command", "timestamp"}]
        }

    Live process handles and progress are never written.
    """

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or default_state_path()

    # ------------------------------------------------------------------ #
    # Save                                                                 #
    # ------------------------------------------------------------------ #

    def save(self, projects: Iterable[Project], recent_commands: Iterable[CommandRecord] = ()) -> bool:
        """Rewrite the state file; returns False when the write failed."""
        payload = {
            "version": _STATE_VERSION,
            "saved_at": utc_now().isoformat(),
            "projects": [_project_to_dict(p) for p in projects],
            "recent_commands": [_command_to_dict(c) for c in recent_commands],
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
            tmp.replace(self.path)
        except OSError as exc:
            logger.error(f"[state] Failed to save state to {self.path}: {exc}")
            return False
        logger.debug(f"[state] Saved {len(payload['projects'])} projects to {self.path}")
        return True

    # ------------------------------------------------------------------ #
    # Load                                                                 #
    # ------------------------------------------------------------------ #

    def load(self) -> SavedState | None:
        """Read the state file; None means "no saved state".

        A file that is not valid UTF-8 JSON is deleted.
        """
        if not self.path.exists():
            return None
        try:
            raw = self.path.read_text(encoding="utf-8")
        except UnicodeDecodeError as exc:
            logger.warning(f"[state] Corrupt state file {self.path} removed: {exc}")
            self.clear()
            return None
        except OSError as exc:
            logger.warning(f"[state] Failed to read {self.path}: {exc}")
            return None
        if not raw.strip():
            return None

        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError, RecursionError) as exc:
            logger.warning(f"[state] Corrupt state file {self.path} removed: {exc}")
            self.clear()
            return None

        if not isinstance(data, dict) or not isinstance(data.get("projects"), list):
            logger.warning(f"[state] State file {self.path} has no project list, ignoring")
            return None

        state = SavedState()
        for item in data["projects"]:
            project = _project_from_dict(item)
            if project is not None:
                state.projects.append(project)
        commands = data.get("recent_commands")
        if isinstance(commands, list):
            for item in commands:
                record = _command_from_dict(item)
                if record is not None:
                    state.recent_commands.append(record)
        logger.info(f"[state] Loaded {len(state.projects)} projects from {self.path}")
        return state

    def clear(self) -> bool:
        """Delete the state file; returns True when a file was removed."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            logger.warning(f"[state] Failed to delete {self.path}: {exc}")
            return False
        return True


# ---------------------------------------------------------------------- #
# Serialisation helpers                                                    #
# ---------------------------------------------------------------------- #


def _iso(value: datetime) -> str:
    return value.isoformat()


def _parse_dt(value: Any) -> datetime:
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            pass
    return utc_now()


def _session_to_dict(session: Session) -> dict[str, Any]:
    return {
        "id": session.id,
        "name": session.name,
        "description": session.description,
        "last_command": session.last_command,
        "output": session.output.snapshot(),
        "created_at": _iso(session.created_at),
        "updated_at": _iso(session.updated_at),
    }


def _project_to_dict(project: Project) -> dict[str, Any]:
    return {
        "id": project.id,
        "name": project.name,
        "path": project.path,
        "created_at": _iso(project.created_at),
        "updated_at": _iso(project.updated_at),
        "sessions": [_session_to_dict(s) for s in project.sessions],
    }


def _command_to_dict(record: CommandRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "project_id": record.project_id,
        "session_id": record.session_id,
        "command": record.command,
        "timestamp": _iso(record.timestamp),
    }


def _session_from_dict(data: Any, project_id: str) -> Session | None:
    if not isinstance(data, dict) or not data.get("id"):
        return None
    output = data.get("output")
    chunks = [c for c in output if isinstance(c, str)] if isinstance(output, list) else []
    if isinstance(output, str):
        chunks = [output]
    return Session(
        id=str(data["id"]),
        project_id=project_id,
        name=str(data.get("name", "")),
        description=data.get("description"),
        status="idle",
        last_command=data.get("last_command"),
        output=OutputLog(chunks),
        progress=None,
        created_at=_parse_dt(data.get("created_at")),
        updated_at=_parse_dt(data.get("updated_at")),
    )


def _project_from_dict(data: Any) -> Project | None:
    if not isinstance(data, dict) or not data.get("id") or not data.get("path"):
        return None
    project_id = str(data["id"])
    sessions: list[Session] = []
    raw_sessions = data.get("sessions")
    if isinstance(raw_sessions, list):
        for item in raw_sessions:
            session = _session_from_dict(item, project_id)
            if session is not None:
                sessions.append(session)
    return Project(
        id=project_id,
        name=str(data.get("name", "")),
        path=str(data["path"]),
        sessions=sessions,
        created_at=_parse_dt(data.get("created_at")),
        updated_at=_parse_dt(data.get("updated_at")),
    )


def _command_from_dict(data: Any) -> CommandRecord | None:
    if not isinstance(data, dict) or not data.get("command") or not data.get("project_id"):
        return None
    return CommandRecord(
        id=str(data.get("id") or new_id()),
        project_id=str(data["project_id"]),
        session_id=data.get("session_id"),
        command=str(data["command"]),
        timestamp=_parse_dt(data.get("timestamp")),
    )
