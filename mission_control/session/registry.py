"""Session registry: owns projects, sessions and their runtimes."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Iterable

from loguru import logger

from mission_control.bus.events import (
    EventHub,
    ProjectCreated,
    ProjectRemoved,
    RuntimeEvent,
    SessionCreated,
    SessionRemoved,
)
from mission_control.config.schema import Config
from mission_control.errors import (
    DuplicateProjectError,
    InvalidProjectPathError,
    ProjectNotFoundError,
    SessionNotFoundError,
)
from mission_control.providers.output_classifier import OutputClassifier
from mission_control.providers.runtime.session import PtyHandle, SessionRuntime
from mission_control.session.models import (
    CommandRecord,
    OutputLog,
    Project,
    Session,
    new_id,
    utc_now,
)

RuntimeFactory = Callable[[Session, str, Config, Callable[[RuntimeEvent], None]], SessionRuntime]


def _default_runtime_factory(
    session: Session,
    project_path: str,
    config: Config,
    publish: Callable[[RuntimeEvent], None],
) -> SessionRuntime:
    rt = config.runtime
    classifier = OutputClassifier(silence_threshold_s=rt.silence_threshold_s, rate_window_s=rt.rate_window_s)
    return SessionRuntime(session, project_path, config, publish, classifier=classifier)


def validate_project_path(path: str) -> str:
    """Return the absolute path of an existing directory or raise."""
    candidate = Path(path).expanduser()
    if not candidate.exists():
        raise InvalidProjectPathError(path, "does not exist")
    if not candidate.is_dir():
        raise InvalidProjectPathError(path, "is not a directory")
    return str(candidate.resolve())


class SessionRegistry:
    """Project -> Session tree plus one runtime per session.

    Mutations update both the project's session list and the flat index
    before any event is published. Creating a second project for a directory
    that already has one raises ``DuplicateProjectError``.
    """

    def __init__(
        self,
        config: Config | None = None,
        hub: EventHub | None = None,
        runtime_factory: RuntimeFactory = _default_runtime_factory,
    ) -> None:
        self.config = config or Config()
        self.hub = hub or EventHub()
        self._runtime_factory = runtime_factory
        self._projects: dict[str, Project] = {}
        self._sessions: dict[str, Session] = {}
        self._runtimes: dict[str, SessionRuntime] = {}
        self._recent_commands: list[CommandRecord] = []

    # ------------------------------------------------------------------ #
    # Projects                                                             #
    # ------------------------------------------------------------------ #

    def create_project(self, name: str, path: str) -> Project:
        resolved = validate_project_path(path)
        existing = self.find_project_by_path(resolved)
        if existing is not None:
            raise DuplicateProjectError(resolved, existing.id)
        project = Project(id=new_id(), name=name, path=resolved)
        self._projects[project.id] = project
        logger.info(f"[registry] Project {project.name!r} created at {resolved}")
        self.hub.publish(ProjectCreated(project=project))
        return project

    def remove_project(self, project_id: str) -> bool:
        project = self._projects.get(project_id)
        if project is None:
            return False
        for session in list(project.sessions):
            runtime = self._runtimes.pop(session.id, None)
            if runtime is not None:
                runtime.stop()
            self._sessions.pop(session.id, None)
            self.hub.publish(SessionRemoved(project_id=project_id, session_id=session.id))
        del self._projects[project_id]
        logger.info(f"[registry] Project {project.name!r} removed")
        self.hub.publish(ProjectRemoved(project_id=project_id))
        return True

    def get_project(self, project_id: str) -> Project:
        project = self._projects.get(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        return project

    def find_project_by_path(self, path: str) -> Project | None:
        for project in self._projects.values():
            if project.path == path:
                return project
        return None

    def all_projects(self) -> list[Project]:
        return list(self._projects.values())

    # ------------------------------------------------------------------ #
    # Sessions                                                             #
    # ------------------------------------------------------------------ #

    def create_session(self, project_id: str, name: str, description: str | None = None) -> Session:
        project = self.get_project(project_id)
        session = Session(
            id=new_id(),
            project_id=project_id,
            name=name,
            description=description,
            output=self._new_output_log(),
        )
        self._register_session(project, session)
        logger.info(f"[registry] Session {name!r} created in project {project.name!r}")
        self.hub.publish(SessionCreated(project_id=project_id, session=session))
        return session

    def remove_session(self, session_id: str) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            return False
        runtime = self._runtimes.pop(session_id, None)
        if runtime is not None:
            runtime.stop()
        project = self._projects.get(session.project_id)
        if project is not None:
            project.sessions = [s for s in project.sessions if s.id != session_id]
            project.touch()
        del self._sessions[session_id]
        self.hub.publish(SessionRemoved(project_id=session.project_id, session_id=session_id))
        return True

    def get_session(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def runtime(self, session_id: str) -> SessionRuntime:
        self.get_session(session_id)
        return self._runtimes[session_id]

    def is_running(self, session_id: str) -> bool:
        runtime = self._runtimes.get(session_id)
        return runtime is not None and runtime.is_running

    async def start_session(self, session_id: str) -> None:
        await self.runtime(session_id).start()

    def stop_session(self, session_id: str) -> None:
        self.runtime(session_id).stop()

    def send_session_input(self, session_id: str, data: str | bytes) -> None:
        session = self.get_session(session_id)
        for line in self.runtime(session_id).send_input(data):
            self._record_command(session, line)

    def clear_session_output(self, session_id: str) -> None:
        self.runtime(session_id).clear_output()

    def resize_session(self, session_id: str, cols: int, rows: int) -> None:
        self.runtime(session_id).resize(cols, rows)

    def cleanup(self) -> list[PtyHandle]:
        """Stop every running session; returns the handles being reaped."""
        stopping: list[PtyHandle] = []
        for session_id, runtime in list(self._runtimes.items()):
            if runtime.is_running:
                logger.info(f"[registry] Stopping session {session_id} on shutdown")
                handle = runtime.stop()
                if handle is not None:
                    stopping.append(handle)
        return stopping

    # ------------------------------------------------------------------ #
    # Command history                                                      #
    # ------------------------------------------------------------------ #

    @property
    def command_history(self) -> list[CommandRecord]:
        """Newest first."""
        return list(self._recent_commands)

    def recent_commands(self, project_id: str | None = None, limit: int = 10) -> list[str]:
        """Unique command texts, newest first."""
        seen: list[str] = []
        for record in self._recent_commands:
            if project_id is not None and record.project_id != project_id:
                continue
            if record.command not in seen:
                seen.append(record.command)
            if len(seen) >= limit:
                break
        return seen

    def _record_command(self, session: Session, line: str) -> None:
        record = CommandRecord(
            id=new_id(),
            project_id=session.project_id,
            session_id=session.id,
            command=line,
            timestamp=utc_now(),
        )
        self._recent_commands.insert(0, record)
        del self._recent_commands[self.config.persistence.command_history_limit:]

    # ------------------------------------------------------------------ #
    # Restore                                                              #
    # ------------------------------------------------------------------ #

    def restore(self, projects: Iterable[Project], commands: Iterable[CommandRecord] = ()) -> int:
        """Adopt persisted projects; returns the number restored.

        Sessions come back idle with no process. Projects whose directory
        vanished, or whose id or path is already registered, are skipped.
        """
        restored = 0
        for project in projects:
            if project.id in self._projects:
                logger.warning(f"[registry] Skipping duplicate project id {project.id}")
                continue
            try:
                project.path = validate_project_path(project.path)
            except InvalidProjectPathError as exc:
                logger.warning(f"[registry] Skipping saved project {project.name!r}: {exc}")
                continue
            if self.find_project_by_path(project.path) is not None:
                logger.warning(f"[registry] Skipping saved project {project.name!r}: path already registered")
                continue

            sessions = list(project.sessions)
            project.sessions = []
            self._projects[project.id] = project
            for session in sessions:
                session.status = "idle"
                session.progress = None
                session.output = self._new_output_log(session.output.snapshot())
                self._register_session(project, session, touch=False)
            restored += 1
            self.hub.publish(ProjectCreated(project=project))

        limit = self.config.persistence.command_history_limit
        self._recent_commands = (self._recent_commands + list(commands))[:limit]
        return restored

    # ------------------------------------------------------------------ #
    # Private helpers                                                      #
    # ------------------------------------------------------------------ #

    def _register_session(self, project: Project, session: Session, touch: bool = True) -> None:
        runtime = self._runtime_factory(session, project.path, self.config, self._runtime_publisher(session))
        project.sessions.append(session)
        self._sessions[session.id] = session
        self._runtimes[session.id] = runtime
        if touch:
            project.touch()

    def _runtime_publisher(self, session: Session) -> Callable[[RuntimeEvent], None]:
        """Forward a runtime's events while its session is still registered."""

        def publish(event: RuntimeEvent) -> None:
            if self._sessions.get(session.id) is not session:
                logger.debug(f"[registry] Dropping {event.name} for removed session {session.id}")
                return
            self.hub.publish(event)

        return publish

    def _new_output_log(self, chunks: Iterable[str] = ()) -> OutputLog:
        rt = self.config.runtime
        return OutputLog(chunks, max_chunks=rt.max_output_chunks, max_bytes=rt.max_output_bytes)
