from __future__ import annotations

import pytest

from conftest import agent_launch, wait_until
from mission_control.bus.events import (
    ALL_EVENTS,
    PROJECT_REMOVED,
    EventHub,
    ProjectCreated,
    SessionCreated,
    SessionRemoved,
)
from mission_control.errors import (
    DuplicateProjectError,
    InvalidProjectPathError,
    ProjectNotFoundError,
    SessionNotFoundError,
)
from mission_control.providers.runtime.session import EOT, SessionRuntime
from mission_control.session.models import CommandRecord, Project, Session, utc_now
from mission_control.session.registry import SessionRegistry


@pytest.fixture
def registry(fast_config, backend_factory) -> SessionRegistry:
    def runtime_factory(session, project_path, config, publish):
        return SessionRuntime(
            session,
            project_path,
            config,
            publish,
            backend_factory=backend_factory,
            launch_resolver=agent_launch,
        )

    return SessionRegistry(fast_config, EventHub(), runtime_factory=runtime_factory)


def test_new_session_is_idle_with_empty_output(registry, project_dir) -> None:
    project = registry.create_project("demo", str(project_dir))
    session = registry.create_session(project.id, "Main", "first session")

    assert session.status == "idle"
    assert len(session.output) == 0
    assert session.description == "first session"
    assert project.sessions == [session]
    assert registry.get_session(session.id) is session
    assert registry.is_running(session.id) is False


def test_create_project_resolves_path(registry, project_dir, monkeypatch) -> None:
    monkeypatch.chdir(project_dir.parent)

    project = registry.create_project("demo", project_dir.name)

    assert project.path == str(project_dir.resolve())


def test_create_project_rejects_missing_or_file_path(registry, tmp_path) -> None:
    file_path = tmp_path / "notes.txt"
    file_path.write_text("x", encoding="utf-8")

    with pytest.raises(InvalidProjectPathError):
        registry.create_project("missing", str(tmp_path / "nope"))
    with pytest.raises(InvalidProjectPathError):
        registry.create_project("file", str(file_path))
    assert registry.all_projects() == []


def test_duplicate_project_path_is_rejected(registry, project_dir) -> None:
    first = registry.create_project("demo", str(project_dir))

    with pytest.raises(DuplicateProjectError) as excinfo:
        registry.create_project("again", str(project_dir) + "/")

    assert excinfo.value.existing_id == first.id
    assert len(registry.all_projects()) == 1


def test_unknown_ids(registry) -> None:
    with pytest.raises(ProjectNotFoundError):
        registry.create_session("missing", "Main")
    with pytest.raises(SessionNotFoundError):
        registry.stop_session("missing")
    with pytest.raises(SessionNotFoundError):
        registry.send_session_input("missing", "hi\r")
    assert registry.remove_project("missing") is False
    assert registry.remove_session("missing") is False


def test_events_see_consistent_state(registry, project_dir) -> None:
    seen: list = []

    def check(event) -> None:
        if isinstance(event, SessionCreated):
            project = registry.get_project(event.project_id)
            seen.append(("created", event.session in project.sessions, registry.get_session(event.session.id)))
        elif isinstance(event, SessionRemoved):
            project = registry.get_project(event.project_id)
            seen.append(("removed", project.find_session(event.session_id)))

    registry.hub.subscribe(ALL_EVENTS, check)
    project = registry.create_project("demo", str(project_dir))
    session = registry.create_session(project.id, "Main")
    registry.remove_session(session.id)

    assert seen == [("created", True, session), ("removed", None)]
    with pytest.raises(SessionNotFoundError):
        registry.get_session(session.id)


@pytest.mark.asyncio
async def test_remove_project_stops_live_sessions_first(registry, project_dir, backend_factory) -> None:
    project = registry.create_project("demo", str(project_dir))
    running = registry.create_session(project.id, "Running")
    registry.create_session(project.id, "Idle")
    await registry.start_session(running.id)
    backend = backend_factory.last

    eot_before_removal: list[bool] = []
    registry.hub.subscribe(PROJECT_REMOVED, lambda event: eot_before_removal.append(EOT in backend.writes))

    assert registry.remove_project(project.id) is True

    assert eot_before_removal == [True]
    assert registry.all_projects() == []
    with pytest.raises(SessionNotFoundError):
        registry.get_session(running.id)


@pytest.mark.asyncio
async def test_remove_project_emits_session_removed_before_project_removed(
    registry, project_dir, backend_factory
) -> None:
    project = registry.create_project("demo", str(project_dir))
    running = registry.create_session(project.id, "Running")
    idle = registry.create_session(project.id, "Idle")
    await registry.start_session(running.id)
    events: list = []
    registry.hub.subscribe(ALL_EVENTS, events.append)

    registry.remove_project(project.id)
    await wait_until(lambda: running.status == "idle")

    removed = [(e.name, getattr(e, "session_id", None)) for e in events if e.name.endswith(":removed")]
    assert removed == [
        ("session:removed", running.id),
        ("session:removed", idle.id),
        ("project:removed", None),
    ]
    assert not [e for e in events if e.name == "session:status"]


@pytest.mark.asyncio
async def test_remove_session_stops_process(registry, project_dir, backend_factory) -> None:
    project = registry.create_project("demo", str(project_dir))
    session = registry.create_session(project.id, "Main")
    await registry.start_session(session.id)

    assert registry.remove_session(session.id) is True

    assert backend_factory.last.writes == [EOT]
    assert project.sessions == []


@pytest.mark.asyncio
async def test_runtime_events_are_republished(registry, project_dir, backend_factory) -> None:
    names: list[str] = []
    registry.hub.subscribe(ALL_EVENTS, lambda event: names.append(event.name))
    project = registry.create_project("demo", str(project_dir))
    session = registry.create_session(project.id, "Main")

    await registry.start_session(session.id)
    backend_factory.last.feed("hello\n")
    await wait_until(lambda: "session:output" in names)
    registry.clear_session_output(session.id)

    assert names[:3] == ["project:created", "session:created", "session:status"]
    assert "session:progress" in names
    assert names[-1] == "session:output:cleared"


@pytest.mark.asyncio
async def test_submitted_commands_are_recorded(registry, project_dir) -> None:
    project = registry.create_project("demo", str(project_dir))
    session = registry.create_session(project.id, "Main")
    await registry.start_session(session.id)

    for text in ("ls", "git status", "ls"):
        registry.send_session_input(session.id, text + "\r")
    registry.send_session_input(session.id, "partial")

    assert [r.command for r in registry.command_history] == ["ls", "git status", "ls"]
    assert registry.recent_commands(project.id) == ["ls", "git status"]
    assert registry.recent_commands(project.id, limit=1) == ["ls"]
    assert registry.recent_commands("other") == []
    assert session.last_command == "ls"


@pytest.mark.asyncio
async def test_command_history_is_bounded(registry, project_dir) -> None:
    registry.config.persistence.command_history_limit = 5
    project = registry.create_project("demo", str(project_dir))
    session = registry.create_session(project.id, "Main")
    await registry.start_session(session.id)

    for index in range(8):
        registry.send_session_input(session.id, f"cmd {index}\r")

    history = registry.command_history
    assert len(history) == 5
    assert history[0].command == "cmd 7"
    assert history[-1].command == "cmd 3"


def test_restore_skips_vanished_directories(registry, project_dir, tmp_path) -> None:
    kept = Project(id="p-1", name="kept", path=str(project_dir))
    kept.sessions.append(Session(id="s-1", project_id="p-1", name="Main", status="active"))
    gone = Project(id="p-2", name="gone", path=str(tmp_path / "deleted"))
    record = CommandRecord(id="c-1", project_id="p-1", command="make", timestamp=utc_now())
    created: list = []
    registry.hub.subscribe("project:created", created.append)

    restored = registry.restore([kept, gone], [record])

    assert restored == 1
    assert [p.id for p in registry.all_projects()] == ["p-1"]
    assert registry.get_session("s-1").status == "idle"
    assert registry.is_running("s-1") is False
    assert registry.recent_commands("p-1") == ["make"]
    assert [type(e) for e in created] == [ProjectCreated]


@pytest.mark.asyncio
async def test_cleanup_stops_everything(registry, project_dir, backend_factory) -> None:
    project = registry.create_project("demo", str(project_dir))
    first = registry.create_session(project.id, "One")
    second = registry.create_session(project.id, "Two")
    await registry.start_session(first.id)
    await registry.start_session(second.id)

    handles = registry.cleanup()

    assert len(handles) == 2
    assert all(EOT in backend.writes for backend in backend_factory.backends)
    await wait_until(lambda: all(h.exited for h in handles))
    assert first.status == "idle" and second.status == "idle"
