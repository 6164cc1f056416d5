from __future__ import annotations

import json
from datetime import datetime, timezone

from mission_control.session.models import CommandRecord, OutputLog, ProgressState, Project, Session
from mission_control.session.state_store import StateStore


def _store(tmp_path) -> StateStore:
    return StateStore(tmp_path / "state" / "state.json")


def _sample_projects(project_dir) -> list[Project]:
    created = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)
    session = Session(
        id="s-1",
        project_id="p-1",
        name="Main",
        description="refactor",
        status="active",
        last_command="run tests",
        output=OutputLog(["\x1b[32mhello\x1b[0m\r\n", "world\r\n"]),
        progress=ProgressState.started(),
        created_at=created,
        updated_at=created,
    )
    other = Session(id="s-2", project_id="p-1", name="Errored", status="error")
    project = Project(id="p-1", name="demo", path=str(project_dir), sessions=[session, other], created_at=created)
    return [project]


def test_load_missing_file_returns_none(tmp_path) -> None:
    assert _store(tmp_path).load() is None


def test_load_empty_file_returns_none(tmp_path) -> None:
    store = _store(tmp_path)
    store.path.parent.mkdir(parents=True)
    store.path.write_text("   \n", encoding="utf-8")

    assert store.load() is None


def test_load_non_list_projects_returns_none(tmp_path) -> None:
    store = _store(tmp_path)
    store.path.parent.mkdir(parents=True)
    store.path.write_text(json.dumps({"projects": "not-an-array"}), encoding="utf-8")

    assert store.load() is None
    assert store.path.exists()


def test_load_corrupt_file_deletes_it(tmp_path) -> None:
    store = _store(tmp_path)
    store.path.parent.mkdir(parents=True)
    store.path.write_text('{"projects": [', encoding="utf-8")

    assert store.load() is None
    assert not store.path.exists()


def test_load_invalid_utf8_deletes_it(tmp_path) -> None:
    store = _store(tmp_path)
    store.path.parent.mkdir(parents=True)
    store.path.write_bytes(b'{"projects": [\xff\xfe]}')

    assert store.load() is None
    assert not store.path.exists()


def test_load_deeply_nested_json_deletes_it(tmp_path) -> None:
    store = _store(tmp_path)
    store.path.parent.mkdir(parents=True)
    store.path.write_text("[" * 200000 + "]" * 200000, encoding="utf-8")

    assert store.load() is None
    assert not store.path.exists()


def test_round_trip_restores_identity_and_transcript(tmp_path, project_dir) -> None:
    store = _store(tmp_path)
    projects = _sample_projects(project_dir)
    commands = [
        CommandRecord(
            id="c-1",
            project_id="p-1",
            session_id="s-1",
            command="run tests",
            timestamp=datetime(2024, 5, 1, 13, 0, tzinfo=timezone.utc),
        )
    ]

    assert store.save(projects, commands) is True
    loaded = store.load()

    assert loaded is not None
    [project] = loaded.projects
    assert (project.id, project.name, project.path) == ("p-1", "demo", str(project_dir))
    assert project.created_at == projects[0].created_at
    assert [s.id for s in project.sessions] == ["s-1", "s-2"]
    main = project.sessions[0]
    assert main.name == "Main"
    assert main.description == "refactor"
    assert main.last_command == "run tests"
    assert main.output.snapshot() == ["\x1b[32mhello\x1b[0m\r\n", "world\r\n"]
    assert main.project_id == "p-1"
    assert all(s.status == "idle" for s in project.sessions)
    assert all(s.progress is None for s in project.sessions)
    assert loaded.recent_commands == commands


def test_saved_document_uses_iso_timestamps(tmp_path, project_dir) -> None:
    store = _store(tmp_path)
    store.save(_sample_projects(project_dir))

    data = json.loads(store.path.read_text(encoding="utf-8"))

    session = data["projects"][0]["sessions"][0]
    assert session["created_at"] == "2024-05-01T12:30:00+00:00"
    assert "status" not in session
    assert "progress" not in session
    assert data["recent_commands"] == []


def test_save_rewrites_whole_file(tmp_path, project_dir) -> None:
    store = _store(tmp_path)
    store.save(_sample_projects(project_dir))
    store.save([])

    loaded = store.load()

    assert loaded is not None
    assert loaded.projects == []


def test_malformed_entries_are_skipped(tmp_path) -> None:
    store = _store(tmp_path)
    store.path.parent.mkdir(parents=True)
    payload = {
        "projects": [
            {"id": "p-1", "name": "ok", "path": "/tmp", "sessions": [{"name": "no id"}, {"id": "s-1"}]},
            {"name": "no id or path"},
            "garbage",
        ],
        "recent_commands": [{"command": "missing project"}, None],
    }
    store.path.write_text(json.dumps(payload), encoding="utf-8")

    loaded = store.load()

    assert loaded is not None
    assert [p.id for p in loaded.projects] == ["p-1"]
    assert [s.id for s in loaded.projects[0].sessions] == ["s-1"]
    assert loaded.recent_commands == []


def test_clear_removes_file(tmp_path, project_dir) -> None:
    store = _store(tmp_path)
    store.save(_sample_projects(project_dir))

    assert store.clear() is True
    assert store.clear() is False
    assert store.load() is None
