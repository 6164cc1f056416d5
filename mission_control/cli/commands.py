"""CLI commands for mission-control."""

from __future__ import annotations

import asyncio
import sys
import threading
from pathlib import Path

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from mission_control import __version__
from mission_control.errors import SessionNotRunningError

app = typer.Typer(
    name="mission-control",
    help="mission-control - Run and watch CLI agent sessions per project",
    no_args_is_help=True,
)
console = Console()


def version_callback(value: bool) -> None:
    if value:
        console.print(f"mission-control v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
    ),
    log_level: str = typer.Option("", "--log-level", help="Override the configured log level."),
) -> None:
    """mission-control entrypoint."""
    del version
    from mission_control.config.loader import load_config
    from mission_control.utils.helpers import setup_logging

    config = load_config()
    setup_logging(log_level or config.logging.level, config.logging.file or None)


@app.command()
def version() -> None:
    """Print the installed version."""
    console.print(f"mission-control v{__version__}")


@app.command()
def projects() -> None:
    """List saved projects and their sessions."""
    from mission_control.config.loader import load_config
    from mission_control.session.state_store import StateStore

    config = load_config()
    saved = StateStore(config.state_path).load()
    if saved is None or not saved.projects:
        console.print("[yellow]No saved projects.[/yellow]")
        return

    table = Table(title="Projects")
    table.add_column("Project", style="cyan")
    table.add_column("Path")
    table.add_column("Session")
    table.add_column("Session ID", style="dim")
    table.add_column("Last command")
    for project in saved.projects:
        if not project.sessions:
            table.add_row(project.name, project.path, "-", "", "")
        for index, session in enumerate(project.sessions):
            table.add_row(
                project.name if index == 0 else "",
                project.path if index == 0 else "",
                session.name,
                session.id,
                session.last_command or "",
            )
    console.print(table)


@app.command()
def show(
    session_id: str = typer.Argument(..., help="Session id (a unique prefix is enough)."),
    cols: int = typer.Option(0, "--cols", help="Terminal width used for rendering."),
) -> None:
    """Render a saved session transcript as plain text."""
    from mission_control.config.loader import load_config
    from mission_control.session.state_store import StateStore
    from mission_control.utils.screen import render_transcript

    config = load_config()
    saved = StateStore(config.state_path).load()
    matches = [
        session
        for project in (saved.projects if saved else [])
        for session in project.sessions
        if session.id.startswith(session_id)
    ]
    if not matches:
        console.print(f"[red]No saved session matches '{session_id}'.[/red]")
        raise typer.Exit(1)
    if len(matches) > 1:
        console.print(f"[red]'{session_id}' is ambiguous ({len(matches)} sessions).[/red]")
        raise typer.Exit(1)

    session = matches[0]
    rendered = render_transcript(session.output.snapshot(), cols=cols or config.runtime.cols, rows=config.runtime.rows)
    console.print(f"[bold]{session.name}[/bold] [dim]{session.id}[/dim]")
    console.print(rendered, markup=False, highlight=False)


@app.command()
def run(
    path: Path = typer.Argument(..., help="Project directory."),
    name: str = typer.Option("", "--name", help="Project name (defaults to the directory name)."),
    session_name: str = typer.Option("Session 1", "--session", help="Session name."),
    simulator: bool = typer.Option(False, "--simulator", help="Use the bundled agent simulator."),
) -> None:
    """Start one agent session headless; stdin lines are forwarded to it."""
    from mission_control.config.loader import load_config

    config = load_config()
    if simulator:
        config.test_mode.simulator = True
    try:
        code = asyncio.run(_run_headless(config, path, name, session_name))
    except KeyboardInterrupt:
        code = 130
    raise typer.Exit(code)


@app.command("clear-state")
def clear_state(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Delete the persisted projects/sessions state file."""
    from mission_control.config.loader import load_config
    from mission_control.session.state_store import StateStore

    store = StateStore(load_config().state_path)
    if not store.path.exists():
        console.print("[dim]No state file.[/dim]")
        return
    if not yes and not typer.confirm(f"Delete {store.path}?"):
        raise typer.Exit()
    if store.clear():
        console.print(f"[green]OK[/green] Removed {store.path}")


async def _run_headless(config: "Config", path: Path, name: str, session_name: str) -> int:
    from mission_control.bus.events import SESSION_OUTPUT, SESSION_STATUS
    from mission_control.errors import MissionControlError
    from mission_control.host import MissionControlHost
    from mission_control.utils.crash import install_crash_handler
    from mission_control.utils.helpers import get_data_path

    install_crash_handler(get_data_path(config.persistence.state_dir), exit_on_uncaught=False)
    host = MissionControlHost(config)
    await host.start()
    registry = host.registry

    finished = asyncio.Event()
    final_status: dict[str, str] = {}

    try:
        resolved = str(path.expanduser().resolve())
        project = registry.find_project_by_path(resolved) or registry.create_project(
            name or path.expanduser().resolve().name, resolved
        )
        session = next((s for s in project.sessions if s.name == session_name), None)
        if session is None:
            session = registry.create_session(project.id, session_name)
    except MissionControlError as exc:
        console.print(f"[red]{exc}[/red]")
        await host.shutdown()
        return 2

    def on_output(event) -> None:
        if event.session_id == session.id:
            sys.stdout.write(event.chunk)
            sys.stdout.flush()

    def on_status(event) -> None:
        if event.session_id == session.id and event.status != "active":
            final_status["status"] = event.status
            finished.set()

    registry.hub.subscribe(SESSION_OUTPUT, on_output)
    registry.hub.subscribe(SESSION_STATUS, on_status)

    await registry.start_session(session.id)
    _start_stdin_forwarder(registry, session.id, asyncio.get_running_loop())
    try:
        await finished.wait()
    finally:
        await host.shutdown()

    status = final_status.get("status", "idle")
    logger.info(f"[cli] Session {session.id} ended with status {status}")
    return 0 if status == "idle" else 1


def _start_stdin_forwarder(registry, session_id: str, loop: asyncio.AbstractEventLoop) -> None:
    """Forward stdin lines (CR-terminated) from a daemon thread."""

    def deliver(line: str | None) -> None:
        try:
            if line is None:
                registry.stop_session(session_id)
            else:
                registry.send_session_input(session_id, line + "\r")
        except SessionNotRunningError:
            pass

    def read_loop() -> None:
        try:
            for raw in sys.stdin:
                loop.call_soon_threadsafe(deliver, raw.rstrip("\r\n"))
            loop.call_soon_threadsafe(deliver, None)
        except RuntimeError:
            # Event loop already closed.
            return

    threading.Thread(target=read_loop, name="stdin-forwarder", daemon=True).start()
