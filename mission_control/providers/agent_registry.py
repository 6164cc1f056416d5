"""Launch command resolution for the interactive CLI agent."""

from __future__ import annotations

import os
import shlex
import shutil
import sys
from dataclasses import dataclass

from mission_control.config.schema import Config

# Legacy switches honoured alongside MISSION_CONTROL_TEST_MODE__*.
SIMULATOR_ENV = "USE_TEST_CLAUDE"
ECHO_ENV = "USE_SAFE_PTY_TEST"

SIMULATOR_MODULE = "mission_control.simulators.claude_sim"
ECHO_MODULE = "mission_control.simulators.echo_agent"


@dataclass(frozen=True)
class LaunchSpec:
    """Resolved argv for one PTY spawn."""

    argv: tuple[str, ...]
    label: str
    informational: bool = False

    @property
    def display(self) -> str:
        return " ".join(shlex.quote(part) for part in self.argv)


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in {"1", "true", "yes", "on"}


def resolve_agent_command(config: Config) -> list[str]:
    """Resolve agent argv from env override or configured command."""
    value = os.getenv(config.agent.env_override, "").strip()
    command = value or config.agent.command
    try:
        argv = shlex.split(command)
    except ValueError:
        argv = command.split()
    return argv + list(config.agent.args)


def resolve_launch(config: Config) -> LaunchSpec:
    """Pick the executable for a new session.

    Test-mode switches select a bundled script. If the agent executable is
    not on PATH, an informational shell explains the missing dependency
    instead of failing the start.
    """
    if config.test_mode.echo or _env_flag(ECHO_ENV):
        return LaunchSpec(argv=(sys.executable, "-m", ECHO_MODULE), label="echo")
    if config.test_mode.simulator or _env_flag(SIMULATOR_ENV):
        return LaunchSpec(argv=(sys.executable, "-m", SIMULATOR_MODULE), label="simulator")

    argv = resolve_agent_command(config)
    binary = argv[0] if argv else ""
    resolved = shutil.which(binary) if binary else None
    if not resolved:
        return informational_shell(binary or config.agent.command)
    return LaunchSpec(argv=(resolved, *argv[1:]), label=os.path.basename(binary))


def informational_shell(missing: str) -> LaunchSpec:
    """Degraded shell that explains a missing agent executable and echoes input."""
    message = (
        f"'{missing}' was not found on PATH. Install the CLI agent or set "
        f"MISSION_CONTROL_AGENT__COMMAND. Running an echo shell instead."
    )
    if os.name == "nt":
        return LaunchSpec(
            argv=("cmd.exe", "/k", f"echo {message}"),
            label="informational",
            informational=True,
        )
    script = 'printf "%s\\n" "$1"; while IFS= read -r line; do printf "Received: %s\\n" "$line"; done'
    return LaunchSpec(
        argv=("/bin/sh", "-c", script, "mission-control", message),
        label="informational",
        informational=True,
    )


def fallback_shell(reason: str) -> LaunchSpec:
    """Minimal shell that prints a diagnostic and exits non-zero."""
    message = f"Failed to start agent: {reason}"
    if os.name == "nt":
        return LaunchSpec(
            argv=("cmd.exe", "/c", f"echo {message} & exit /b 1"),
            label="fallback",
            informational=True,
        )
    return LaunchSpec(
        argv=("/bin/sh", "-c", 'printf "%s\\n" "$1"; exit 1', "mission-control", message),
        label="fallback",
        informational=True,
    )
