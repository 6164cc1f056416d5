"""PTY backends for running interactive CLI agents."""

from __future__ import annotations

import os
from typing import Optional, Protocol, Sequence

from loguru import logger

from mission_control.errors import PTYSpawnError

ExitStatus = tuple[Optional[int], Optional[int]]


class PTYBackend(Protocol):
    """Minimal PTY backend contract."""

    pid: int | None

    def read(self) -> str | None:
        """Read a chunk; "" when nothing arrived in time, None at EOF."""

    def write(self, data: str) -> None:
        """Write input data."""

    def resize(self, cols: int, rows: int) -> None:
        """Apply terminal resize."""

    def is_alive(self) -> bool:
        """Return True while the child process runs."""

    def wait(self) -> ExitStatus:
        """Block until exit; return (exit_code, signal)."""

    def terminate(self, force: bool = False) -> None:
        """Ask the child to exit; SIGKILL when force is set."""

    def close(self) -> None:
        """Close process resources."""


def _pty_env() -> dict[str, str]:
    env = dict(os.environ)
    env.setdefault("TERM", "xterm-256color")
    env.setdefault("COLORTERM", "truecolor")
    return env


class UnixPexpectBackend:
    """PTY backend for Unix-like systems via pexpect."""

    def __init__(
        self,
        argv: Sequence[str],
        cols: int = 80,
        rows: int = 30,
        cwd: str | None = None,
    ) -> None:
        import pexpect

        self._pexpect = pexpect
        self._proc = pexpect.spawn(
            argv[0],
            list(argv[1:]),
            encoding="utf-8",
            codec_errors="replace",
            echo=False,
            dimensions=(rows, cols),
            cwd=cwd,
            env=_pty_env(),
        )
        self.pid: int | None = self._proc.pid

    def read(self) -> str | None:
        try:
            return self._proc.read_nonblocking(size=4096, timeout=0.1)
        except self._pexpect.TIMEOUT:
            return ""
        except self._pexpect.EOF:
            return None

    def write(self, data: str) -> None:
        self._proc.send(data)

    def resize(self, cols: int, rows: int) -> None:
        self._proc.setwinsize(rows, cols)

    def is_alive(self) -> bool:
        return self._proc.isalive()

    def wait(self) -> ExitStatus:
        try:
            if self._proc.isalive():
                self._proc.wait()
        except self._pexpect.ExceptionPexpect as exc:
            logger.debug("[pty] wait() on pid {} failed: {}", self.pid, exc)
        return self._proc.exitstatus, self._proc.signalstatus

    def terminate(self, force: bool = False) -> None:
        if self._proc.isalive():
            self._proc.terminate(force=force)

    def close(self) -> None:
        try:
            self._proc.close(force=True)
        except self._pexpect.ExceptionPexpect as exc:
            logger.debug("[pty] close() on pid {} failed: {}", self.pid, exc)


class WinptyBackend:
    """PTY backend for Windows via pywinpty."""

    def __init__(
        self,
        argv: Sequence[str],
        cols: int = 80,
        rows: int = 30,
        cwd: str | None = None,
    ) -> None:
        from winpty import Backend, PtyProcess

        launch_attempts = (
            {"backend": Backend.ConPTY},
            {"backend": Backend.WinPTY},
            {},
        )

        self._proc = None
        last_error: Optional[Exception] = None
        for extra in launch_attempts:
            try:
                self._proc = PtyProcess.spawn(
                    list(argv),
                    dimensions=(rows, cols),
                    env=_pty_env(),
                    cwd=cwd,
                    **extra,
                )
                break
            except Exception as exc:  # pragma: no cover - platform specific
                last_error = exc

        if self._proc is None:
            raise PTYSpawnError(argv[0], str(last_error))
        self.pid: int | None = getattr(self._proc, "pid", None)

    def read(self) -> str | None:
        try:
            return self._proc.read(4096)
        except EOFError:
            return None

    def write(self, data: str) -> None:
        self._proc.write(data)

    def resize(self, cols: int, rows: int) -> None:
        self._proc.setwinsize(rows, cols)

    def is_alive(self) -> bool:
        return bool(self._proc.isalive())

    def wait(self) -> ExitStatus:
        if self._proc.isalive():
            self._proc.wait()
        return getattr(self._proc, "exitstatus", None), None

    def terminate(self, force: bool = False) -> None:
        if self._proc.isalive():
            self._proc.terminate(force=force)

    def close(self) -> None:
        try:
            self._proc.close(force=True)
        except Exception as exc:  # pragma: no cover - platform specific
            logger.debug("[pty] close() on pid {} failed: {}", self.pid, exc)


def build_backend(
    argv: Sequence[str],
    cols: int = 80,
    rows: int = 30,
    cwd: str | None = None,
) -> PTYBackend:
    """Build the PTY backend for the current platform.

    Raises PTYSpawnError when the pseudo-terminal cannot be allocated.
    """
    if not argv:
        raise PTYSpawnError("", "empty command")
    label = " ".join(argv)[:60]
    try:
        if os.name == "nt":
            backend: PTYBackend = WinptyBackend(argv, cols=cols, rows=rows, cwd=cwd)
        else:
            backend = UnixPexpectBackend(argv, cols=cols, rows=rows, cwd=cwd)
    except PTYSpawnError:
        raise
    except Exception as exc:
        raise PTYSpawnError(argv[0], str(exc)) from exc
    logger.info(f"[pty] Using {type(backend).__name__} for: {label} (pid={backend.pid})")
    return backend
