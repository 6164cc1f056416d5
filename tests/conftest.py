from __future__ import annotations

import asyncio
import queue
import time
from typing import Callable

import pytest

from mission_control.config.schema import Config, PersistenceConfig, RuntimeConfig
from mission_control.errors import PTYSpawnError
from mission_control.providers.agent_registry import LaunchSpec

_EOF = object()


class FakeBackend:
    """Scripted PTY backend; the test feeds output and decides when it exits."""

    def __init__(self, argv, cols: int = 80, rows: int = 30, cwd: str | None = None, exit_on_eot: bool = True) -> None:
        self.argv = tuple(argv)
        self.cols = cols
        self.rows = rows
        self.cwd = cwd
        self.pid = 4242
        self.exit_on_eot = exit_on_eot
        self.writes: list[str] = []
        self.terminated: list[bool] = []
        self.write_error: Exception | None = None
        self._queue: queue.Queue = queue.Queue()
        self._status: tuple[int | None, int | None] | None = None

    # Test controls ------------------------------------------------------

    def feed(self, text: str) -> None:
        self._queue.put(text)

    def exit(self, code: int | None = 0, signal: int | None = None) -> None:
        if self._status is None:
            self._status = (code, signal)
            self._queue.put(_EOF)

    # PTYBackend ---------------------------------------------------------

    def read(self) -> str | None:
        try:
            item = self._queue.get(timeout=0.02)
        except queue.Empty:
            return ""
        if item is _EOF:
            return None
        return item

    def write(self, data: str) -> None:
        if self.write_error is not None:
            raise self.write_error
        self.writes.append(data)
        if data == "\x04" and self.exit_on_eot:
            self.exit(0)

    def resize(self, cols: int, rows: int) -> None:
        self.cols, self.rows = cols, rows

    def is_alive(self) -> bool:
        return self._status is None

    def wait(self) -> tuple[int | None, int | None]:
        return self._status or (None, None)

    def terminate(self, force: bool = False) -> None:
        self.terminated.append(force)
        self.exit(None, 9)

    def close(self) -> None:
        pass


class BackendFactory:
    """Records every spawn; ``fail_times`` spawns raise PTYSpawnError first."""

    def __init__(self, fail_times: int = 0, exit_on_eot: bool = True) -> None:
        self.fail_times = fail_times
        self.exit_on_eot = exit_on_eot
        self.calls: list[tuple[str, ...]] = []
        self.backends: list[FakeBackend] = []

    def __call__(self, argv, cols: int = 80, rows: int = 30, cwd: str | None = None) -> FakeBackend:
        self.calls.append(tuple(argv))
        if self.fail_times > 0:
            self.fail_times -= 1
            raise PTYSpawnError(argv[0], "no pty available")
        backend = FakeBackend(argv, cols=cols, rows=rows, cwd=cwd, exit_on_eot=self.exit_on_eot)
        self.backends.append(backend)
        return backend

    @property
    def last(self) -> FakeBackend:
        return self.backends[-1]

    def shutdown(self) -> None:
        for backend in self.backends:
            backend.exit(0)


def agent_launch(config: Config) -> LaunchSpec:
    return LaunchSpec(argv=("fake-agent", "--interactive"), label="fake-agent")


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def fast_config(tmp_path) -> Config:
    return Config(
        runtime=RuntimeConfig(
            warmup_s=0.0,
            stop_grace_s=0.2,
            flush_interval_s=0.01,
            progress_tick_s=0.05,
            silence_threshold_s=30.0,
        ),
        persistence=PersistenceConfig(state_dir=str(tmp_path / "state"), autosave_interval_s=0),
    )


@pytest.fixture
def backend_factory():
    factory = BackendFactory()
    yield factory
    factory.shutdown()


@pytest.fixture
def project_dir(tmp_path):
    path = tmp_path / "project"
    path.mkdir()
    return path
