"""Per-session runtime wrapping one PTY-backed agent process."""

from __future__ import annotations

import asyncio
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from loguru import logger

from mission_control.bus.events import (
    RuntimeEvent,
    SessionOutput,
    SessionOutputCleared,
    SessionProgress,
    SessionStatusChanged,
)
from mission_control.config.schema import Config
from mission_control.errors import (
    InvalidProjectPathError,
    OutputHandlerError,
    SessionAlreadyRunningError,
    SessionNotRunningError,
)
from mission_control.providers.agent_registry import LaunchSpec, fallback_shell, resolve_launch
from mission_control.providers.output_classifier import (
    ANSI_FULL_RE,
    OutputClassifier,
    OutputSample,
    clean_text,
    last_statement,
)
from mission_control.providers.runtime.backend import PTYBackend, build_backend
from mission_control.session.models import ProgressState, Session, SessionStatus, utc_now

BackendFactory = Callable[..., PTYBackend]
LaunchResolver = Callable[[Config], LaunchSpec]
Publish = Callable[[RuntimeEvent], None]

EOT = "\x04"

_KEY_NAMES = {
    "\r": "<ENTER>",
    "\n": "<ENTER>",
    "\x7f": "<BACKSPACE>",
    "\b": "<BACKSPACE>",
    "\x03": "<CTRL-C>",
    "\x04": "<CTRL-D>",
}


@dataclass(eq=False)
class PtyHandle:
    """A live process attached to a session."""

    backend: PTYBackend
    launch: LaunchSpec
    reader: Optional[threading.Thread] = None
    kill_timer: Optional[asyncio.TimerHandle] = None
    exited: bool = False
    started_at: float = field(default_factory=time.monotonic)

    @property
    def pid(self) -> int | None:
        return getattr(self.backend, "pid", None)


class SessionRuntime:
    """Manage one PTY-backed agent process for one session.

    Lives on a single asyncio loop. A daemon reader thread per process hands
    raw chunks to the loop with ``call_soon_threadsafe``; everything else runs
    on the loop thread. The runtime reports through exactly one ``publish``
    callable, owned by the registry.
    """

    def __init__(
        self,
        session: Session,
        project_path: str,
        config: Config,
        publish: Publish,
        classifier: OutputClassifier | None = None,
        backend_factory: BackendFactory = build_backend,
        launch_resolver: LaunchResolver = resolve_launch,
    ) -> None:
        self.session = session
        self.project_path = project_path
        self.config = config
        self._publish = publish
        rt = config.runtime
        self.classifier = classifier or OutputClassifier(
            silence_threshold_s=rt.silence_threshold_s,
            rate_window_s=rt.rate_window_s,
        )
        self._backend_factory = backend_factory
        self._launch_resolver = launch_resolver

        self._loop: asyncio.AbstractEventLoop | None = None
        self._handle: PtyHandle | None = None
        self._output_subscription: PtyHandle | None = None
        self._starting = False

        self._pending: list[str] = []
        self._flush_timer: asyncio.TimerHandle | None = None
        self._tick_timer: asyncio.TimerHandle | None = None
        self._samples: deque[OutputSample] = deque()
        self._last_text = ""
        self._last_output_mono = time.monotonic()
        self._input_line: list[str] = []

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        """Return True while a process handle is attached."""
        return self._handle is not None

    @property
    def handle(self) -> PtyHandle | None:
        return self._handle

    async def start(self) -> None:
        """Spawn the agent in a PTY and attach its output reader."""
        sid = self.session.id
        if self._handle is not None or self._starting:
            raise SessionAlreadyRunningError(sid)
        project_dir = Path(self.project_path)
        if not project_dir.exists():
            raise InvalidProjectPathError(self.project_path, "does not exist")
        if not project_dir.is_dir():
            raise InvalidProjectPathError(self.project_path, "is not a directory")

        self._loop = asyncio.get_running_loop()
        self._starting = True
        notes: list[str] = []
        try:
            launch = self._launch_resolver(self.config)
            if launch.informational:
                logger.warning(f"[runtime] Agent executable missing, session {sid} gets an informational shell")
            backend, launch = await self._spawn_with_fallback(launch, notes)
            if backend is None:
                self._fail_start(notes)
                return
            try:
                self._attach(backend, launch)
            except Exception:
                backend.terminate(force=True)
                raise
        finally:
            self._starting = False

        for note in notes:
            self._ingest(note)
        await asyncio.sleep(self.config.runtime.warmup_s)

    def on_output(self, chunk: str) -> None:
        """Handle one raw chunk from the transport; never raises."""
        try:
            self._ingest(chunk)
        except Exception:
            logger.exception(f"[runtime] Dropping malformed chunk for session {self.session.id}")

    def _on_chunk(self, handle: PtyHandle, chunk: str) -> None:
        if handle is not self._output_subscription:
            logger.debug(f"[runtime] Dropping output from detached pid {handle.pid} for session {self.session.id}")
            return
        self.on_output(chunk)

    def send_input(self, data: str | bytes) -> list[str]:
        """Write raw keystrokes to the PTY.

        Returns the command lines completed by a CR/LF in ``data``.
        """
        handle = self._handle
        if handle is None:
            raise SessionNotRunningError(self.session.id)
        text = data.decode("utf-8", errors="replace") if isinstance(data, bytes) else data
        if not text:
            return []
        self._log_keystroke(text)
        try:
            handle.backend.write(text)
        except Exception as exc:
            logger.warning(f"[runtime] Write to session {self.session.id} failed: {exc}")
            self._transport_failed(handle, f"write failed: {exc}")
            return []

        self.session.touch()
        submitted = self._track_input(text)
        if "\r" in text or "\n" in text:
            self._begin_unit_of_work()
        return submitted

    def stop(self) -> PtyHandle | None:
        """Ask the agent to exit; force-kill after the grace window.

        Returns the detached handle, or None when nothing was running.
        """
        handle = self._handle
        if handle is None:
            return None
        self._detach(handle)
        try:
            handle.backend.write(EOT)
        except Exception as exc:
            logger.debug(f"[runtime] EOT to session {self.session.id} failed: {exc}")
        loop = self._loop
        if loop is not None and not loop.is_closed():
            handle.kill_timer = loop.call_later(
                self.config.runtime.stop_grace_s, self._force_kill, handle
            )
        else:
            self._force_kill(handle)
        return handle

    def on_exit(self, exit_code: int | None, signal: int | None, handle: PtyHandle | None = None) -> None:
        """Map process exit to session status; never raises."""
        try:
            self._handle_exit(exit_code, signal, handle)
        except Exception:
            logger.exception(f"[runtime] Exit handling failed for session {self.session.id}")

    def clear_output(self) -> None:
        """Empty the output log and reset rate tracking."""
        self.session.output.clear()
        self._pending.clear()
        if self._flush_timer is not None:
            self._flush_timer.cancel()
            self._flush_timer = None
        self._samples.clear()
        self._last_text = ""
        if self.session.progress is not None:
            self.session.progress.output_rate = 0
        self.session.touch()
        self._emit(SessionOutputCleared(session_id=self.session.id, project_id=self.session.project_id))

    def resize(self, cols: int, rows: int) -> None:
        handle = self._handle
        if handle is not None:
            handle.backend.resize(cols, rows)

    # ------------------------------------------------------------------
    # Lifecycle internals
    # ------------------------------------------------------------------

    async def _spawn_with_fallback(
        self, launch: LaunchSpec, notes: list[str]
    ) -> tuple[PTYBackend | None, LaunchSpec]:
        try:
            return await self._spawn(launch), launch
        except Exception as exc:
            logger.error(f"[runtime] PTY allocation failed for session {self.session.id}: {exc}")
            notes.append(f"[mission-control] Failed to start {launch.display}: {exc}\r\n")
            fallback = fallback_shell(str(exc))

        try:
            return await self._spawn(fallback), fallback
        except Exception as exc:
            logger.error(f"[runtime] Fallback shell failed for session {self.session.id}: {exc}")
            notes.append(f"[mission-control] Fallback shell failed: {exc}\r\n")
            return None, fallback

    async def _spawn(self, launch: LaunchSpec) -> PTYBackend:
        rt = self.config.runtime
        return await asyncio.to_thread(
            self._backend_factory,
            launch.argv,
            cols=rt.cols,
            rows=rt.rows,
            cwd=self.project_path,
        )

    def _attach(self, backend: PTYBackend, launch: LaunchSpec) -> None:
        handle = PtyHandle(backend=backend, launch=launch)
        self._subscribe_output(handle)
        self._handle = handle
        self._set_status("active")
        self._begin_unit_of_work()
        self._schedule_tick()
        handle.reader.start()
        logger.info(f"[runtime] Session {self.session.id} started {launch.label} (pid={handle.pid})")

    def _subscribe_output(self, handle: PtyHandle) -> None:
        if self._output_subscription is not None:
            raise OutputHandlerError(self.session.id)
        handle.reader = threading.Thread(
            target=self._read_loop,
            args=(handle,),
            name=f"pty-reader-{self.session.id[:8]}",
            daemon=True,
        )
        self._output_subscription = handle

    def _detach(self, handle: PtyHandle) -> None:
        if self._handle is handle:
            self._handle = None
        if self._output_subscription is handle:
            self._output_subscription = None
        if self._tick_timer is not None:
            self._tick_timer.cancel()
            self._tick_timer = None
        self._input_line.clear()

    def _fail_start(self, notes: list[str]) -> None:
        self._set_status("error")
        for note in notes:
            self._ingest(note)

    def _transport_failed(self, handle: PtyHandle, reason: str) -> None:
        self._detach(handle)
        try:
            handle.backend.terminate(force=True)
        except Exception as exc:
            logger.debug(f"[runtime] Terminate after failure raised: {exc}")
        self._ingest(f"[mission-control] Session transport error: {reason}\r\n")
        if self.session.progress is not None:
            self.session.progress.is_active = False
            self.session.progress.phase = "idle"
        self._set_status("error")

    def _force_kill(self, handle: PtyHandle) -> None:
        handle.kill_timer = None
        if handle.exited:
            return
        try:
            if handle.backend.is_alive():
                logger.warning(f"[runtime] Session {self.session.id} ignored EOT, killing pid {handle.pid}")
                handle.backend.terminate(force=True)
        except Exception as exc:
            logger.warning(f"[runtime] Force kill of pid {handle.pid} failed: {exc}")

    def _handle_exit(self, exit_code: int | None, signal: int | None, handle: PtyHandle | None) -> None:
        current = self._handle
        if handle is not None:
            handle.exited = True
            if handle.kill_timer is not None:
                handle.kill_timer.cancel()
                handle.kill_timer = None
            if current is not None and current is not handle:
                logger.info(f"[runtime] Stale process exit for session {self.session.id} ignored")
                return
        if current is not None:
            self._detach(current)

        logger.info(f"[runtime] Session {self.session.id} exited with code {exit_code}, signal {signal}")
        self._flush()
        progress = self.session.progress or ProgressState()
        progress.is_active = False
        progress.phase = "idle"
        progress.status = ""
        progress.output_rate = 0
        self.session.progress = progress
        self._set_status("idle" if exit_code == 0 else "error")
        self._emit_progress()

    def _read_loop(self, handle: PtyHandle) -> None:
        backend = handle.backend
        while True:
            try:
                data = backend.read()
            except Exception as exc:
                logger.warning(f"[pty] Read failed for pid {handle.pid}: {exc}")
                data = None
            if data is None:
                break
            if data:
                self._call_soon(self._on_chunk, handle, data)

        exit_code: int | None = None
        signal: int | None = None
        try:
            exit_code, signal = backend.wait()
        except Exception as exc:
            logger.warning(f"[pty] Wait failed for pid {handle.pid}: {exc}")
        try:
            backend.close()
        except Exception as exc:
            logger.debug(f"[pty] Close failed for pid {handle.pid}: {exc}")
        self._call_soon(self.on_exit, exit_code, signal, handle)

    def _call_soon(self, fn: Callable[..., None], *args: object) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(fn, *args)
        except RuntimeError:
            # Loop shut down between the check and the call.
            pass

    # ------------------------------------------------------------------
    # Output path
    # ------------------------------------------------------------------

    def _ingest(self, chunk: str) -> None:
        text = chunk.replace("\x00", "")
        if not text:
            return
        now = time.monotonic()
        self.session.output.append(text)
        self._pending.append(text)
        self._samples.append(OutputSample(timestamp=now, chars=len(text)))
        self._last_output_mono = now
        if self.session.progress is not None:
            self.session.progress.last_output_time = utc_now()
        self._schedule_flush()

    def _schedule_flush(self) -> None:
        if self._flush_timer is not None:
            return
        loop = self._loop or asyncio.get_running_loop()
        self._loop = loop
        self._flush_timer = loop.call_later(self.config.runtime.flush_interval_s, self._flush)

    def _flush(self) -> None:
        if self._flush_timer is not None:
            self._flush_timer.cancel()
            self._flush_timer = None
        if not self._pending:
            return
        batch = "".join(self._pending)
        self._pending.clear()
        try:
            self._emit(SessionOutput(session_id=self.session.id, project_id=self.session.project_id, chunk=batch))
            self._update_progress(batch)
        except Exception:
            logger.exception(f"[runtime] Output flush failed for session {self.session.id}")

    def _update_progress(self, batch: str) -> None:
        progress = self.session.progress
        if progress is None or self._handle is None:
            return
        now = time.monotonic()
        self._trim_samples(now)
        progress.output_rate = self.classifier.output_rate(self._samples, now=now)

        statement = last_statement(clean_text(batch))
        if not statement:
            return
        before = (progress.phase, progress.status, progress.is_active)
        self._last_text = statement
        result = self.classifier.classify(statement)
        progress.phase = result.phase
        progress.status = result.status
        progress.is_active = result.phase not in ("waiting", "complete")
        if progress.is_active and progress.start_time is None:
            progress.start_time = utc_now()
        if (progress.phase, progress.status, progress.is_active) != before:
            self._emit_progress()

    def _trim_samples(self, now: float) -> None:
        horizon = now - self.classifier.rate_window_s
        while self._samples and self._samples[0].timestamp <= horizon:
            self._samples.popleft()

    # ------------------------------------------------------------------
    # Progress tracking
    # ------------------------------------------------------------------

    def _begin_unit_of_work(self) -> None:
        self.session.progress = ProgressState.started()
        self._last_text = ""
        self._last_output_mono = time.monotonic()
        self._emit_progress()

    def _schedule_tick(self) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        self._tick_timer = loop.call_later(self.config.runtime.progress_tick_s, self._tick)

    def _tick(self) -> None:
        self._tick_timer = None
        if self._handle is None:
            return
        try:
            self._check_silence()
        except Exception:
            logger.exception(f"[runtime] Progress tick failed for session {self.session.id}")
        self._schedule_tick()

    def _check_silence(self) -> None:
        progress = self.session.progress
        if progress is None or not progress.is_active:
            return
        now = time.monotonic()
        self._trim_samples(now)
        progress.output_rate = self.classifier.output_rate(self._samples, now=now)
        silent_ms = (now - self._last_output_mono) * 1000
        if not self.classifier.is_still_active(self._last_text, silent_ms):
            progress.is_active = False
            progress.phase = "complete"
            progress.status = "Task completed"
            self._emit_progress()

    # ------------------------------------------------------------------
    # Input tracking
    # ------------------------------------------------------------------

    def _track_input(self, text: str) -> list[str]:
        submitted: list[str] = []
        for ch in ANSI_FULL_RE.sub("", text):
            if ch in ("\r", "\n"):
                line = "".join(self._input_line).strip()
                self._input_line.clear()
                if line:
                    self.session.last_command = line
                    submitted.append(line)
            elif ch in ("\x7f", "\b"):
                if self._input_line:
                    self._input_line.pop()
            elif ch in ("\x03", "\x15"):
                self._input_line.clear()
            elif ch >= " ":
                self._input_line.append(ch)
        return submitted

    def _log_keystroke(self, text: str) -> None:
        name = _KEY_NAMES.get(text)
        if name is not None:
            logger.debug(f"[runtime] [{self.session.name}] Sent: {name}")
        elif len(text) == 1 and ord(text) < 32:
            logger.debug(f"[runtime] [{self.session.name}] Sent control char: 0x{ord(text):02x}")

    # ------------------------------------------------------------------
    # Emission
    # ------------------------------------------------------------------

    def _set_status(self, status: SessionStatus) -> None:
        self.session.status = status
        self.session.touch()
        self._emit(SessionStatusChanged(session_id=self.session.id, project_id=self.session.project_id, status=status))

    def _emit_progress(self) -> None:
        progress = self.session.progress
        if progress is None:
            return
        self._emit(SessionProgress(session_id=self.session.id, project_id=self.session.project_id, progress=progress.copy()))

    def _emit(self, event: RuntimeEvent) -> None:
        try:
            self._publish(event)
        except Exception:
            logger.exception(f"[runtime] Publishing {event.name} failed for session {self.session.id}")
