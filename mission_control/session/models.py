"""In-memory data model: projects, sessions, output logs and progress."""

from __future__ import annotations

import threading
import uuid
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Iterable, Literal

SessionStatus = Literal["idle", "active", "error"]
Phase = Literal["idle", "thinking", "working", "waiting", "complete"]

DEFAULT_MAX_CHUNKS = 1000
DEFAULT_MAX_BYTES = 10 * 1024 * 1024


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class OutputLog:
    """Append-only chunk log with FIFO eviction.

    Chunks are evicted from the head while the log holds more than
    ``max_chunks`` entries or more than ``max_bytes`` of UTF-8 text. The
    newest chunk is never evicted. Appends happen on the event loop thread
    while presentation code may read from another thread, so every access
    goes through the lock and readers only ever see a copied snapshot.
    """

    def __init__(
        self,
        chunks: Iterable[str] = (),
        max_chunks: int = DEFAULT_MAX_CHUNKS,
        max_bytes: int = DEFAULT_MAX_BYTES,
    ) -> None:
        self.max_chunks = max(1, max_chunks)
        self.max_bytes = max(1, max_bytes)
        self._lock = threading.Lock()
        self._chunks: deque[str] = deque()
        self._sizes: deque[int] = deque()
        self._total_bytes = 0
        for chunk in chunks:
            self.append(chunk)

    def append(self, chunk: str) -> None:
        if not chunk:
            return
        size = len(chunk.encode("utf-8", errors="replace"))
        with self._lock:
            self._chunks.append(chunk)
            self._sizes.append(size)
            self._total_bytes += size
            self._evict_locked()

    def clear(self) -> None:
        with self._lock:
            self._chunks.clear()
            self._sizes.clear()
            self._total_bytes = 0

    def snapshot(self) -> list[str]:
        """Return a copy of the current chunks, oldest first."""
        with self._lock:
            return list(self._chunks)

    def text(self) -> str:
        return "".join(self.snapshot())

    @property
    def total_bytes(self) -> int:
        with self._lock:
            return self._total_bytes

    def __len__(self) -> int:
        with self._lock:
            return len(self._chunks)

    def _evict_locked(self) -> None:
        while len(self._chunks) > 1 and (
            len(self._chunks) > self.max_chunks or self._total_bytes > self.max_bytes
        ):
            self._chunks.popleft()
            self._total_bytes -= self._sizes.popleft()


@dataclass
class ProgressState:
    """Best-effort activity signal derived from terminal output."""

    is_active: bool = False
    status: str = ""
    start_time: datetime | None = None
    last_output_time: datetime | None = None
    output_rate: int = 0          # chars per second over the rate window
    phase: Phase = "idle"

    @classmethod
    def started(cls, now: datetime | None = None) -> "ProgressState":
        """Fresh state for a new unit of work."""
        ts = now or utc_now()
        return cls(
            is_active=True,
            status="Thinking...",
            start_time=ts,
            last_output_time=ts,
            output_rate=0,
            phase="thinking",
        )

    def copy(self) -> "ProgressState":
        return replace(self)


@dataclass
class Session:
    """One agent session scoped to a project directory."""

    id: str
    project_id: str
    name: str
    description: str | None = None
    status: SessionStatus = "idle"
    last_command: str | None = None
    output: OutputLog = field(default_factory=OutputLog)
    progress: ProgressState | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def touch(self) -> None:
        self.updated_at = utc_now()


@dataclass
class Project:
    """A project directory owning an ordered list of sessions."""

    id: str
    name: str
    path: str
    sessions: list[Session] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def touch(self) -> None:
        self.updated_at = utc_now()

    def find_session(self, session_id: str) -> Session | None:
        for session in self.sessions:
            if session.id == session_id:
                return session
        return None


@dataclass(frozen=True)
class CommandRecord:
    """One submitted command line, kept in the recent-command history."""

    id: str
    project_id: str
    command: str
    timestamp: datetime
    session_id: str | None = None
