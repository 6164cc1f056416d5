"""Orchestration event contracts and lightweight signal bus."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, ClassVar, Union

from loguru import logger

from mission_control.session.models import Project, ProgressState, Session, SessionStatus

SESSION_OUTPUT = "session:output"
SESSION_STATUS = "session:status"
SESSION_OUTPUT_CLEARED = "session:output:cleared"
SESSION_PROGRESS = "session:progress"
SESSION_CREATED = "session:created"
SESSION_REMOVED = "session:removed"
PROJECT_CREATED = "project:created"
PROJECT_REMOVED = "project:removed"

# Subscribing to this name receives every event.
ALL_EVENTS = "*"


@dataclass(frozen=True)
class SessionOutput:
    """Coalesced terminal output for one session."""

    name: ClassVar[str] = SESSION_OUTPUT

    session_id: str
    project_id: str
    chunk: str


@dataclass(frozen=True)
class SessionStatusChanged:
    name: ClassVar[str] = SESSION_STATUS

    session_id: str
    project_id: str
    status: SessionStatus


@dataclass(frozen=True)
class SessionOutputCleared:
    name: ClassVar[str] = SESSION_OUTPUT_CLEARED

    session_id: str
    project_id: str


@dataclass(frozen=True)
class SessionProgress:
    """Progress snapshot; ``progress`` is a copy, safe to keep."""

    name: ClassVar[str] = SESSION_PROGRESS

    session_id: str
    project_id: str
    progress: ProgressState


@dataclass(frozen=True)
class SessionCreated:
    name: ClassVar[str] = SESSION_CREATED

    project_id: str
    session: Session


@dataclass(frozen=True)
class SessionRemoved:
    name: ClassVar[str] = SESSION_REMOVED

    project_id: str
    session_id: str


@dataclass(frozen=True)
class ProjectCreated:
    name: ClassVar[str] = PROJECT_CREATED

    project: Project


@dataclass(frozen=True)
class ProjectRemoved:
    name: ClassVar[str] = PROJECT_REMOVED

    project_id: str


RuntimeEvent = Union[SessionOutput, SessionStatusChanged, SessionOutputCleared, SessionProgress]
Event = Union[
    RuntimeEvent,
    SessionCreated,
    SessionRemoved,
    ProjectCreated,
    ProjectRemoved,
]
EventHandler = Callable[[Event], None]


class EventHub:
    """Simple in-process pub/sub toward the presentation layer.

    A failing handler is logged and skipped; it never reaches the publisher,
    which is usually a timer callback on the output path.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_name: str, handler: EventHandler) -> Callable[[], None]:
        """Register a handler; returns a callable that unsubscribes it."""
        self._handlers[event_name].append(handler)

        def _unsubscribe() -> None:
            handlers = self._handlers.get(event_name, [])
            if handler in handlers:
                handlers.remove(handler)

        return _unsubscribe

    def publish(self, event: Event) -> None:
        handlers = list(self._handlers.get(event.name, [])) + list(self._handlers.get(ALL_EVENTS, []))
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception(f"[bus] Handler failed for {event.name}")
