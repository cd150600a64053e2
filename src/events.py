"""Structured events emitted by the builder, session engine and recorder.

Core components never log on their own. They hand ``RoutineEvent`` objects
to an injected observer, and the caller decides where those end up.
"""

from typing import Any, Dict, List, Protocol

from loguru import logger
from pydantic import BaseModel


class RoutineEvent(BaseModel):
    name: str  # e.g. "session.rest_started"
    payload: Dict[str, Any] = {}


class EventObserver(Protocol):
    def notify(self, event: RoutineEvent) -> None: ...


class NullObserver:
    """Drops every event."""

    def notify(self, event: RoutineEvent) -> None:
        return None


class LoggingObserver:
    """Forwards events to loguru, with the payload bound as extra fields."""

    def __init__(self, level: str = "DEBUG"):
        self.level = level

    def notify(self, event: RoutineEvent) -> None:
        logger.bind(**event.payload).log(self.level, event.name)


class RecordingObserver:
    """Keeps every event in memory, in emission order."""

    def __init__(self):
        self.events: List[RoutineEvent] = []

    def notify(self, event: RoutineEvent) -> None:
        self.events.append(event)

    @property
    def names(self) -> List[str]:
        return [event.name for event in self.events]


def emit(observer: EventObserver, name: str, **payload: Any) -> None:
    observer.notify(RoutineEvent(name=name, payload=payload))
