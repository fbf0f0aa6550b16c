"""Session & EventLog — the append-only ground truth of a conversation."""

from __future__ import annotations

import threading
import time
import uuid
from abc import ABC, abstractmethod
from collections.abc import Iterator

from .errors import DuplicateEventError
from .events import Event


class EventLog(ABC):
    """Append-only ordered sequence of events.

    Implementations serialize writers; readers get a consistent snapshot.
    """

    @abstractmethod
    def append(self, event: Event) -> None:
        """Append *event*. Events are never mutated or removed afterwards."""

    @abstractmethod
    def all(self) -> list[Event]:
        """Snapshot of all events in append order."""

    @abstractmethod
    def __len__(self) -> int: ...

    @abstractmethod
    def at(self, index: int) -> Event | None:
        """Event at *index*, or None when out of range."""

    def __iter__(self) -> Iterator[Event]:
        return iter(self.all())


class InMemoryEventLog(EventLog):
    """In-memory implementation of :class:`EventLog`."""

    def __init__(self, events: list[Event] | None = None) -> None:
        self._lock = threading.RLock()
        self._events: list[Event] = []
        self._ids: set[str] = set()
        for event in events or []:
            self.append(event)

    def append(self, event: Event) -> None:
        with self._lock:
            if event.id in self._ids:
                msg = f"event {event.id} is already in the log"
                raise DuplicateEventError(msg)
            self._events.append(event)
            self._ids.add(event.id)

    def all(self) -> list[Event]:
        with self._lock:
            return list(self._events)

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def at(self, index: int) -> Event | None:
        with self._lock:
            if 0 <= index < len(self._events):
                return self._events[index]
            return None


class Session:
    """Conversation identity plus its event log."""

    def __init__(
        self,
        session_id: str | None = None,
        app_name: str = "",
        user_id: str = "",
        event_log: EventLog | None = None,
    ) -> None:
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self.app_name = app_name
        self.user_id = user_id
        self.event_log = event_log if event_log is not None else InMemoryEventLog()
        self.last_update_time = time.time()

    def append_event(self, event: Event) -> Event:
        self.event_log.append(event)
        self.last_update_time = time.time()
        return event

    def events(self) -> list[Event]:
        return self.event_log.all()


class SessionStore:
    """In-memory registry of live sessions."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sessions: dict[str, Session] = {}

    def create(
        self, app_name: str = "", user_id: str = "", session_id: str | None = None
    ) -> Session:
        session = Session(session_id=session_id, app_name=app_name, user_id=user_id)
        with self._lock:
            if session.session_id in self._sessions:
                msg = f"session {session.session_id} already exists"
                raise ValueError(msg)
            self._sessions[session.session_id] = session
        return session

    def get(self, session_id: str) -> Session | None:
        with self._lock:
            return self._sessions.get(session_id)

    def list_sessions(self, app_name: str | None = None, user_id: str | None = None) -> list[Session]:
        with self._lock:
            sessions = list(self._sessions.values())
        return [
            s for s in sessions
            if (app_name is None or s.app_name == app_name)
            and (user_id is None or s.user_id == user_id)
        ]

    def delete(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None
