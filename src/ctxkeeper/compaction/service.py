"""Session store wrapper that hands out compaction-filtered sessions."""

from __future__ import annotations

from ..events import Event
from ..session import Session, SessionStore
from .context_filter import FilteredSession


class CompactionSessionService:
    """Wraps a :class:`SessionStore` so reads see the compacted view.

    Appends always go to the underlying session; originals are never
    replaced.
    """

    def __init__(self, store: SessionStore | None = None) -> None:
        self._store = store or SessionStore()

    @property
    def store(self) -> SessionStore:
        return self._store

    def create(
        self, app_name: str = "", user_id: str = "", session_id: str | None = None
    ) -> Session:
        return self._store.create(app_name=app_name, user_id=user_id, session_id=session_id)

    def get(self, session_id: str) -> FilteredSession | None:
        session = self._store.get(session_id)
        if session is None:
            return None
        return FilteredSession(session)

    def list_sessions(self, app_name: str | None = None, user_id: str | None = None) -> list[Session]:
        return self._store.list_sessions(app_name=app_name, user_id=user_id)

    def delete(self, session_id: str) -> bool:
        return self._store.delete(session_id)

    def append_event(self, session: Session | FilteredSession, event: Event) -> Event:
        if isinstance(session, FilteredSession):
            session = session.underlying
        return session.append_event(event)
