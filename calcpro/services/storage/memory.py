"""
In-Memory Storage Implementation

Keeps sessions in a dict per principal. Used by the test suite and for
running the app without a backend. Stored sessions are deep copies, so
later edits to a draft never leak into the store.
"""

from typing import Optional

from calcpro.models.session import CalcSession
from calcpro.services.storage.interface import (
    PrincipalProvider,
    RecordTooLargeError,
    SessionStoreInterface,
    record_size,
)


class InMemorySessionStore(SessionStoreInterface):
    """Session store backed by process memory."""

    def __init__(
        self,
        principals: PrincipalProvider,
        max_record_bytes: Optional[int] = None,
    ):
        super().__init__(principals)
        self._max_record_bytes = max_record_bytes
        self._data: dict[str, dict[str, CalcSession]] = {}

    def _sessions(self) -> dict[str, CalcSession]:
        principal = self._require_principal()
        return self._data.setdefault(principal, {})

    async def init(self) -> None:
        self._sessions()

    async def list_sessions(self) -> list[CalcSession]:
        sessions = [s.model_copy(deep=True) for s in self._sessions().values()]
        sessions.sort(key=lambda s: s.created_at, reverse=True)
        return sessions

    async def get_session(self, session_id: str) -> Optional[CalcSession]:
        session = self._sessions().get(session_id)
        return session.model_copy(deep=True) if session else None

    async def save_session(self, session: CalcSession) -> None:
        sessions = self._sessions()
        if self._max_record_bytes is not None:
            size = record_size(session)
            if size > self._max_record_bytes:
                raise RecordTooLargeError(size, self._max_record_bytes)
        sessions[session.id] = session.model_copy(deep=True)

    async def delete_session(self, session_id: str) -> bool:
        return self._sessions().pop(session_id, None) is not None
