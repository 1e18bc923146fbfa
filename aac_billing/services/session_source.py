"""
Session source: where completed therapy sessions come from.

Session tracking is an external system. The engine reads sessions through
the ``SessionSource`` protocol; ``InMemorySessionSource`` backs development
and tests.
"""

from collections.abc import Iterable
from datetime import date
from typing import Protocol

from aac_billing.schemas.billing import SessionRecord


class SessionSource(Protocol):
    async def get_sessions(self, patient_id: str, session_ids: list[str]) -> list[SessionRecord]:
        """Sessions for ``patient_id`` among ``session_ids``, in the order requested."""
        ...

    async def list_sessions(
        self, patient_id: str, start: date, end: date
    ) -> list[SessionRecord]:
        """All of the patient's sessions dated within ``[start, end]``."""
        ...

    async def list_patient_ids(self) -> list[str]:
        ...


class InMemorySessionSource:
    """Session store held in a dict keyed by session id."""

    def __init__(self, sessions: Iterable[SessionRecord] = ()):
        self._sessions: dict[str, SessionRecord] = {}
        for session in sessions:
            self.add(session)

    def add(self, session: SessionRecord) -> None:
        self._sessions[session.session_id] = session

    async def get_sessions(self, patient_id: str, session_ids: list[str]) -> list[SessionRecord]:
        found = []
        for session_id in session_ids:
            session = self._sessions.get(session_id)
            if session is not None and session.patient_id == patient_id:
                found.append(session)
        return found

    async def list_sessions(
        self, patient_id: str, start: date, end: date
    ) -> list[SessionRecord]:
        sessions = [
            s
            for s in self._sessions.values()
            if s.patient_id == patient_id and start <= s.session_date <= end
        ]
        return sorted(sessions, key=lambda s: (s.session_date, s.session_id))

    async def list_patient_ids(self) -> list[str]:
        return sorted({s.patient_id for s in self._sessions.values()})
