import threading
from typing import Dict, Optional, Protocol

from .constants import UNSET
from .models import SessionRecord, StepName, default_steps, utc_now


class SessionStore(Protocol):
    storage_name: str

    def create_session(self, session_id: str, task_id: str) -> None:
        pass

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        pass

    def update_session(
        self,
        session_id: str,
        *,
        status: Optional[str] = None,
        contact_sheet_count: object = UNSET,
        transcription: object = UNSET,
        analysis: object = UNSET,
        error: object = UNSET,
    ) -> None:
        pass

    def update_step(
        self,
        session_id: str,
        step: StepName,
        *,
        status: Optional[str] = None,
        progress: object = UNSET,
        error: object = UNSET,
    ) -> None:
        pass

    def delete_session(self, session_id: str) -> None:
        pass


class InMemorySessionStore:
    storage_name = "memory"

    def __init__(self) -> None:
        self._sessions: Dict[str, SessionRecord] = {}
        self._lock = threading.Lock()

    def create_session(self, session_id: str, task_id: str) -> None:
        now = utc_now()
        with self._lock:
            self._sessions[session_id] = SessionRecord(
                created_at=now,
                updated_at=now,
                task_id=task_id,
                status="queued",
                steps=default_steps(),
            )

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        with self._lock:
            return self._sessions.get(session_id)

    def update_session(
        self,
        session_id: str,
        *,
        status: Optional[str] = None,
        contact_sheet_count: object = UNSET,
        transcription: object = UNSET,
        analysis: object = UNSET,
        error: object = UNSET,
    ) -> None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return
            if status is not None:
                session.status = status
            if contact_sheet_count is not UNSET:
                session.contact_sheet_count = contact_sheet_count
            if transcription is not UNSET:
                session.transcription = transcription
            if analysis is not UNSET:
                session.analysis = analysis
            if error is not UNSET:
                session.error = error
            session.updated_at = utc_now()

    def update_step(
        self,
        session_id: str,
        step: StepName,
        *,
        status: Optional[str] = None,
        progress: object = UNSET,
        error: object = UNSET,
    ) -> None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return
            current = dict(session.steps.get(step) or {"status": "pending", "progress": None, "error": None})
            if status is not None:
                current["status"] = status
            if progress is not UNSET:
                current["progress"] = progress
            if error is not UNSET:
                current["error"] = error
            session.steps[step] = current
            session.updated_at = utc_now()

    def delete_session(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)


def build_session_store() -> SessionStore:
    return InMemorySessionStore()
