import json
from dataclasses import replace
from typing import List, Optional

from worklogbot import config
from worklogbot.models import STATE_IDLE, STATE_WORKING, WorkSession, new_session_id


class SessionStore:
    """Owns session history and the active session pointer.

    ``init()`` loads both from the key-value store; afterwards only
    ``start``/``stop``/``toggle`` mutate them, and every mutation is written
    through to the store.
    """

    def __init__(self, store, logger) -> None:
        self.store = store
        self.logger = logger
        self._sessions: List[WorkSession] = []
        self._active_session_id: Optional[str] = None

    def init(self) -> None:
        self._sessions = self._load_sessions()
        self._active_session_id = self.store.get(config.STORE_KEY_CURRENT_SESSION) or None
        self._repair_active_pointer()
        self.logger.info(
            "SESSIONS_LOADED count=%s state=%s active_id=%s",
            len(self._sessions),
            self.state,
            self._active_session_id,
        )

    def _load_sessions(self) -> List[WorkSession]:
        raw = self.store.get(config.STORE_KEY_SESSIONS)
        if not raw:
            return []
        try:
            items = json.loads(raw)
        except ValueError as exc:
            self.logger.warning("SESSIONS_LOAD_FAILED error=%s", exc)
            return []
        if not isinstance(items, list):
            self.logger.warning("SESSIONS_LOAD_BAD_FORMAT type=%s", type(items).__name__)
            return []

        sessions = []
        for item in items:
            session = WorkSession.from_dict(item)
            if session is None:
                self.logger.warning("SESSIONS_LOAD_SKIP item=%s", str(item)[:200])
                continue
            sessions.append(session)
        return sessions

    def _repair_active_pointer(self) -> None:
        open_sessions = [s for s in self._sessions if s.is_open]
        pointed = self._find(self._active_session_id) if self._active_session_id else None

        if pointed is not None and pointed.is_open and len(open_sessions) == 1:
            return
        if not open_sessions and self._active_session_id is None:
            return

        # оставляем открытой только самую свежую сессию, остальные закрываем нулевой длительностью
        keep = pointed if pointed is not None and pointed.is_open else None
        if keep is None and open_sessions:
            keep = max(open_sessions, key=lambda s: s.start_time)

        for session in open_sessions:
            if session is keep:
                continue
            self._replace(replace(session, end_time=session.start_time, duration_minutes=0.0))
            self.logger.warning("ORPHAN_SESSION_CLOSED id=%s", session.id)

        self.logger.warning(
            "ACTIVE_POINTER_REPAIRED stored=%s -> active=%s",
            self._active_session_id,
            keep.id if keep else None,
        )
        self._active_session_id = keep.id if keep else None
        self._persist()

    def _find(self, session_id: Optional[str]) -> Optional[WorkSession]:
        for session in self._sessions:
            if session.id == session_id:
                return session
        return None

    def _replace(self, updated: WorkSession) -> None:
        self._sessions = [updated if s.id == updated.id else s for s in self._sessions]

    def _persist(self) -> None:
        self.store.set(config.STORE_KEY_SESSIONS, json.dumps([s.to_dict() for s in self._sessions]))
        if self._active_session_id:
            self.store.set(config.STORE_KEY_CURRENT_SESSION, self._active_session_id)
        else:
            self.store.remove(config.STORE_KEY_CURRENT_SESSION)

    @property
    def sessions(self) -> List[WorkSession]:
        return list(self._sessions)

    @property
    def active_session_id(self) -> Optional[str]:
        return self._active_session_id

    @property
    def is_working(self) -> bool:
        return self._active_session_id is not None

    @property
    def state(self) -> str:
        return STATE_WORKING if self.is_working else STATE_IDLE

    def active_session(self) -> Optional[WorkSession]:
        return self._find(self._active_session_id) if self._active_session_id else None

    def closed_sessions(self) -> List[WorkSession]:
        return [s for s in self._sessions if not s.is_open]

    def start(self, now: int, *, reason: str = "manual") -> Optional[WorkSession]:
        if self.is_working:
            self.logger.info("SESSION_START_IGNORED reason=%s active_id=%s", reason, self._active_session_id)
            return None

        session = WorkSession(id=new_session_id(), start_time=now)
        self._sessions.append(session)
        self._active_session_id = session.id
        self._persist()
        self.logger.info("SESSION_STARTED id=%s reason=%s", session.id, reason)
        return session

    def stop(self, now: int, *, reason: str = "manual") -> Optional[WorkSession]:
        active = self.active_session()
        if active is None:
            if self._active_session_id is not None:
                self.logger.warning("ACTIVE_SESSION_MISSING id=%s", self._active_session_id)
                self._active_session_id = None
                self._persist()
            else:
                self.logger.info("SESSION_STOP_IGNORED reason=%s", reason)
            return None

        closed = replace(active, end_time=now, duration_minutes=(now - active.start_time) / 60000)
        self._replace(closed)
        self._active_session_id = None
        self._persist()
        self.logger.info(
            "SESSION_STOPPED id=%s reason=%s duration_min=%.2f",
            closed.id,
            reason,
            closed.duration_minutes,
        )
        return closed

    def toggle(self, now: int, *, reason: str = "manual") -> Optional[WorkSession]:
        if self.is_working:
            return self.stop(now, reason=reason)
        return self.start(now, reason=reason)
