"""
Session store registry
======================

Registre en mémoire des sessions vivantes, indexées par code d'accès.
- `create()` alloue un code libre et initialise la session (phase LOBBY).
- `get()` lève `SessionNotFound` pour un code inconnu (l'appelant renvoie une erreur).
- `reap_idle()` retire les sessions inactives dont la file est vide.

Le registre est partagé par toutes les sessions ; seules des opérations
insert/lookup/remove sur des clés distinctes y sont faites, sous `RLock`.
"""
from __future__ import annotations

import asyncio
import logging
import time
from threading import RLock
from typing import Dict, List, Optional

from app.config.settings import settings
from .access_code import allocate_access_code
from .errors import SessionNotFound
from .game_session import Session

logger = logging.getLogger(__name__)


def _normalize(session_id: Optional[str]) -> str:
    return (session_id or "").strip().upper()


class SessionStore:
    def __init__(
        self,
        *,
        code_length: int = settings.ACCESS_CODE_LENGTH,
        max_attempts: int = settings.ACCESS_CODE_MAX_ATTEMPTS,
        preamble: str = settings.GAME_SYSTEM_MESSAGE,
    ) -> None:
        self._lock = RLock()
        self._sessions: Dict[str, Session] = {}
        self.code_length = code_length
        self.max_attempts = max_attempts
        self.preamble = preamble

    def create(self, leader_id: str) -> Session:
        """Crée une session dont `leader_id` est le leader et premier membre."""
        with self._lock:
            sid = allocate_access_code(
                lambda code: code in self._sessions,
                length=self.code_length,
                max_attempts=self.max_attempts,
            )
            session = Session.open(sid, leader_id, self.preamble)
            self._sessions[sid] = session
        logger.info("Session created", extra={"session_id": sid, "leader_id": leader_id})
        return session

    def get(self, session_id: Optional[str]) -> Session:
        sid = _normalize(session_id)
        with self._lock:
            session = self._sessions.get(sid)
        if session is None:
            raise SessionNotFound(f"unknown access code: {session_id!r}")
        return session

    def remove(self, session_id: Optional[str]) -> None:
        """Retire une session du registre (no-op si absente)."""
        with self._lock:
            removed = self._sessions.pop(_normalize(session_id), None)
        if removed is not None:
            logger.info("Session removed", extra={"session_id": removed.id})

    def list_ids(self) -> List[str]:
        with self._lock:
            return list(self._sessions.keys())

    def reap_idle(self, max_idle_seconds: float, now: Optional[float] = None) -> List[str]:
        """
        Retire les sessions inactives depuis plus de `max_idle_seconds`.
        Une session dont la file contient un événement n'est jamais retirée.
        """
        ts = time.time() if now is None else now
        with self._lock:
            stale = [
                sid
                for sid, s in self._sessions.items()
                if ts - s.last_activity > max_idle_seconds and s.queue.is_idle()
            ]
            for sid in stale:
                self._sessions.pop(sid, None)
        if stale:
            logger.info("Idle sessions reaped", extra={"session_ids": stale})
        return stale

    def __contains__(self, session_id: object) -> bool:
        if not isinstance(session_id, str):
            return False
        with self._lock:
            return _normalize(session_id) in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


async def run_reaper(store: SessionStore, max_idle_seconds: float, interval_seconds: float) -> None:
    """Boucle de fond : nettoie périodiquement les sessions inactives (annulée à l'arrêt)."""
    while True:
        await asyncio.sleep(interval_seconds)
        store.reap_idle(max_idle_seconds)


STORE = SessionStore()
