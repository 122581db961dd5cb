"""
Routes de consultation des sessions (lecture seule, diagnostic).

- GET /session                 → codes d'accès des sessions vivantes
- GET /session/{id}/state      → snapshot (phase, membres, personnages, tour courant)

Toute mutation passe par le canal WebSocket (/ws) et la file de la session.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from app.services.errors import SessionNotFound
from app.services.session_store import STORE

router = APIRouter(prefix="/session", tags=["session"])


class SessionListResponse(BaseModel):
    sessions: List[str]
    count: int


class SessionStateResponse(BaseModel):
    session_id: str
    leader_id: str
    members: List[str]
    phase: str
    scenario: Optional[str]
    personas: Dict[str, Dict[str, Any]]
    turn_index: Optional[int]
    current_member: Optional[str]
    log_length: int
    pending_events: int


@router.get("", response_model=SessionListResponse)
async def list_sessions() -> SessionListResponse:
    ids = STORE.list_ids()
    return SessionListResponse(sessions=ids, count=len(ids))


@router.get("/{session_id}/state", response_model=SessionStateResponse)
async def session_state(session_id: str) -> SessionStateResponse:
    """Snapshot d'une session ; 404 si le code d'accès est inconnu."""
    try:
        session = STORE.get(session_id)
    except SessionNotFound:
        raise HTTPException(status_code=404, detail="session_not_found")
    return SessionStateResponse(**session.snapshot())
