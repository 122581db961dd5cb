"""
Service: orchestrator.py
Rôle:
- Façade des événements externes (création, join, choix d'aventure/personnage, début, action).
- Résout la session, exécute l'événement dans le créneau FIFO de sa file, puis émet les
  notifications via le transport (toujours dans le créneau : l'ordre d'émission suit
  l'ordre de traitement).
- Toute `SessionError` est journalisée, renvoyée à l'émetteur seul (event `error`)
  et retournée dans l'`EventOutcome` ; elle ne remonte jamais plus haut.

Vocabulaire wire (front historique) → méthode :
    createGame → create_session          joinGame → join_session
    getAdventureOptions → request_scenario_options
    selectAdventure → select_scenario    getCharacterOptions → request_persona_options
    selectCharacter → select_persona     startGame → start_game
    playerAction → submit_action
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Tuple, Type

from pydantic import BaseModel, ValidationError

from app.models.events import ActionSubmission, CreatePayload, PersonaChoice, ScenarioChoice, SessionRef
from .errors import SessionError
from .game_session import Session
from .llm_engine import GENERATOR
from .session_store import STORE, SessionStore
from .turn_coordinator import Notification, TransitionResult, TurnCoordinator
from .ws_manager import WS

logger = logging.getLogger(__name__)


class Transport(Protocol):
    async def send_to(self, connection_id: str, event_type: str, payload: Dict[str, Any]) -> int: ...

    async def broadcast_room(self, room: str, event_type: str, payload: Dict[str, Any]) -> int: ...

    def join_room(self, connection_id: str, room: str) -> None: ...

    def leave_all(self, connection_id: str) -> None: ...


@dataclass
class EventOutcome:
    event: str
    ok: bool
    session_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[Dict[str, Any]] = None


class SessionOrchestrator:
    def __init__(self, store: SessionStore, transport: Transport, coordinator: TurnCoordinator) -> None:
        self.store = store
        self.transport = transport
        self.coordinator = coordinator
        self._routes: Dict[str, Tuple[Type[BaseModel], Callable[[str, Any], Awaitable[EventOutcome]]]] = {
            "createGame": (CreatePayload, lambda cid, p: self.create_session(cid)),
            "joinGame": (SessionRef, lambda cid, p: self.join_session(cid, p.session_id)),
            "getAdventureOptions": (SessionRef, lambda cid, p: self.request_scenario_options(cid, p.session_id)),
            "selectAdventure": (ScenarioChoice, lambda cid, p: self.select_scenario(cid, p.session_id, p.scenario)),
            "getCharacterOptions": (SessionRef, lambda cid, p: self.request_persona_options(cid, p.session_id)),
            "selectCharacter": (PersonaChoice, lambda cid, p: self.select_persona(cid, p.session_id, p.persona)),
            "startGame": (SessionRef, lambda cid, p: self.start_game(cid, p.session_id)),
            "playerAction": (ActionSubmission, lambda cid, p: self.submit_action(cid, p.session_id, p.action)),
        }

    # -------------------- plomberie --------------------
    async def _emit(self, notifications: List[Notification]) -> None:
        for n in notifications:
            if n.room is not None:
                await self.transport.broadcast_room(n.room, n.event_type, n.payload)
            elif n.to is not None:
                await self.transport.send_to(n.to, n.event_type, n.payload)

    async def _fail(
        self,
        connection_id: str,
        event: str,
        code: str,
        message: str,
        session_id: Optional[str] = None,
    ) -> EventOutcome:
        error = {"code": code, "message": message, "event": event}
        logger.info(
            "Session event rejected",
            extra={"session_id": session_id, "event": event, "connection_id": connection_id, "error_code": code},
        )
        await self.transport.send_to(connection_id, "error", error)
        return EventOutcome(event=event, ok=False, session_id=session_id, error=error)

    async def _run(
        self,
        event: str,
        connection_id: str,
        session_id: str,
        handler: Callable[[Session], Awaitable[TransitionResult]],
    ) -> EventOutcome:
        """Résout la session puis exécute `handler` dans le créneau FIFO de la session."""
        try:
            session = self.store.get(session_id)
        except SessionError as exc:
            return await self._fail(connection_id, event, exc.code, exc.message, session_id)

        async with session.queue.slot():
            try:
                result = await handler(session)
            except SessionError as exc:
                return await self._fail(connection_id, event, exc.code, exc.message, session.id)
            session.touch()
            for cid in result.room_joins:
                self.transport.join_room(cid, session.id)
            await self._emit(result.notifications)

        logger.debug(
            "Session event applied",
            extra={"session_id": session.id, "event": event, "connection_id": connection_id, "phase": session.phase.label},
        )
        return EventOutcome(event=event, ok=True, session_id=session.id, data=result.data)

    # -------------------- événements --------------------
    async def create_session(self, connection_id: str) -> EventOutcome:
        try:
            session = self.store.create(connection_id)
        except SessionError as exc:
            return await self._fail(connection_id, "createGame", exc.code, exc.message)
        self.transport.join_room(connection_id, session.id)
        await self.transport.send_to(connection_id, "gameCreated", {"accessCode": session.id})
        return EventOutcome(event="createGame", ok=True, session_id=session.id, data={"session_id": session.id})

    async def join_session(self, connection_id: str, session_id: str) -> EventOutcome:
        return await self._run(
            "joinGame", connection_id, session_id,
            lambda s: self.coordinator.join(s, connection_id),
        )

    async def request_scenario_options(self, connection_id: str, session_id: str) -> EventOutcome:
        return await self._run(
            "getAdventureOptions", connection_id, session_id,
            lambda s: self.coordinator.request_scenario_options(s, connection_id),
        )

    async def select_scenario(self, connection_id: str, session_id: str, scenario: str) -> EventOutcome:
        return await self._run(
            "selectAdventure", connection_id, session_id,
            lambda s: self.coordinator.select_scenario(s, connection_id, scenario),
        )

    async def request_persona_options(self, connection_id: str, session_id: str) -> EventOutcome:
        return await self._run(
            "getCharacterOptions", connection_id, session_id,
            lambda s: self.coordinator.request_persona_options(s, connection_id),
        )

    async def select_persona(self, connection_id: str, session_id: str, persona: str) -> EventOutcome:
        return await self._run(
            "selectCharacter", connection_id, session_id,
            lambda s: self.coordinator.select_persona(s, connection_id, persona),
        )

    async def start_game(self, connection_id: str, session_id: str) -> EventOutcome:
        return await self._run(
            "startGame", connection_id, session_id,
            lambda s: self.coordinator.start_game(s, connection_id),
        )

    async def submit_action(self, connection_id: str, session_id: str, action: str) -> EventOutcome:
        return await self._run(
            "playerAction", connection_id, session_id,
            lambda s: self.coordinator.submit_action(s, connection_id, action),
        )

    # -------------------- entrée wire --------------------
    async def dispatch(self, connection_id: str, event_type: str, payload: Optional[Dict[str, Any]] = None) -> EventOutcome:
        """Valide le payload d'un message client et l'aiguille vers l'événement correspondant."""
        route = self._routes.get(event_type)
        if route is None:
            return await self._fail(connection_id, event_type, "unknown_event", f"unknown event type: {event_type!r}")
        model, call = route
        try:
            parsed = model.model_validate(payload or {})
        except ValidationError as exc:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
            return await self._fail(connection_id, event_type, "invalid_payload", f"invalid or missing fields: {fields}")
        return await call(connection_id, parsed)

    def disconnect(self, connection_id: str) -> None:
        """Libère les rooms de la connexion (l'appartenance aux sessions est conservée)."""
        self.transport.leave_all(connection_id)
        logger.info("Participant disconnected", extra={"connection_id": connection_id})


COORDINATOR = TurnCoordinator(GENERATOR)
ORCHESTRATOR = SessionOrchestrator(STORE, WS, COORDINATOR)
