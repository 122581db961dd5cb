"""
Service: turn_coordinator.py
Rôle:
- Machine à états d'UNE session : lobby → choix de l'aventure → choix des personnages → tours de jeu.
- Chaque méthode = l'effet complet d'un événement externe :
    1) garde de légalité (phase, rôle de l'appelant) AVANT toute mutation ;
    2) appel LLM éventuel (borné par un timeout) ;
    3) mutation atomique (aucun `await` entre la première et la dernière écriture) ;
    4) liste des notifications à émettre (l'orchestrateur s'occupe du transport).

Transitions:
| Phase                         | Événement                 | Garde                               | Phase suivante     |
|-------------------------------|---------------------------|-------------------------------------|--------------------|
| LOBBY                         | join                      | pas déjà membre                     | LOBBY              |
| LOBBY / CHOOSING_SCENARIO     | request_scenario_options  | leader, aventure non choisie        | CHOOSING_SCENARIO  |
| CHOOSING_SCENARIO             | select_scenario           | leader, aventure non choisie        | CHOOSING_SCENARIO  |
| CHOOSING_SCENARIO / _PERSONAS | request_persona_options   | membre, aventure choisie            | CHOOSING_PERSONAS  |
| CHOOSING_PERSONAS             | select_persona            | membre sans personnage              | CHOOSING_PERSONAS  |
| CHOOSING_PERSONAS             | start_game                | leader (+ tous prêts si configuré)  | IN_PROGRESS        |
| IN_PROGRESS                   | submit_action             | membre dont c'est le tour           | IN_PROGRESS        |

Le coordinateur ne sérialise PAS lui-même les événements : il suppose être appelé
depuis le créneau de la file de la session (cf. `SessionOrchestrator`).
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence

from app.config.settings import settings
from .context_builder import ContextBuilder, PromptKind, parse_options
from .errors import GenerationFailure, InvalidPayload, InvalidPhase, Unauthorized
from .game_session import ContextEntry, Persona, Phase, Session
from .llm_engine import LLMServiceError

logger = logging.getLogger(__name__)


class Generator(Protocol):
    async def generate(
        self,
        model: str,
        system_prompt: Optional[str],
        messages: Sequence[Dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str: ...


@dataclass
class Notification:
    """Message sortant : soit vers une connexion (`to`), soit vers la room d'une session (`room`)."""

    event_type: str
    payload: Dict[str, Any] = field(default_factory=dict)
    to: Optional[str] = None
    room: Optional[str] = None

    @classmethod
    def direct(cls, to: str, event_type: str, payload: Optional[Dict[str, Any]] = None) -> "Notification":
        return cls(event_type=event_type, payload=payload or {}, to=to)

    @classmethod
    def broadcast(cls, room: str, event_type: str, payload: Optional[Dict[str, Any]] = None) -> "Notification":
        return cls(event_type=event_type, payload=payload or {}, room=room)


@dataclass
class TransitionResult:
    data: Dict[str, Any] = field(default_factory=dict)
    notifications: List[Notification] = field(default_factory=list)
    # connexions à ajouter à la room de la session avant émission
    room_joins: List[str] = field(default_factory=list)


# -------------------- gardes --------------------

def _require_phase(session: Session, *phases: Phase) -> None:
    if session.phase not in phases:
        expected = "/".join(p.label for p in phases)
        raise InvalidPhase(f"event not allowed in phase {session.phase.label} (expected {expected})")


def _require_leader(session: Session, participant_id: str) -> None:
    if not session.is_leader(participant_id):
        raise Unauthorized("only the session leader can do this")


def _require_member(session: Session, participant_id: str) -> None:
    if not session.is_member(participant_id):
        raise Unauthorized("not a member of this session")


class TurnCoordinator:
    def __init__(
        self,
        generator: Generator,
        builder: Optional[ContextBuilder] = None,
        *,
        generation_timeout: float = settings.LLM_TIMEOUT_SECONDS,
        require_all_personas: bool = settings.REQUIRE_ALL_PERSONAS,
    ) -> None:
        self.generator = generator
        self.builder = builder or ContextBuilder()
        self.generation_timeout = generation_timeout
        self.require_all_personas = require_all_personas

    async def _generate(self, session: Session, kind: PromptKind, entries: List[ContextEntry]) -> str:
        """Appel LLM borné ; toute défaillance devient `GenerationFailure`."""
        request = self.builder.to_request(kind, entries)
        log_extra = {"session_id": session.id, "prompt_kind": kind.value}
        try:
            text = await asyncio.wait_for(
                self.generator.generate(
                    request.model,
                    request.system_prompt,
                    request.messages,
                    request.temperature,
                    request.max_tokens,
                ),
                timeout=self.generation_timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.warning("Generator timed out", extra=log_extra)
            raise GenerationFailure(f"generator timed out after {self.generation_timeout}s") from exc
        except LLMServiceError as exc:
            logger.warning("Generator failed", extra={**log_extra, "error": str(exc)})
            raise GenerationFailure(str(exc)) from exc
        except Exception as exc:
            logger.exception("Unexpected generator error", extra=log_extra)
            raise GenerationFailure("unexpected generator error") from exc

        if not isinstance(text, str) or not text.strip():
            raise GenerationFailure("empty response from generator")
        return text.strip()

    # ---------------- lobby ----------------
    async def join(self, session: Session, participant_id: str) -> TransitionResult:
        _require_phase(session, Phase.LOBBY)
        if session.is_member(participant_id):
            raise InvalidPhase("already a member of this session")

        session.members.append(participant_id)
        count = len(session.members)
        return TransitionResult(
            data={"player_count": count},
            notifications=[
                Notification.direct(session.leader_id, "playerJoined", {"playerCount": count}),
                Notification.direct(participant_id, "gameJoined", {"accessCode": session.id}),
            ],
            room_joins=[participant_id],
        )

    # ---------------- aventure ----------------
    async def request_scenario_options(self, session: Session, participant_id: str) -> TransitionResult:
        _require_phase(session, Phase.LOBBY, Phase.CHOOSING_SCENARIO)
        _require_leader(session, participant_id)
        if session.scenario is not None:
            raise InvalidPhase("adventure already chosen")

        entries = self.builder.build_prompt(session, PromptKind.SCENARIO_OPTIONS)
        text = await self._generate(session, PromptKind.SCENARIO_OPTIONS, entries)
        options = parse_options(text, self.builder.option_count)

        session.phase = Phase.CHOOSING_SCENARIO
        return TransitionResult(
            data={"options": options},
            notifications=[Notification.direct(participant_id, "adventureOptions", {"adventures": options})],
        )

    async def select_scenario(self, session: Session, participant_id: str, scenario: str) -> TransitionResult:
        _require_phase(session, Phase.CHOOSING_SCENARIO)
        _require_leader(session, participant_id)
        if session.scenario is not None:
            raise InvalidPhase("adventure already chosen")

        text = scenario.strip()
        if not text:
            raise InvalidPayload("adventure must not be empty")
        session.scenario = text
        self.builder.append_scenario(session, text)
        return TransitionResult(
            data={"scenario": text},
            notifications=[Notification.broadcast(session.id, "adventureSelected", {"adventure": text})],
        )

    # ---------------- personnages ----------------
    async def request_persona_options(self, session: Session, participant_id: str) -> TransitionResult:
        _require_phase(session, Phase.CHOOSING_SCENARIO, Phase.CHOOSING_PERSONAS)
        _require_member(session, participant_id)
        if session.scenario is None:
            raise InvalidPhase("no adventure chosen yet")

        entries = self.builder.build_prompt(session, PromptKind.PERSONA_OPTIONS)
        text = await self._generate(session, PromptKind.PERSONA_OPTIONS, entries)
        options = parse_options(text, self.builder.option_count)

        session.phase = Phase.CHOOSING_PERSONAS
        return TransitionResult(
            data={"options": options},
            notifications=[
                Notification.direct(
                    participant_id, "characterOptions", {"characters": options, "socketId": participant_id}
                )
            ],
        )

    async def select_persona(self, session: Session, participant_id: str, description: str) -> TransitionResult:
        _require_phase(session, Phase.CHOOSING_PERSONAS)
        _require_member(session, participant_id)
        if participant_id in session.personas:
            raise Unauthorized("character already chosen")
        if not description.strip():
            raise InvalidPayload("character must not be empty")

        persona = Persona.from_description(description)
        session.personas[participant_id] = persona
        self.builder.append_persona_note(session, participant_id, persona)

        notifications = [
            Notification.direct(
                participant_id,
                "characterSelected",
                {"character": persona.description, "characterName": persona.name},
            )
        ]
        all_ready = session.all_personas_chosen()
        if all_ready:
            notifications.append(Notification.direct(session.leader_id, "allCharactersSelected"))
        return TransitionResult(
            data={"persona": persona.name, "all_ready": all_ready},
            notifications=notifications,
        )

    # ---------------- partie ----------------
    async def start_game(self, session: Session, participant_id: str) -> TransitionResult:
        _require_phase(session, Phase.CHOOSING_PERSONAS)
        _require_leader(session, participant_id)
        if self.require_all_personas and not session.all_personas_chosen():
            raise InvalidPhase("not every participant has chosen a character")

        session.phase = Phase.IN_PROGRESS
        session.turn_index = 0
        first = session.members[0]
        return TransitionResult(
            data={"current_member": first},
            notifications=[
                Notification.broadcast(session.id, "gameStarted", {"adventure": session.scenario}),
                Notification.direct(first, "yourTurn", {"accessCode": session.id}),
            ],
        )

    async def submit_action(self, session: Session, participant_id: str, action: str) -> TransitionResult:
        _require_phase(session, Phase.IN_PROGRESS)
        if participant_id != session.current_member():
            raise Unauthorized("it is not your turn")

        text = action.strip()
        if not text:
            raise InvalidPayload("action must not be empty")
        entries = self.builder.build_action_prompt(session, participant_id, text)
        outcome = await self._generate(session, PromptKind.ACTION_RESOLUTION, entries)

        self.builder.append_action_exchange(session, participant_id, text, outcome)
        session.turn_index = (session.turn_index + 1) % len(session.members)
        next_member = session.members[session.turn_index]
        return TransitionResult(
            data={"outcome": outcome, "next_member": next_member, "turn_index": session.turn_index},
            notifications=[
                Notification.broadcast(
                    session.id,
                    "actionOutcome",
                    {
                        "outcome": outcome,
                        "playerId": participant_id,
                        "characterName": session.persona_name(participant_id),
                    },
                ),
                Notification.direct(next_member, "yourTurn", {"accessCode": session.id}),
            ],
        )
