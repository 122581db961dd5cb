"""
Service: game_session.py
Rôle :
- Décrire l'état d'UNE partie (session) : membres, phase, aventure, personnages,
  tour courant et journal de conversation envoyé au LLM.
- Fournir la file d'actions FIFO propre à chaque session (`ActionQueue`).

Phases (progression strictement croissante) :
    LOBBY → CHOOSING_SCENARIO → CHOOSING_PERSONAS → IN_PROGRESS

Concurrence :
- Un événement adressé à une session s'exécute entièrement (y compris l'attente
  du LLM) dans un créneau de sa file avant que le suivant ne démarre.
- Les sessions sont indépendantes : aucune file/verrou partagé entre elles.
"""
from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, AsyncIterator, Dict, List, Optional

UNKNOWN_PERSONA_NAME = "Unknown adventurer"


class Phase(IntEnum):
    """Phases ordonnées : la comparaison `<` reflète l'ordre de progression."""

    LOBBY = 0
    CHOOSING_SCENARIO = 1
    CHOOSING_PERSONAS = 2
    IN_PROGRESS = 3

    @property
    def label(self) -> str:
        return self.name.lower()


@dataclass(frozen=True)
class ContextEntry:
    """Une entrée (role, content) du journal de conversation."""

    role: str
    content: str

    def to_message(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class Persona:
    """Personnage choisi par un joueur (description complète + nom court)."""

    description: str
    name: str

    @classmethod
    def from_description(cls, description: str) -> "Persona":
        """Le nom est le texte avant le premier ':' (sans gras markdown)."""
        text = description.replace("**", "").strip()
        name = text.split(":", 1)[0].strip() or UNKNOWN_PERSONA_NAME
        return cls(description=text, name=name)


class ActionQueue:
    """
    File d'exécution FIFO d'une session.

    `asyncio.Lock` est équitable : les coroutines en attente obtiennent le
    créneau dans leur ordre d'arrivée.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._pending = 0

    @property
    def pending(self) -> int:
        """Nombre d'événements en cours + en attente."""
        return self._pending

    def is_idle(self) -> bool:
        return self._pending == 0

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        self._pending += 1
        try:
            async with self._lock:
                yield
        finally:
            self._pending -= 1


@dataclass
class Session:
    id: str
    leader_id: str
    members: List[str] = field(default_factory=list)
    phase: Phase = Phase.LOBBY
    scenario: Optional[str] = None
    personas: Dict[str, Persona] = field(default_factory=dict)
    turn_index: int = 0
    conversation_log: List[ContextEntry] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    queue: ActionQueue = field(default_factory=ActionQueue, repr=False, compare=False)

    @classmethod
    def open(cls, session_id: str, leader_id: str, preamble: str) -> "Session":
        """Session neuve : leader seul membre, journal = préambule système."""
        return cls(
            id=session_id,
            leader_id=leader_id,
            members=[leader_id],
            conversation_log=[ContextEntry("system", preamble)],
        )

    # -----------------------------
    # Lectures
    # -----------------------------
    def is_leader(self, participant_id: str) -> bool:
        return participant_id == self.leader_id

    def is_member(self, participant_id: str) -> bool:
        return participant_id in self.members

    def current_member(self) -> Optional[str]:
        if self.phase != Phase.IN_PROGRESS or not self.members:
            return None
        return self.members[self.turn_index]

    def all_personas_chosen(self) -> bool:
        return all(m in self.personas for m in self.members)

    def persona_name(self, participant_id: str) -> str:
        persona = self.personas.get(participant_id)
        return persona.name if persona else UNKNOWN_PERSONA_NAME

    def touch(self) -> None:
        self.last_activity = time.time()

    def snapshot(self) -> Dict[str, Any]:
        """Vue sérialisable (diagnostic / route REST)."""
        return {
            "session_id": self.id,
            "leader_id": self.leader_id,
            "members": list(self.members),
            "phase": self.phase.label,
            "scenario": self.scenario,
            "personas": {pid: {"name": p.name, "description": p.description} for pid, p in self.personas.items()},
            "turn_index": self.turn_index if self.phase == Phase.IN_PROGRESS else None,
            "current_member": self.current_member(),
            "log_length": len(self.conversation_log),
            "pending_events": self.queue.pending,
        }
