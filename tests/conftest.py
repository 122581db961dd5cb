from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from app.services.context_builder import ContextBuilder
from app.services.llm_engine import LLMServiceError
from app.services.orchestrator import SessionOrchestrator
from app.services.session_store import SessionStore
from app.services.turn_coordinator import TurnCoordinator

SCENARIOS = "1. The sunken temple\n2. **The clockwork city**\n3. The last train north"
PERSONAS = "1. Mira: a cartographer\n2. Brann: a retired smuggler\n3. Ilse: a lamplighter"
# réponse qui ne revient jamais (pour les timeouts)
HANG = object()


class RecordingTransport:
    """Transport en mémoire : rooms + journal des envois (connection_id, type, payload)."""

    def __init__(self) -> None:
        self.rooms: Dict[str, set] = {}
        self.sent: List[tuple] = []

    async def send_to(self, connection_id: str, event_type: str, payload: Dict[str, Any]) -> int:
        self.sent.append((connection_id, event_type, payload))
        return 1

    async def broadcast_room(self, room: str, event_type: str, payload: Dict[str, Any]) -> int:
        members = sorted(self.rooms.get(room, set()))
        for cid in members:
            self.sent.append((cid, event_type, payload))
        return len(members)

    def join_room(self, connection_id: str, room: str) -> None:
        self.rooms.setdefault(room, set()).add(connection_id)

    def leave_all(self, connection_id: str) -> None:
        for members in self.rooms.values():
            members.discard(connection_id)

    def events_for(self, connection_id: str) -> List[str]:
        return [etype for cid, etype, _ in self.sent if cid == connection_id]

    def payloads(self, connection_id: str, event_type: str) -> List[Dict[str, Any]]:
        return [p for cid, etype, p in self.sent if cid == connection_id and etype == event_type]


class ScriptedGenerator:
    """
    Générateur factice : renvoie les réponses de `responses` dans l'ordre
    (une exception dans la liste est levée, `HANG` ne répond jamais).
    `gate` permet de suspendre les appels jusqu'à `gate.set()`.
    """

    def __init__(self, responses: Optional[List[Any]] = None, delay: float = 0.0) -> None:
        self.responses = list(responses or [])
        self.delay = delay
        self.calls: List[Dict[str, Any]] = []
        self.gate: Optional[asyncio.Event] = None

    async def generate(self, model, system_prompt, messages, temperature=None, max_tokens=None) -> str:
        self.calls.append(
            {
                "model": model,
                "system_prompt": system_prompt,
                "messages": list(messages),
                "temperature": temperature,
                "max_tokens": max_tokens,
            }
        )
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self.responses:
            raise LLMServiceError("no scripted response left")
        item = self.responses.pop(0)
        if item is HANG:
            await asyncio.Event().wait()
        if isinstance(item, BaseException):
            raise item
        return item


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def generator() -> ScriptedGenerator:
    return ScriptedGenerator()


@pytest.fixture
def store() -> SessionStore:
    return SessionStore(code_length=5, max_attempts=10, preamble="You are the narrator.")


@pytest.fixture
def builder() -> ContextBuilder:
    return ContextBuilder(
        model="test-model",
        options_system_message="Give options.",
        options_temperature=1.2,
        options_max_tokens=300,
        action_max_tokens=300,
        option_count=3,
        max_entries=0,
    )


@pytest.fixture
def coordinator(generator, builder) -> TurnCoordinator:
    return TurnCoordinator(generator, builder, generation_timeout=1.0, require_all_personas=True)


@pytest.fixture
def orchestrator(store, transport, coordinator) -> SessionOrchestrator:
    return SessionOrchestrator(store, transport, coordinator)


async def bootstrap_game(orchestrator: SessionOrchestrator, generator: ScriptedGenerator, players=("L", "P2")) -> str:
    """Amène une session jusqu'à IN_PROGRESS (le premier joueur est le leader)."""
    leader, *others = players
    created = await orchestrator.create_session(leader)
    sid = created.session_id
    for pid in others:
        await orchestrator.join_session(pid, sid)
    generator.responses.extend([SCENARIOS, PERSONAS])
    await orchestrator.request_scenario_options(leader, sid)
    await orchestrator.select_scenario(leader, sid, "The clockwork city")
    await orchestrator.request_persona_options(leader, sid)
    names = ["Mira: a cartographer", "Brann: a retired smuggler", "Ilse: a lamplighter", "Odo: a cook"]
    for pid, persona in zip(players, names):
        await orchestrator.select_persona(pid, sid, persona)
    started = await orchestrator.start_game(leader, sid)
    assert started.ok, started.error
    return sid
