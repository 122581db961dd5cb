"""
Service: context_builder.py
Rôle:
- Construire la séquence ordonnée de messages envoyée au LLM selon le type de demande
  (options d'aventure, options de personnage, résolution d'action).
- Seul écrivain du journal de conversation d'une session (`conversation_log`).

Règles:
- Les ajouts au journal ont lieu APRÈS un aller-retour LLM réussi (ou pour un choix
  validé), jamais avant : un échec ne laisse aucune trace partielle.
- La fenêtre de contexte (`max_entries`) ne tronque que ce qui est ENVOYÉ ;
  le journal lui-même n'est jamais raccourci. Le préambule système est toujours gardé.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from app.config.settings import settings
from .errors import GenerationFailure
from .game_session import ContextEntry, Persona, Session

SCENARIO_OPTIONS_PROMPT = "Generate {count} exciting adventure starting points."
PERSONA_OPTIONS_PROMPT = (
    'Based on the following adventure: "{scenario}", generate {count} suitable character descriptions.'
)
SCENARIO_LOG_TEMPLATE = "The following is the outline and inciting action of the adventure: \n{scenario}"
PERSONA_NOTE_TEMPLATE = "The character with id {participant_id} has been assigned the following description: \n{description}"
ACTION_NOTE_TEMPLATE = "The character with id {participant_id} ({name}) has taken the following action: \n"

# "1." / "2)" / "3 " / "-" / "*" / "•" en début de ligne
_LIST_MARKER = re.compile(r"^\s*(?:\d+[.)]|\d+(?=\s)|[-*•])\s*")


class PromptKind(str, Enum):
    SCENARIO_OPTIONS = "scenario_options"
    PERSONA_OPTIONS = "persona_options"
    ACTION_RESOLUTION = "action_resolution"


@dataclass
class GenerationRequest:
    """Arguments d'un appel `generate(model, system_prompt, messages, temperature, max_tokens)`."""

    model: str
    system_prompt: Optional[str]
    messages: List[Dict[str, str]]
    temperature: Optional[float]
    max_tokens: Optional[int]


def parse_options(text: str, count: int = 3) -> List[str]:
    """
    Découpe une réponse LLM en `count` options (une par ligne).
    - lignes vides ignorées, numérotation/puces et gras `**` retirés ;
    - si au moins `count` lignes sont numérotées/à puces, seules celles-ci comptent
      (élimine une éventuelle phrase d'introduction).
    Lève `GenerationFailure` si moins de `count` options sont exploitables.
    """
    lines = [ln.replace("**", "").strip() for ln in (text or "").strip().splitlines()]
    lines = [ln for ln in lines if ln]
    marked = [ln for ln in lines if _LIST_MARKER.match(ln)]
    chosen = marked if len(marked) >= count else lines

    options: List[str] = []
    for ln in chosen:
        cleaned = _LIST_MARKER.sub("", ln, count=1).strip()
        if cleaned:
            options.append(cleaned)
    if len(options) < count:
        raise GenerationFailure(f"expected {count} options, got {len(options)}")
    return options[:count]


class ContextBuilder:
    def __init__(
        self,
        *,
        model: str = settings.LLM_MODEL,
        options_system_message: str = settings.OPTIONS_SYSTEM_MESSAGE,
        options_temperature: float = settings.OPTIONS_TEMPERATURE,
        options_max_tokens: int = settings.OPTIONS_MAX_TOKENS,
        action_max_tokens: int = settings.ACTION_MAX_TOKENS,
        option_count: int = settings.OPTION_COUNT,
        max_entries: int = settings.CONTEXT_MAX_ENTRIES,
    ) -> None:
        self.model = model
        self.options_system_message = options_system_message
        self.options_temperature = options_temperature
        self.options_max_tokens = options_max_tokens
        self.action_max_tokens = action_max_tokens
        self.option_count = option_count
        self.max_entries = max_entries

    # ------------------------------------------------------------------
    # Construction des prompts
    # ------------------------------------------------------------------
    def _windowed_log(self, session: Session) -> List[ContextEntry]:
        log = list(session.conversation_log)
        if self.max_entries > 0 and len(log) - 1 > self.max_entries:
            return [log[0]] + log[-self.max_entries:]
        return log

    def build_prompt(self, session: Session, kind: PromptKind, extra: str = "") -> List[ContextEntry]:
        """
        Séquence ordonnée (role, content) pour `kind`.
        - options : consigne système d'options + demande utilisateur (le journal n'est pas envoyé) ;
        - action : journal complet, note d'attribution, puis l'action (`extra`) côté user.
        """
        if kind == PromptKind.SCENARIO_OPTIONS:
            return [
                ContextEntry("system", self.options_system_message),
                ContextEntry("user", SCENARIO_OPTIONS_PROMPT.format(count=self.option_count)),
            ]
        if kind == PromptKind.PERSONA_OPTIONS:
            return [
                ContextEntry("system", self.options_system_message),
                ContextEntry(
                    "user",
                    PERSONA_OPTIONS_PROMPT.format(scenario=session.scenario or "", count=self.option_count),
                ),
            ]
        if kind == PromptKind.ACTION_RESOLUTION:
            return self._windowed_log(session) + [ContextEntry("user", extra)]
        raise ValueError(f"unknown prompt kind: {kind!r}")

    def build_action_prompt(self, session: Session, participant_id: str, action: str) -> List[ContextEntry]:
        entries = self.build_prompt(session, PromptKind.ACTION_RESOLUTION, action)
        note = ContextEntry(
            "assistant",
            ACTION_NOTE_TEMPLATE.format(participant_id=participant_id, name=session.persona_name(participant_id)),
        )
        return entries[:-1] + [note, entries[-1]]

    def to_request(self, kind: PromptKind, entries: List[ContextEntry]) -> GenerationRequest:
        """Sépare le préambule système des messages et fixe température / tokens selon `kind`."""
        system_prompt: Optional[str] = None
        body = list(entries)
        if body and body[0].role == "system":
            system_prompt = body.pop(0).content

        if kind == PromptKind.ACTION_RESOLUTION:
            temperature, max_tokens = None, self.action_max_tokens
        else:
            temperature, max_tokens = self.options_temperature, self.options_max_tokens
        return GenerationRequest(
            model=self.model,
            system_prompt=system_prompt,
            messages=[e.to_message() for e in body],
            temperature=temperature,
            max_tokens=max_tokens,
        )

    def build_request(self, session: Session, kind: PromptKind, extra: str = "") -> GenerationRequest:
        return self.to_request(kind, self.build_prompt(session, kind, extra))

    # ------------------------------------------------------------------
    # Écritures du journal (append-only)
    # ------------------------------------------------------------------
    def append_scenario(self, session: Session, scenario: str) -> None:
        session.conversation_log.append(ContextEntry("user", SCENARIO_LOG_TEMPLATE.format(scenario=scenario)))

    def append_persona_note(self, session: Session, participant_id: str, persona: Persona) -> None:
        session.conversation_log.append(
            ContextEntry(
                "assistant",
                PERSONA_NOTE_TEMPLATE.format(participant_id=participant_id, description=persona.description),
            )
        )

    def append_action_exchange(self, session: Session, participant_id: str, action: str, outcome: str) -> None:
        """Ajoute l'action (attribuée) puis son dénouement, dans cet ordre, en un seul pas."""
        note = ACTION_NOTE_TEMPLATE.format(participant_id=participant_id, name=session.persona_name(participant_id))
        session.conversation_log.extend(
            [
                ContextEntry("user", note + action),
                ContextEntry("assistant", outcome),
            ]
        )
