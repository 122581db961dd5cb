"""
Models / events.py
Rôle:
- Valider les messages entrants du canal WebSocket `/ws`.

Notes:
- Enveloppe commune: {"type": "...", "payload": {...}}.
- Les champs acceptent le vocabulaire historique du front (camelCase: `accessCode`,
  `adventure`, `character`) ou le nom python (`session_id`, `scenario`, `persona`).
- Les chaînes sont nettoyées (strip) : une valeur vide ou blanche est refusée.
"""
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field


class InboundMessage(BaseModel):
    """Enveloppe d'un message client."""
    type: str = Field(..., min_length=1)
    payload: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="ignore")


class CreatePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class SessionRef(BaseModel):
    """Payload minimal : le code d'accès de la session visée."""
    session_id: str = Field(..., alias="accessCode", min_length=1)

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True, extra="ignore")


class ScenarioChoice(SessionRef):
    scenario: str = Field(..., alias="adventure", min_length=1)


class PersonaChoice(SessionRef):
    persona: str = Field(..., alias="character", min_length=1)


class ActionSubmission(SessionRef):
    action: str = Field(..., min_length=1)
