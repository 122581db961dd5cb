"""
Service: errors.py
- Taxonomie des erreurs métier remontées à l'appelant d'un événement de session.
- Chaque erreur porte un `code` stable (envoyé tel quel au client dans l'event `error`).

Aucune de ces erreurs ne doit faire tomber le process : l'orchestrateur les
intercepte à la frontière d'événement et les renvoie à l'émetteur seul.
"""
from __future__ import annotations


class SessionError(Exception):
    """Erreur récupérable liée au traitement d'un événement de session."""

    code = "session_error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class SessionNotFound(SessionError):
    """Code d'accès inconnu (ou session nettoyée)."""

    code = "not_found"


class InvalidPhase(SessionError):
    """Événement illégal dans la phase courante de la session."""

    code = "invalid_phase"


class Unauthorized(SessionError):
    """L'appelant n'a pas le rôle requis (leader, joueur dont c'est le tour…)."""

    code = "unauthorized"


class GenerationFailure(SessionError):
    """Le générateur externe a échoué (timeout, erreur HTTP, réponse mal formée)."""

    code = "generation_failure"


class InvalidPayload(SessionError):
    """Contenu vide ou inexploitable (aventure, personnage, action)."""

    code = "invalid_payload"


class AllocationExhausted(SessionError):
    """Impossible de trouver un code d'accès libre après N tirages."""

    code = "allocation_exhausted"
