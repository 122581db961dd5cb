"""
Configuration de l'application (Settings)
=========================================

Rôle
----
- Centraliser les paramètres de l'app (nom, host/port, LLM, prompts, sessions…).
- Les valeurs par défaut conviennent pour un environnement de dev local.
- Les variables peuvent être surchargées via un fichier `.env` ou l'environnement.

Intégrations
------------
- `pydantic-settings` charge automatiquement les variables d'env et `.env`.
- Les services/routers importent `from app.config.settings import settings`.

Bonnes pratiques
----------------
- *Ne commitez pas* une valeur réelle de `LLM_API_KEY`. Utilisez `.env`.
- `LLM_ENDPOINT` pointe par défaut vers Ollama local (http://localhost:11434).
- `LLM_TIMEOUT_SECONDS` borne TOUT appel au générateur (retries compris) :
  au-delà, l'événement échoue et la file de la session avance.

Exemples de `.env`
------------------
APP_NAME="Adventure Party Backend (Staging)"
PORT=3001
LLM_PROVIDER="openai"
LLM_MODEL="gpt-4o-2024-08-06"
LLM_ENDPOINT="https://api.openai.com/v1/chat/completions"
LLM_API_KEY="sk-..."
REQUIRE_ALL_PERSONAS=false
"""
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_OPTIONS_SYSTEM_MESSAGE = (
    "You help a group of friends set up a collaborative text adventure. "
    "When asked for options, answer with exactly three options, one per line, "
    "numbered 1. to 3., each a single short paragraph. No introduction, no conclusion."
)

DEFAULT_GAME_SYSTEM_MESSAGE = (
    "You are the narrator of a collaborative text adventure played by several characters. "
    "Each turn one character acts; describe the outcome of that action in a few vivid sentences, "
    "keep the story consistent with everything that happened before, "
    "and never act or speak on behalf of the players' characters."
)


class Settings(BaseSettings):
    # Nom du service (apparaît dans /health)
    APP_NAME: str = "Adventure Party Backend"
    # Bind réseau (FastAPI / Uvicorn)
    HOST: str = "0.0.0.0"
    PORT: int = 3001
    LOG_LEVEL: str = "INFO"

    # Frontends autorisés (CORS)
    ALLOWED_ORIGINS: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    # Configuration du LLM (par défaut : Ollama local)
    # LLM_PROVIDER = "ollama" (/api/chat) ou "openai" (/v1/chat/completions et compatibles)
    LLM_PROVIDER: str = "ollama"
    LLM_MODEL: str = "llama3.1"
    LLM_ENDPOINT: str = "http://localhost:11434/api/chat"
    LLM_API_KEY: str = ""
    LLM_TIMEOUT_SECONDS: float = 60.0
    # Threads dédiés aux appels LLM bloquants (pool séparé du pool par défaut de la boucle)
    LLM_MAX_WORKERS: int = 8

    # Prompts système (options = aventures/personnages, game = narrateur)
    OPTIONS_SYSTEM_MESSAGE: str = DEFAULT_OPTIONS_SYSTEM_MESSAGE
    GAME_SYSTEM_MESSAGE: str = DEFAULT_GAME_SYSTEM_MESSAGE
    OPTIONS_TEMPERATURE: float = 1.2
    OPTIONS_MAX_TOKENS: int = 300
    ACTION_MAX_TOKENS: int = 300
    OPTION_COUNT: int = 3
    # Nombre max d'entrées du journal envoyées au LLM (0 = tout le journal)
    CONTEXT_MAX_ENTRIES: int = 0

    # Codes d'accès (identifiants de session)
    ACCESS_CODE_LENGTH: int = 5
    ACCESS_CODE_MAX_ATTEMPTS: int = 20

    # Le leader ne peut lancer la partie que lorsque tout le monde a un personnage
    REQUIRE_ALL_PERSONAS: bool = True

    # Nettoyage des sessions inactives
    SESSION_IDLE_TTL_SECONDS: int = 6 * 3600
    REAPER_INTERVAL_SECONDS: int = 300

    # Paramétrage pydantic-settings :
    # - lit le fichier .env (UTF-8) si présent
    # - ignore les clés supplémentaires pour éviter les erreurs
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


# Instance unique importable partout : `settings`
settings = Settings()
