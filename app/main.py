"""
Application FastAPI: Point d'entrée
====================================

Rôle
----
- Instancie l'app FastAPI, configure le CORS pour le front,
- Monte les routeurs (WebSocket de jeu + REST de diagnostic),
- Configure le logging et lance le nettoyage périodique des sessions inactives.

Notes
-----
- ⚠️ Le middleware CORS doit être ajouté AVANT les include_router.
- Garder `settings.ALLOWED_ORIGINS` en phase avec les URLs du front.
"""
import asyncio
import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config.settings import settings
from app.routes.health import router as health_router
from app.routes.session import router as session_router
from app.routes.websocket import router as ws_router
from app.services.session_store import STORE, run_reaper
from app.services.ws_manager import WS

logger = logging.getLogger(__name__)

# --- App FastAPI principale  ---
app = FastAPI(title="Adventure Party Backend")

# ===========================
# CORS
# ===========================
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ===========================
# Montage des routers
# ===========================
app.include_router(ws_router)                  # WebSocket endpoint (/ws)
app.include_router(health_router)
app.include_router(session_router)

_reaper_task: Optional[asyncio.Task] = None


# --- Racine utile pour "ping" simple (sans /health) ---
@app.get("/")
async def root():
    """Ping basique : permet de vérifier que l'app tourne (sans dépendance LLM)."""
    return {"ok": True, "service": "adventure-party-backend"}


# --- Hooks de cycle de vie ---
@app.on_event("startup")
async def on_startup():
    """
    Au démarrage:
    - configure le niveau de log,
    - affiche la config LLM courante (provider, modèle, endpoint),
    - lance la tâche de nettoyage des sessions inactives.
    """
    global _reaper_task
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info(
        "LLM config",
        extra={"llm_provider": settings.LLM_PROVIDER, "llm_model": settings.LLM_MODEL, "llm_url": settings.LLM_ENDPOINT},
    )
    if settings.SESSION_IDLE_TTL_SECONDS > 0:
        _reaper_task = asyncio.create_task(
            run_reaper(STORE, settings.SESSION_IDLE_TTL_SECONDS, settings.REAPER_INTERVAL_SECONDS)
        )


@app.on_event("shutdown")
async def on_shutdown():
    """Arrête le nettoyage périodique et ferme les sockets encore ouvertes."""
    global _reaper_task
    if _reaper_task and not _reaper_task.done():
        _reaper_task.cancel()
        try:
            await _reaper_task
        except asyncio.CancelledError:
            pass
    _reaper_task = None
    await WS.close_all()
