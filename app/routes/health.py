"""
Module routes/health.py
Rôle:
- Endpoints de santé (service OK + ping LLM).

Intégrations:
- settings: nom d’app + paramètres LLM.
- GENERATOR: ping rapide du provider / modèle (latence, échantillon).
"""
import asyncio
import time

from fastapi import APIRouter

from app.config.settings import settings
from app.services.llm_engine import GENERATOR
from app.services.session_store import STORE
from app.services.ws_manager import WS

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
async def health():
    """Renvoie un OK minimal avec le nom de service et quelques compteurs."""
    return {
        "ok": True,
        "service": settings.APP_NAME,
        "sessions": len(STORE),
        "connections": WS.stats()["connections_total"],
    }


@router.get("/llm")
async def health_llm():
    """
    Vérifie la disponibilité du LLM en mesurant une latence simple.
    - Prompt court ("Reply: pong.") pour minimiser le temps de calcul.
    - Retourne provider, modèle, latence en secondes et un aperçu (sample).
    """
    t0 = time.perf_counter()
    try:
        text = await asyncio.wait_for(
            GENERATOR.generate(settings.LLM_MODEL, None, [{"role": "user", "content": "Reply: pong."}], None, 10),
            timeout=settings.LLM_TIMEOUT_SECONDS,
        )
        dt = time.perf_counter() - t0
        return {
            "ok": True,
            "provider": settings.LLM_PROVIDER,
            "model": settings.LLM_MODEL,
            "latency_s": round(dt, 3),
            "sample": text[:120]  # ← coupe l’aperçu
        }
    except Exception as e:
        dt = time.perf_counter() - t0
        return {
            "ok": False,
            "provider": settings.LLM_PROVIDER,
            "model": settings.LLM_MODEL,
            "latency_s": round(dt, 3),
            "error": str(e) or type(e).__name__
        }
