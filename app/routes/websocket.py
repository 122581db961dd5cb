# app/routes/websocket.py
"""
WebSocket endpoint.

- /ws : canal joueur. À l'accept, le serveur envoie {"type":"connected","payload":{"connectionId":...}}.
- Messages clients : {"type": "<event>", "payload": {...}} (cf. SessionOrchestrator pour la liste).
- ping → pong ; JSON invalide → event `error` (code invalid_payload).

Chaque message est traité dans sa propre tâche : une génération LLM longue ne bloque
pas la lecture du socket. L'ordre par session est garanti par la file de la session.
"""
from __future__ import annotations

import asyncio
from typing import Set

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from app.models.events import InboundMessage
from app.services.orchestrator import ORCHESTRATOR
from app.services.ws_manager import WS

router = APIRouter()

# références fortes sur les tâches en vol (sinon le GC peut les collecter)
_IN_FLIGHT: Set[asyncio.Task] = set()


@router.websocket("/ws")
async def websocket_endpoint(ws: WebSocket):
    cid = await WS.connect(ws)
    await WS.send_to(cid, "connected", {"connectionId": cid})
    try:
        while True:
            raw = await ws.receive_text()
            try:
                msg = InboundMessage.model_validate_json(raw)
            except ValidationError:
                await WS.send_to(cid, "error", {"code": "invalid_payload", "message": "malformed message"})
                continue

            if msg.type == "ping":
                await WS.send_to(cid, "pong", {})
                continue

            task = asyncio.create_task(ORCHESTRATOR.dispatch(cid, msg.type, msg.payload))
            _IN_FLIGHT.add(task)
            task.add_done_callback(_IN_FLIGHT.discard)
    except WebSocketDisconnect:
        pass
    finally:
        ORCHESTRATOR.disconnect(cid)
        await WS.disconnect(cid)
