# app/services/ws_manager.py
"""
Service: ws_manager.py
- Mapping connection_id -> WebSocket (identifiant attribué à l'accept).
- Rooms: session_id -> set(connection_id) pour la diffusion de groupe.
- Snapshots immuables pour éviter "set changed size during iteration".
- Un WS mort est retiré silencieusement de tous les registres.
- Admin: stats(), close_all().
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from threading import RLock
from typing import Any, Dict, List, Set, Tuple
from uuid import uuid4

from starlette.websockets import WebSocket

logger = logging.getLogger(__name__)


@dataclass
class WSManager:
    _lock: RLock = field(default_factory=RLock, init=False, repr=False)
    # connection_id -> WebSocket
    connections: Dict[str, WebSocket] = field(default_factory=dict)
    # room (session_id) -> set(connection_id)
    rooms: Dict[str, Set[str]] = field(default_factory=dict)

    async def connect(self, ws: WebSocket) -> str:
        """Accepte la connexion WS et lui attribue un connection_id."""
        await ws.accept()
        cid = uuid4().hex
        with self._lock:
            self.connections[cid] = ws
        return cid

    def _unlink(self, connection_id: str) -> None:
        """Retire la connexion de toutes les structures (connections + rooms)."""
        with self._lock:
            self.connections.pop(connection_id, None)
        self.leave_all(connection_id)

    async def disconnect(self, connection_id: str) -> None:
        """Ferme proprement la connexion et nettoie les registres."""
        with self._lock:
            ws = self.connections.get(connection_id)
        self._unlink(connection_id)
        if ws is None:
            return
        try:
            await ws.close()
        except Exception:
            # déjà fermée côté client
            pass

    # ---------- rooms ----------
    def join_room(self, connection_id: str, room: str) -> None:
        with self._lock:
            self.rooms.setdefault(room, set()).add(connection_id)

    def leave_room(self, connection_id: str, room: str) -> None:
        with self._lock:
            bucket = self.rooms.get(room)
            if bucket is not None:
                bucket.discard(connection_id)
                if not bucket:
                    self.rooms.pop(room, None)

    def leave_all(self, connection_id: str) -> None:
        with self._lock:
            for room in [r for r, members in self.rooms.items() if connection_id in members]:
                self.leave_room(connection_id, room)

    # ---------- snapshots immuables ----------
    def _snapshot_room(self, room: str) -> List[Tuple[str, WebSocket]]:
        with self._lock:
            return [
                (cid, self.connections[cid])
                for cid in self.rooms.get(room, set())
                if cid in self.connections
            ]

    # ---------- envois ----------
    async def _send_json_one(self, connection_id: str, ws: WebSocket, payload: Any) -> bool:
        """Envoie à un WS; renvoie True si succès, sinon False (et retire le WS mort)."""
        try:
            data = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
            await ws.send_text(data)
            return True
        except Exception:
            logger.debug("Dropping dead websocket", extra={"connection_id": connection_id})
            self._unlink(connection_id)
            return False

    async def send_to(self, connection_id: str, event_type: str, payload: Any) -> int:
        """Envoi typé {"type", "payload"} à une connexion ; renvoie 1 si livré, 0 sinon."""
        with self._lock:
            ws = self.connections.get(connection_id)
        if ws is None:
            return 0
        ok = await self._send_json_one(connection_id, ws, {"type": event_type, "payload": payload})
        return 1 if ok else 0

    async def broadcast_room(self, room: str, event_type: str, payload: Any) -> int:
        conns = self._snapshot_room(room)
        success = 0
        for cid, ws in conns:
            if await self._send_json_one(cid, ws, {"type": event_type, "payload": payload}):
                success += 1
        logger.debug("Room broadcast", extra={"room": room, "event": event_type, "delivered": success})
        return success

    # ---------- admin ----------
    def stats(self) -> dict:
        with self._lock:
            return {
                "connections_total": len(self.connections),
                "rooms": {room: len(members) for room, members in self.rooms.items()},
            }

    async def close_all(self) -> dict:
        """Ferme TOUTES les sockets."""
        with self._lock:
            ids = list(self.connections.keys())
        for cid in ids:
            await self.disconnect(cid)
        return self.stats()


WS = WSManager()
