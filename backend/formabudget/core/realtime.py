from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Set

from fastapi import WebSocket

"""
Core Realtime (invalidation de cache côté front).

Rôle (fonctionnel) :
- Maintient les connexions WebSocket ouvertes par le back-office.
- Après une mutation (allocation, seuil, plan, facture…), l’API diffuse un événement
  CACHE_INVALIDATED listant les pages à recharger (ex : /entreprises/<id>).

Notes :
- Diffusion best-effort : un client mort est purgé, l’endpoint appelant n’échoue jamais.
- Verrou asyncio : protège l’accès concurrent au set de connexions.
"""

logger = logging.getLogger("formabudget.realtime")


class ConnectionManager:
    """Pool des connexions WebSocket + diffusion des événements d’invalidation."""

    def __init__(self) -> None:
        self._connections: Set[WebSocket] = set()
        self._lock = asyncio.Lock()

    def count(self) -> int:
        return len(self._connections)

    async def connect(self, ws: WebSocket) -> None:
        await ws.accept()
        async with self._lock:
            self._connections.add(ws)
        logger.info("WS connected (%s total)", self.count())

    async def disconnect(self, ws: WebSocket) -> None:
        async with self._lock:
            self._connections.discard(ws)
        logger.info("WS disconnected (%s total)", self.count())

    async def broadcast_json(self, payload: Dict[str, Any]) -> None:
        """Diffuse un payload à toutes les connexions, puis purge celles qui sont mortes."""
        async with self._lock:
            conns = list(self._connections)

        if not conns:
            return

        dead: list[WebSocket] = []
        for ws in conns:
            try:
                await ws.send_json(payload)
            except Exception:
                dead.append(ws)

        if dead:
            async with self._lock:
                for ws in dead:
                    self._connections.discard(ws)
            logger.info("WS purged %s dead conns (%s remaining)", len(dead), self.count())

    async def invalidate(self, paths: Iterable[str]) -> None:
        """Publie CACHE_INVALIDATED pour une liste de chemins du back-office."""
        unique = sorted({p for p in paths if p})
        if not unique:
            return
        await self.broadcast_json(
            {
                "type": "CACHE_INVALIDATED",
                "ts": datetime.now(timezone.utc).isoformat(),
                "data": {"paths": unique},
            }
        )
