from datetime import datetime, timezone

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

"""
API Realtime (WebSocket).

Rôle (fonctionnel) :
- Canal WebSocket du back-office : reçoit les événements CACHE_INVALIDATED
  (pages à recharger après une allocation, un changement de seuil, une facture…).
- Best-effort : si le manager WS n’est pas initialisé, la connexion est refusée.

Notes :
- Le client peut envoyer "PING" -> réponse "PONG".
"""

router = APIRouter(tags=["realtime"])


@router.websocket("/ws")
async def ws_invalidations(ws: WebSocket):
    manager = getattr(ws.app.state, "ws_manager", None)
    if manager is None:
        await ws.close(code=1011)
        return

    await manager.connect(ws)
    await ws.send_json({"type": "WS_CONNECTED", "ts": datetime.now(timezone.utc).isoformat()})

    try:
        while True:
            msg = await ws.receive_text()
            if msg.strip().upper() == "PING":
                await ws.send_json({"type": "PONG", "ts": datetime.now(timezone.utc).isoformat()})
    except WebSocketDisconnect:
        await manager.disconnect(ws)
    except Exception:
        # Nettoyage même en cas d’erreur inattendue
        await manager.disconnect(ws)
