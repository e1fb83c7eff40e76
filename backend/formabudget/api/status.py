from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from formabudget.db.session import get_db
from formabudget.models.historique_event import HistoriqueEvent

"""
API System Status.

Rôle (fonctionnel) :
- Vérifie la disponibilité de la base (requête simple).
- Fournit une information de fraîcheur via la date du dernier événement d’historique.
"""

router = APIRouter(prefix="/system", tags=["system"])


@router.get("/status")
async def system_status(db: AsyncSession = Depends(get_db)):
    db_ok = True
    last_event = None
    try:
        await db.execute(text("SELECT 1"))
        last = (await db.execute(select(func.max(HistoriqueEvent.created_at)))).scalar()
        last_event = last.isoformat() if last else None
    except SQLAlchemyError:
        db_ok = False

    return {
        "ok": db_ok,
        "db": {"ok": db_ok},
        "last_event": last_event,
        "ts": datetime.now(timezone.utc).isoformat(),
    }
