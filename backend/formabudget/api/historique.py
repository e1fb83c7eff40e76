from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from formabudget.api.deps import TenantDep
from formabudget.core.errors import unwrap
from formabudget.db.session import get_db
from formabudget.schemas.historique import HistoriqueListResponse
from formabudget.services import historique_service
from formabudget.services.tenant_service import TenantContext

"""
API Historique.

Rôle (fonctionnel) :
- Journal d’audit de l’organisation, du plus récent au plus ancien, paginé.
- Filtres : module, action, origine (backoffice / systeme), entité, client.
"""

router = APIRouter(prefix="/historique", tags=["historique"])


@router.get("", response_model=HistoriqueListResponse)
async def list_historique(
    module: Optional[str] = None,
    action: Optional[str] = None,
    origine: Optional[str] = Query(None, pattern="^(backoffice|systeme)$"),
    entite_id: Optional[str] = None,
    entreprise_id: Optional[uuid.UUID] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = TenantDep,
):
    return unwrap(
        await historique_service.list_historique(
            db,
            ctx,
            module=module,
            action=action,
            origine=origine,
            entite_id=entite_id,
            entreprise_id=entreprise_id,
            page=page,
            page_size=page_size,
        )
    )
