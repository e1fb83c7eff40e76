from __future__ import annotations

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from formabudget.api.deps import TenantDep, invalidate_cache
from formabudget.core.errors import unwrap
from formabudget.db.session import get_db
from formabudget.schemas.besoins import BesoinCreate, BesoinLinkSession, BesoinOut, BesoinUpdate
from formabudget.services import besoin_service
from formabudget.services.cost_engine import TypeBesoin
from formabudget.services.tenant_service import TenantContext

"""
API Besoins de formation.

Rôle (fonctionnel) :
- Lister les besoins d’un client (filtres année / type).
- Créer, modifier, archiver un besoin ; le rattacher à une session planifiée.

Un besoin modifie le coût engagé du client : chaque mutation invalide sa fiche.
"""

router = APIRouter(prefix="/besoins", tags=["besoins"])


def _paths(besoin) -> list[str]:
    return [f"/entreprises/{besoin.entreprise_id}"]


@router.get("", response_model=List[BesoinOut])
async def list_besoins(
    entreprise_id: uuid.UUID = Query(...),
    annee: Optional[int] = Query(None, ge=2020, le=2100),
    type_besoin: Optional[TypeBesoin] = None,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = TenantDep,
):
    return unwrap(
        await besoin_service.list_besoins(
            db, ctx, entreprise_id, annee=annee, type_besoin=type_besoin.value if type_besoin else None
        )
    )


@router.post("", response_model=BesoinOut, status_code=201)
async def create_besoin(
    payload: BesoinCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = TenantDep,
):
    besoin = unwrap(await besoin_service.create_besoin(db, ctx, payload))
    await invalidate_cache(request, _paths(besoin))
    return besoin


@router.get("/{besoin_id}", response_model=BesoinOut)
async def get_besoin(besoin_id: uuid.UUID, db: AsyncSession = Depends(get_db), ctx: TenantContext = TenantDep):
    return unwrap(await besoin_service.get_besoin(db, ctx, besoin_id))


@router.patch("/{besoin_id}", response_model=BesoinOut)
async def update_besoin(
    besoin_id: uuid.UUID,
    payload: BesoinUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = TenantDep,
):
    besoin = unwrap(await besoin_service.update_besoin(db, ctx, besoin_id, payload))
    await invalidate_cache(request, _paths(besoin))
    return besoin


@router.post("/{besoin_id}/archive", response_model=BesoinOut)
async def archive_besoin(
    besoin_id: uuid.UUID,
    request: Request,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = TenantDep,
):
    besoin = unwrap(await besoin_service.archive_besoin(db, ctx, besoin_id))
    await invalidate_cache(request, _paths(besoin))
    return besoin


@router.post("/{besoin_id}/session", response_model=BesoinOut)
async def link_session(
    besoin_id: uuid.UUID,
    payload: BesoinLinkSession,
    request: Request,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = TenantDep,
):
    besoin = unwrap(await besoin_service.link_besoin_to_session(db, ctx, besoin_id, payload.session_id))
    await invalidate_cache(request, _paths(besoin))
    return besoin
