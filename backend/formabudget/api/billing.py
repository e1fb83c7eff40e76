from __future__ import annotations

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from formabudget.api.deps import TenantDep, invalidate_cache
from formabudget.core.errors import unwrap
from formabudget.db.session import get_db
from formabudget.schemas.facturation import (
    AcompteCreate,
    CommanditaireCreate,
    CommanditaireOut,
    DevisCreate,
    DevisOut,
    FactureCreate,
    FactureOut,
    PaiementCreate,
    SessionBillingPipelineOut,
    StatutUpdate,
)
from formabudget.services import facturation_service
from formabudget.services.tenant_service import TenantContext

"""
API Facturation (progression devis -> facture -> paiement).

Rôle (fonctionnel) :
- Commanditaires de session, devis (création, modification, statut, refus, conversion, archivage).
- Factures (saisie, modification, statut, paiements, archivage), acompte et solde par commanditaire.
- Pipeline de facturation d’une session (totaux par commanditaire et session).
"""

router = APIRouter(prefix="/billing", tags=["billing"])


def _session_paths(obj) -> list[str]:
    paths = ["/factures"]
    if getattr(obj, "session_id", None):
        paths.append(f"/sessions/{obj.session_id}")
    return paths


@router.post("/commanditaires", response_model=CommanditaireOut, status_code=201)
async def create_commanditaire(
    payload: CommanditaireCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = TenantDep,
):
    cmd = unwrap(await facturation_service.create_commanditaire(db, ctx, payload))
    await invalidate_cache(request, [f"/sessions/{cmd.session_id}"])
    return cmd


@router.post("/commanditaires/{commanditaire_id}/acompte", response_model=FactureOut, status_code=201)
async def create_acompte(
    commanditaire_id: uuid.UUID,
    payload: AcompteCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = TenantDep,
):
    facture = unwrap(await facturation_service.create_facture_acompte(db, ctx, commanditaire_id, payload))
    await invalidate_cache(request, _session_paths(facture))
    return facture


@router.post("/commanditaires/{commanditaire_id}/solde", response_model=FactureOut, status_code=201)
async def create_solde(
    commanditaire_id: uuid.UUID,
    request: Request,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = TenantDep,
):
    facture = unwrap(await facturation_service.create_facture_solde(db, ctx, commanditaire_id))
    await invalidate_cache(request, _session_paths(facture))
    return facture


@router.post("/devis", response_model=DevisOut, status_code=201)
async def create_devis(
    payload: DevisCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = TenantDep,
):
    devis = unwrap(await facturation_service.create_devis(db, ctx, payload))
    await invalidate_cache(request, _session_paths(devis))
    return devis


@router.get("/devis/{devis_id}", response_model=DevisOut)
async def get_devis(devis_id: uuid.UUID, db: AsyncSession = Depends(get_db), ctx: TenantContext = TenantDep):
    return unwrap(await facturation_service.get_devis(db, ctx, devis_id))


@router.put("/devis/{devis_id}", response_model=DevisOut)
async def update_devis(
    devis_id: uuid.UUID,
    payload: DevisCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = TenantDep,
):
    devis = unwrap(await facturation_service.update_devis(db, ctx, devis_id, payload))
    await invalidate_cache(request, _session_paths(devis))
    return devis


@router.post("/devis/{devis_id}/refuse", response_model=DevisOut)
async def refuse_devis(
    devis_id: uuid.UUID,
    request: Request,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = TenantDep,
):
    devis = unwrap(await facturation_service.mark_devis_refused(db, ctx, devis_id))
    await invalidate_cache(request, _session_paths(devis))
    return devis


@router.post("/devis/{devis_id}/archive", response_model=DevisOut)
async def archive_devis(
    devis_id: uuid.UUID,
    request: Request,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = TenantDep,
):
    devis = unwrap(await facturation_service.archive_devis(db, ctx, devis_id))
    await invalidate_cache(request, _session_paths(devis))
    return devis


@router.patch("/devis/{devis_id}/statut", response_model=DevisOut)
async def update_devis_statut(
    devis_id: uuid.UUID,
    payload: StatutUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = TenantDep,
):
    devis = unwrap(await facturation_service.update_devis_statut(db, ctx, devis_id, payload.statut))
    await invalidate_cache(request, _session_paths(devis))
    return devis


@router.post("/devis/{devis_id}/convert", response_model=FactureOut, status_code=201)
async def convert_devis(
    devis_id: uuid.UUID,
    request: Request,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = TenantDep,
):
    facture = unwrap(await facturation_service.convert_devis_to_facture(db, ctx, devis_id))
    await invalidate_cache(request, _session_paths(facture))
    return facture


@router.get("/factures", response_model=List[FactureOut])
async def list_factures(
    statut: Optional[str] = None,
    commanditaire_id: Optional[uuid.UUID] = None,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = TenantDep,
):
    return unwrap(
        await facturation_service.list_factures(db, ctx, statut=statut, commanditaire_id=commanditaire_id)
    )


@router.get("/factures/{facture_id}", response_model=FactureOut)
async def get_facture(facture_id: uuid.UUID, db: AsyncSession = Depends(get_db), ctx: TenantContext = TenantDep):
    return unwrap(await facturation_service.get_facture(db, ctx, facture_id))


@router.post("/factures", response_model=FactureOut, status_code=201)
async def create_facture(
    payload: FactureCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = TenantDep,
):
    facture = unwrap(await facturation_service.create_facture(db, ctx, payload))
    await invalidate_cache(request, _session_paths(facture))
    return facture


@router.put("/factures/{facture_id}", response_model=FactureOut)
async def update_facture(
    facture_id: uuid.UUID,
    payload: FactureCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = TenantDep,
):
    facture = unwrap(await facturation_service.update_facture(db, ctx, facture_id, payload))
    await invalidate_cache(request, _session_paths(facture))
    return facture


@router.post("/factures/{facture_id}/archive", response_model=FactureOut)
async def archive_facture(
    facture_id: uuid.UUID,
    request: Request,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = TenantDep,
):
    facture = unwrap(await facturation_service.archive_facture(db, ctx, facture_id))
    await invalidate_cache(request, _session_paths(facture))
    return facture


@router.patch("/factures/{facture_id}/statut", response_model=FactureOut)
async def update_facture_statut(
    facture_id: uuid.UUID,
    payload: StatutUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = TenantDep,
):
    facture = unwrap(await facturation_service.update_facture_statut(db, ctx, facture_id, payload.statut))
    await invalidate_cache(request, _session_paths(facture))
    return facture


@router.post("/factures/{facture_id}/paiements", response_model=FactureOut, status_code=201)
async def add_paiement(
    facture_id: uuid.UUID,
    payload: PaiementCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = TenantDep,
):
    facture = unwrap(await facturation_service.add_paiement(db, ctx, facture_id, payload))
    await invalidate_cache(request, _session_paths(facture))
    return facture


@router.delete("/factures/{facture_id}/paiements/{paiement_id}", response_model=FactureOut)
async def delete_paiement(
    facture_id: uuid.UUID,
    paiement_id: uuid.UUID,
    request: Request,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = TenantDep,
):
    facture = unwrap(await facturation_service.delete_paiement(db, ctx, facture_id, paiement_id))
    await invalidate_cache(request, _session_paths(facture))
    return facture


@router.get("/sessions/{session_id}/pipeline", response_model=SessionBillingPipelineOut)
async def session_pipeline(session_id: uuid.UUID, db: AsyncSession = Depends(get_db), ctx: TenantContext = TenantDep):
    return unwrap(await facturation_service.session_billing_pipeline(db, ctx, session_id))
