from __future__ import annotations

import uuid
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from formabudget.api.deps import TenantDep
from formabudget.core.errors import unwrap
from formabudget.db.session import get_db
from formabudget.schemas.referentiel import AgenceIn, AgenceOut, EntrepriseCreate, EntrepriseOut, ProduitCreate, ProduitOut
from formabudget.services import referentiel_service
from formabudget.services.tenant_service import TenantContext

"""
API Référentiel.

Rôle (fonctionnel) :
- Clients (entreprises) et agences.
- Catalogue produits / tarifs servant à valoriser les besoins.
"""

router = APIRouter(tags=["referentiel"])


@router.get("/entreprises", response_model=List[EntrepriseOut])
async def list_entreprises(db: AsyncSession = Depends(get_db), ctx: TenantContext = TenantDep):
    return unwrap(await referentiel_service.list_entreprises(db, ctx))


@router.post("/entreprises", response_model=EntrepriseOut, status_code=201)
async def create_entreprise(
    payload: EntrepriseCreate, db: AsyncSession = Depends(get_db), ctx: TenantContext = TenantDep
):
    return unwrap(await referentiel_service.create_entreprise(db, ctx, payload))


@router.get("/entreprises/{entreprise_id}", response_model=EntrepriseOut)
async def get_entreprise(entreprise_id: uuid.UUID, db: AsyncSession = Depends(get_db), ctx: TenantContext = TenantDep):
    return unwrap(await referentiel_service.get_entreprise(db, ctx, entreprise_id))


@router.post("/entreprises/{entreprise_id}/agences", response_model=AgenceOut, status_code=201)
async def add_agence(
    entreprise_id: uuid.UUID,
    payload: AgenceIn,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = TenantDep,
):
    return unwrap(await referentiel_service.add_agence(db, ctx, entreprise_id, payload))


@router.get("/produits", response_model=List[ProduitOut])
async def list_produits(db: AsyncSession = Depends(get_db), ctx: TenantContext = TenantDep):
    return unwrap(await referentiel_service.list_produits(db, ctx))


@router.post("/produits", response_model=ProduitOut, status_code=201)
async def create_produit(payload: ProduitCreate, db: AsyncSession = Depends(get_db), ctx: TenantContext = TenantDep):
    return unwrap(await referentiel_service.create_produit(db, ctx, payload))
