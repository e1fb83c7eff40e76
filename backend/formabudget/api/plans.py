from __future__ import annotations

import uuid
from typing import List

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from formabudget.api.deps import TenantDep, invalidate_cache
from formabudget.core.errors import unwrap
from formabudget.db.session import get_db
from formabudget.schemas.plans import PlanCreate, PlanGetOrCreate, PlanOut, PlanSummaryOut, PlanUpdate
from formabudget.services import plan_service
from formabudget.services.tenant_service import TenantContext

"""
API Plans de formation.

Rôle (fonctionnel) :
- Lister / créer / modifier / archiver les plans annuels d’un client.
- Obtenir (ou créer à budget 0) le plan actif d’une année.
- Synthèse budgétaire d’un plan (budget, engagé, reste, compteurs de besoins).
"""

router = APIRouter(prefix="/plans", tags=["plans"])


def _entreprise_path(plan) -> list[str]:
    return [f"/entreprises/{plan.entreprise_id}"]


@router.get("", response_model=List[PlanOut])
async def list_plans(
    entreprise_id: uuid.UUID = Query(...),
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = TenantDep,
):
    return unwrap(await plan_service.list_plans(db, ctx, entreprise_id))


@router.post("", response_model=PlanOut, status_code=201)
async def create_plan(
    payload: PlanCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = TenantDep,
):
    plan = unwrap(await plan_service.create_plan(db, ctx, payload))
    await invalidate_cache(request, _entreprise_path(plan))
    return plan


@router.post("/get-or-create", response_model=PlanOut)
async def get_or_create_plan(
    payload: PlanGetOrCreate,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = TenantDep,
):
    return unwrap(await plan_service.get_or_create_plan(db, ctx, payload.entreprise_id, payload.annee))


@router.get("/{plan_id}", response_model=PlanOut)
async def get_plan(plan_id: uuid.UUID, db: AsyncSession = Depends(get_db), ctx: TenantContext = TenantDep):
    return unwrap(await plan_service.get_plan(db, ctx, plan_id))


@router.patch("/{plan_id}", response_model=PlanOut)
async def update_plan(
    plan_id: uuid.UUID,
    payload: PlanUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = TenantDep,
):
    plan = unwrap(await plan_service.update_plan(db, ctx, plan_id, payload))
    await invalidate_cache(request, _entreprise_path(plan))
    return plan


@router.post("/{plan_id}/archive", response_model=PlanOut)
async def archive_plan(
    plan_id: uuid.UUID,
    request: Request,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = TenantDep,
):
    plan = unwrap(await plan_service.archive_plan(db, ctx, plan_id))
    await invalidate_cache(request, _entreprise_path(plan))
    return plan


@router.get("/{plan_id}/summary", response_model=PlanSummaryOut)
async def plan_summary(plan_id: uuid.UUID, db: AsyncSession = Depends(get_db), ctx: TenantContext = TenantDep):
    return unwrap(await plan_service.plan_budget_summary(db, ctx, plan_id))
