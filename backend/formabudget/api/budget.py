from __future__ import annotations

import uuid
from typing import List

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from formabudget.api.deps import TenantDep, invalidate_cache
from formabudget.core.errors import unwrap
from formabudget.db.session import get_db
from formabudget.schemas.budget import (
    AllocationUpsert,
    AllocationUpsertedOut,
    BudgetAlertOut,
    ConsolidatedAnnualOut,
    ConsolidatedByAgenceOut,
    DistributionOut,
    EngagedCostOut,
    SeuilUpdate,
)
from formabudget.schemas.plans import PlanOut
from formabudget.services import (
    budget_alerts_service,
    budget_distribution_service,
    consolidation_service,
)
from formabudget.services.cost_engine import TypeBesoin
from formabudget.services.tenant_service import TenantContext

"""
API Budget.

Rôle (fonctionnel) :
- Répartition d’un plan entre siège et agences (lecture, allocation, seuil d’alerte).
- Coût engagé d’un client pour une année (plan / ponctuel).
- Vues consolidées : annuelle et par agence.
- Alertes budgétaires : évaluation, et journalisation dans l’historique.

Après une mutation réussie, un événement CACHE_INVALIDATED est diffusé (best-effort)
pour la fiche client concernée.
"""

router = APIRouter(prefix="/budget", tags=["budget"])


@router.get("/plans/{plan_id}/distribution", response_model=DistributionOut)
async def get_distribution(plan_id: uuid.UUID, db: AsyncSession = Depends(get_db), ctx: TenantContext = TenantDep):
    return unwrap(await budget_distribution_service.get_distribution(db, ctx, plan_id))


@router.put("/plans/{plan_id}/allocations", response_model=AllocationUpsertedOut)
async def upsert_allocation(
    plan_id: uuid.UUID,
    payload: AllocationUpsert,
    request: Request,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = TenantDep,
):
    upserted = unwrap(
        await budget_distribution_service.upsert_allocation(db, ctx, plan_id, payload.agence_id, payload.budget_alloue)
    )
    await invalidate_cache(request, upserted.invalidate_paths)
    return upserted


@router.patch("/plans/{plan_id}/seuil", response_model=PlanOut)
async def update_seuil(
    plan_id: uuid.UUID,
    payload: SeuilUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = TenantDep,
):
    plan = unwrap(await budget_distribution_service.update_seuil_alerte(db, ctx, plan_id, payload.seuil_alerte_pct))
    await invalidate_cache(request, [f"/entreprises/{plan.entreprise_id}"])
    return plan


@router.get("/entreprises/{entreprise_id}/engage", response_model=EngagedCostOut)
async def engaged_cost(
    entreprise_id: uuid.UUID,
    annee: int = Query(..., ge=2020, le=2100),
    type_besoin: TypeBesoin = Query(TypeBesoin.PLAN),
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = TenantDep,
):
    cost = unwrap(await consolidation_service.engaged_cost(db, ctx, entreprise_id, annee, type_besoin.value))
    return EngagedCostOut.from_cost(cost, type_besoin.value)


@router.get("/entreprises/{entreprise_id}/consolidated", response_model=ConsolidatedAnnualOut)
async def consolidated_annual(
    entreprise_id: uuid.UUID,
    annee: int = Query(..., ge=2020, le=2100),
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = TenantDep,
):
    return unwrap(await consolidation_service.consolidated_annual_budget(db, ctx, entreprise_id, annee))


@router.get("/entreprises/{entreprise_id}/agences", response_model=ConsolidatedByAgenceOut)
async def consolidated_by_agence(
    entreprise_id: uuid.UUID,
    annee: int = Query(..., ge=2020, le=2100),
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = TenantDep,
):
    return unwrap(await consolidation_service.consolidated_by_agence(db, ctx, entreprise_id, annee))


@router.get("/entreprises/{entreprise_id}/alerts", response_model=List[BudgetAlertOut])
async def check_alerts(
    entreprise_id: uuid.UUID,
    annee: int = Query(..., ge=2020, le=2100),
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = TenantDep,
):
    return unwrap(await budget_alerts_service.check_alerts(db, ctx, entreprise_id, annee))


@router.post("/entreprises/{entreprise_id}/alerts/log", response_model=List[BudgetAlertOut])
async def log_alerts(
    entreprise_id: uuid.UUID,
    request: Request,
    annee: int = Query(..., ge=2020, le=2100),
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = TenantDep,
):
    alerts = unwrap(await budget_alerts_service.log_budget_alerts(db, ctx, entreprise_id, annee))
    if alerts:
        await invalidate_cache(request, [f"/entreprises/{entreprise_id}", "/historique"])
    return alerts
