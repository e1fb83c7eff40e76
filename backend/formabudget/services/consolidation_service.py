from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from formabudget.core.settings import settings
from formabudget.models.entreprise import EntrepriseAgence
from formabudget.models.plan_formation import PlanBudgetAgence, PlanFormation
from formabudget.services.cost_engine import EngagedCost, TypeBesoin, bucket_key, compute_engaged
from formabudget.services.results import Ok, Result, persistence_failed
from formabudget.services.tenant_service import TenantContext

"""
Consolidation Service (vues budgétaires consolidées d’un client pour une année).

Rôle (fonctionnel) :
- Vue annuelle : budget du plan, engagé sur le plan, reste ; dépenses ponctuelles ; dépense globale.
- Vue par agence : une ligne siège, une ligne par agence active (hors agence marquée siège),
  triées par nom, puis une ligne de totaux.

Notes :
- Sans plan actif, le budget vaut 0 et le seuil celui par défaut (DEFAULT_SEUIL_ALERTE_PCT).
- Les coûts viennent du moteur de coûts (plan + ponctuel), sans cache.
"""

ZERO = Decimal("0")


@dataclass(frozen=True)
class PlanSnapshot:
    """Plan actif d’un client pour une année et ses engagements."""
    plan: Optional[PlanFormation]
    plan_engaged: EngagedCost
    ponctuel_engaged: EngagedCost

    @property
    def budget_total(self) -> Decimal:
        return Decimal(self.plan.budget_total) if self.plan else ZERO

    @property
    def seuil_alerte_pct(self) -> int:
        return self.plan.seuil_alerte_pct if self.plan else settings.DEFAULT_SEUIL_ALERTE_PCT

    @property
    def engaged_total(self) -> Decimal:
        return self.plan_engaged.total + self.ponctuel_engaged.total

    def engaged_for(self, agence_id: Optional[uuid.UUID]) -> Decimal:
        return self.plan_engaged.for_agence(agence_id) + self.ponctuel_engaged.for_agence(agence_id)


@dataclass(frozen=True)
class ConsolidatedAnnualBudget:
    entreprise_id: uuid.UUID
    annee: int
    plan_id: Optional[uuid.UUID]
    plan_budget_total: Decimal
    plan_budget_engage: Decimal
    plan_budget_restant: Decimal
    plan_nb_formations: int
    ponctuel_budget_total: Decimal
    ponctuel_nb_formations: int
    depense_totale: Decimal
    seuil_alerte_pct: int


@dataclass(frozen=True)
class AgenceBudgetRow:
    agence_id: Optional[uuid.UUID]
    agence_nom: str
    budget_alloue: Decimal
    engage_plan: Decimal
    engage_ponctuel: Decimal
    engage_total: Decimal
    budget_restant: Decimal


@dataclass(frozen=True)
class ConsolidatedByAgence:
    entreprise_id: uuid.UUID
    annee: int
    rows: List[AgenceBudgetRow]
    totals: AgenceBudgetRow
    seuil_alerte_pct: int


async def find_active_plan(
    db: AsyncSession, organisation_id: uuid.UUID, entreprise_id: uuid.UUID, annee: int
) -> Optional[PlanFormation]:
    return (
        await db.execute(
            select(PlanFormation).where(
                PlanFormation.organisation_id == organisation_id,
                PlanFormation.entreprise_id == entreprise_id,
                PlanFormation.annee == annee,
                PlanFormation.archived_at.is_(None),
            )
        )
    ).scalars().first()


async def load_snapshot(db: AsyncSession, ctx: TenantContext, entreprise_id: uuid.UUID, annee: int) -> PlanSnapshot:
    """Lit le plan actif et les deux engagements (plan, ponctuel). Lève SQLAlchemyError."""
    plan = await find_active_plan(db, ctx.organisation_id, entreprise_id, annee)
    plan_engaged = await compute_engaged(db, ctx.organisation_id, entreprise_id, annee, TypeBesoin.PLAN)
    ponctuel_engaged = await compute_engaged(db, ctx.organisation_id, entreprise_id, annee, TypeBesoin.PONCTUEL)
    return PlanSnapshot(plan=plan, plan_engaged=plan_engaged, ponctuel_engaged=ponctuel_engaged)


async def engaged_cost(
    db: AsyncSession, ctx: TenantContext, entreprise_id: uuid.UUID, annee: int, type_besoin: str
) -> Result:
    try:
        return Ok(await compute_engaged(db, ctx.organisation_id, entreprise_id, annee, type_besoin))
    except SQLAlchemyError as exc:
        return persistence_failed(exc)


async def consolidated_annual_budget(
    db: AsyncSession, ctx: TenantContext, entreprise_id: uuid.UUID, annee: int
) -> Result:
    try:
        snap = await load_snapshot(db, ctx, entreprise_id, annee)
    except SQLAlchemyError as exc:
        return persistence_failed(exc)

    return Ok(
        ConsolidatedAnnualBudget(
            entreprise_id=entreprise_id,
            annee=annee,
            plan_id=snap.plan.id if snap.plan else None,
            plan_budget_total=snap.budget_total,
            plan_budget_engage=snap.plan_engaged.total,
            plan_budget_restant=snap.budget_total - snap.plan_engaged.total,
            plan_nb_formations=snap.plan_engaged.count,
            ponctuel_budget_total=snap.ponctuel_engaged.total,
            ponctuel_nb_formations=snap.ponctuel_engaged.count,
            depense_totale=snap.engaged_total,
            seuil_alerte_pct=snap.seuil_alerte_pct,
        )
    )


def _row(agence_id: Optional[uuid.UUID], nom: str, alloue: Decimal, snap: PlanSnapshot) -> AgenceBudgetRow:
    e_plan = snap.plan_engaged.for_agence(agence_id)
    e_ponctuel = snap.ponctuel_engaged.for_agence(agence_id)
    return AgenceBudgetRow(
        agence_id=agence_id,
        agence_nom=nom,
        budget_alloue=alloue,
        engage_plan=e_plan,
        engage_ponctuel=e_ponctuel,
        engage_total=e_plan + e_ponctuel,
        budget_restant=alloue - (e_plan + e_ponctuel),
    )


async def consolidated_by_agence(
    db: AsyncSession, ctx: TenantContext, entreprise_id: uuid.UUID, annee: int
) -> Result:
    try:
        snap = await load_snapshot(db, ctx, entreprise_id, annee)
        agences = (
            await db.execute(
                select(EntrepriseAgence)
                .where(
                    EntrepriseAgence.entreprise_id == entreprise_id,
                    EntrepriseAgence.actif.is_(True),
                    EntrepriseAgence.est_siege.is_(False),
                )
                .order_by(EntrepriseAgence.nom)
            )
        ).scalars().all()

        allocations: Dict[Optional[str], Decimal] = {}
        if snap.plan is not None:
            rows = (
                await db.execute(
                    select(PlanBudgetAgence).where(
                        PlanBudgetAgence.plan_formation_id == snap.plan.id,
                        PlanBudgetAgence.organisation_id == ctx.organisation_id,
                    )
                )
            ).scalars().all()
            allocations = {bucket_key(r.agence_id): Decimal(r.budget_alloue) for r in rows}
    except SQLAlchemyError as exc:
        return persistence_failed(exc)

    rows_out = [_row(None, settings.SIEGE_LABEL, allocations.get(None, ZERO), snap)]
    for ag in agences:
        rows_out.append(_row(ag.id, ag.nom, allocations.get(bucket_key(ag.id), ZERO), snap))

    totals = AgenceBudgetRow(
        agence_id=None,
        agence_nom="Total",
        budget_alloue=sum((r.budget_alloue for r in rows_out), ZERO),
        engage_plan=sum((r.engage_plan for r in rows_out), ZERO),
        engage_ponctuel=sum((r.engage_ponctuel for r in rows_out), ZERO),
        engage_total=sum((r.engage_total for r in rows_out), ZERO),
        budget_restant=sum((r.budget_restant for r in rows_out), ZERO),
    )

    return Ok(
        ConsolidatedByAgence(
            entreprise_id=entreprise_id,
            annee=annee,
            rows=rows_out,
            totals=totals,
            seuil_alerte_pct=snap.seuil_alerte_pct,
        )
    )
