from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from formabudget.core.settings import settings
from formabudget.models.plan_formation import PlanBudgetAgence
from formabudget.services.budget_distribution_service import agence_label
from formabudget.services.consolidation_service import PlanSnapshot, load_snapshot
from formabudget.services.historique_service import log_historique
from formabudget.services.results import Ok, Result, persistence_failed
from formabudget.services.tenant_service import TenantContext

"""
Budget Alerts Service.

Rôle (fonctionnel) :
- Évalue, pour un client et une année, les alertes budgétaires du plan actif :
  - global : engagé total (plan + ponctuel) vs budget total du plan
  - par porteur : engagé du seau (siège / agence) vs allocation du porteur
- Journalise les alertes déclenchées dans l’historique (origine "systeme").

Règle de sévérité (même règle pour le global et chaque allocation) :
- engagé > alloué                     -> dépassement
- sinon round_half_up(engagé/alloué*100) >= seuil -> vigilance
- au plus une alerte par seau ; allocation à 0 ignorée ; global ignoré si budget total = 0

Note :
- log_budget_alerts n’a pas de déduplication : chaque appel réécrit les alertes en cours.
"""

log = logging.getLogger("formabudget.alerts")

GLOBAL_LABEL = "Global"


class AlertType(str, Enum):
    VIGILANCE = "vigilance"
    DEPASSEMENT = "depassement"
    GLOBAL_VIGILANCE = "global_vigilance"
    GLOBAL_DEPASSEMENT = "global_depassement"

    @property
    def is_depassement(self) -> bool:
        return self in (AlertType.DEPASSEMENT, AlertType.GLOBAL_DEPASSEMENT)


@dataclass(frozen=True)
class BudgetAlert:
    type: AlertType
    entite: str
    agence_id: Optional[uuid.UUID]
    budget_alloue: Decimal
    budget_engage: Decimal
    pourcentage: int
    seuil: int


def pourcentage(engage: Decimal, alloue: Decimal) -> int:
    """Part consommée en %, arrondie au plus proche (0.5 -> vers le haut)."""
    ratio = Decimal(engage) / Decimal(alloue) * 100
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def evaluate(engage: Decimal, alloue: Decimal, seuil: int, *, is_global: bool = False) -> Optional[tuple[AlertType, int]]:
    """Sévérité d’un seau, ou None. alloue doit être > 0."""
    pct = pourcentage(engage, alloue)
    if engage > alloue:
        return (AlertType.GLOBAL_DEPASSEMENT if is_global else AlertType.DEPASSEMENT), pct
    if pct >= seuil:
        return (AlertType.GLOBAL_VIGILANCE if is_global else AlertType.VIGILANCE), pct
    return None


def evaluate_snapshot(snap: PlanSnapshot, allocations: List[PlanBudgetAgence]) -> List[BudgetAlert]:
    if snap.plan is None:
        return []

    alerts: List[BudgetAlert] = []
    seuil = snap.seuil_alerte_pct
    budget_total = snap.budget_total
    global_engage = snap.engaged_total

    if budget_total > 0:
        hit = evaluate(global_engage, budget_total, seuil, is_global=True)
        if hit:
            alerts.append(
                BudgetAlert(
                    type=hit[0],
                    entite=GLOBAL_LABEL,
                    agence_id=None,
                    budget_alloue=budget_total,
                    budget_engage=global_engage,
                    pourcentage=hit[1],
                    seuil=seuil,
                )
            )

    for alloc in allocations:
        alloue = Decimal(alloc.budget_alloue)
        if alloue <= 0:
            continue
        engage = snap.engaged_for(alloc.agence_id)
        hit = evaluate(engage, alloue, seuil)
        if hit:
            alerts.append(
                BudgetAlert(
                    type=hit[0],
                    entite=agence_label(alloc.agence_id, alloc.agence),
                    agence_id=alloc.agence_id,
                    budget_alloue=alloue,
                    budget_engage=engage,
                    pourcentage=hit[1],
                    seuil=seuil,
                )
            )

    return alerts


async def _evaluate(db: AsyncSession, ctx: TenantContext, entreprise_id: uuid.UUID, annee: int) -> List[BudgetAlert]:
    snap = await load_snapshot(db, ctx, entreprise_id, annee)
    if snap.plan is None:
        return []
    allocations = (
        await db.execute(
            select(PlanBudgetAgence)
            .where(
                PlanBudgetAgence.plan_formation_id == snap.plan.id,
                PlanBudgetAgence.organisation_id == ctx.organisation_id,
            )
            .order_by(PlanBudgetAgence.created_at)
        )
    ).scalars().all()
    return evaluate_snapshot(snap, list(allocations))


async def check_alerts(db: AsyncSession, ctx: TenantContext, entreprise_id: uuid.UUID, annee: int) -> Result:
    try:
        return Ok(await _evaluate(db, ctx, entreprise_id, annee))
    except SQLAlchemyError as exc:
        return persistence_failed(exc)


def alert_description(alert: BudgetAlert) -> str:
    label = "Dépassement budgétaire" if alert.type.is_depassement else "Seuil de vigilance atteint"
    return (
        f"{label} : {alert.entite} — {alert.pourcentage}% du budget "
        f"({alert.budget_engage:.2f} € / {alert.budget_alloue:.2f} €)"
    )


async def log_budget_alerts(db: AsyncSession, ctx: TenantContext, entreprise_id: uuid.UUID, annee: int) -> Result:
    try:
        alerts = await _evaluate(db, ctx, entreprise_id, annee)
        for alert in alerts:
            log_historique(
                db,
                ctx,
                origine="systeme",
                module="entreprise",
                action="alert_triggered",
                entite_type="plan_formation",
                entite_id=entreprise_id,
                entite_label=f"{alert.entite} — {annee}",
                entreprise_id=entreprise_id,
                objet_href=f"/entreprises/{entreprise_id}",
                description=alert_description(alert),
                metadata={
                    "alert_type": alert.type.value,
                    "agence_id": alert.agence_id,
                    "budget_alloue": alert.budget_alloue,
                    "budget_engage": alert.budget_engage,
                    "pourcentage": alert.pourcentage,
                    "seuil": alert.seuil,
                },
            )
        if alerts:
            await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        return persistence_failed(exc)

    if alerts:
        log.info(
            "budget_alerts_logged",
            extra={
                "organisation_id": str(ctx.organisation_id),
                "entreprise_id": str(entreprise_id),
                "alerts_count": len(alerts),
                "alert_type": ",".join(a.type.value for a in alerts),
            },
        )
    return Ok(alerts)
