from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from formabudget.core.settings import settings
from formabudget.db.base import utcnow
from formabudget.models.entreprise import EntrepriseAgence
from formabudget.models.plan_formation import PlanBudgetAgence, PlanFormation
from formabudget.services.historique_service import fmt_montant, log_historique
from formabudget.services.results import (
    NotFound,
    Ok,
    Result,
    RuleViolation,
    ValidationFailed,
    persistence_failed,
)
from formabudget.services.tenant_service import TenantContext, require_manage

"""
Budget Distribution Service (répartition du budget d’un plan).

Rôle (fonctionnel) :
- Lire la répartition d’un plan : allocations siège + agences, total alloué, reste à répartir.
- Créer / mettre à jour l’allocation d’un porteur (siège = agence_id None).
- Modifier le seuil d’alerte du plan.

Invariant :
- somme(allocations du plan) <= budget_total du plan (égalité acceptée).

Concurrence :
- La lecture de la somme et l’écriture se font dans une même transaction qui verrouille
  la ligne du plan (SELECT … FOR UPDATE) : deux écritures concurrentes sur un même plan
  sont sérialisées (PostgreSQL).
- lock=False reproduit l’ancien contrôle “lire puis écrire” non protégé (tests de course).

Étapes :
- prepare_allocation : contrôles + calcul de la somme, retourne un brouillon
- apply_allocation   : écriture, journal d’audit, commit
- upsert_allocation  : prepare + apply
"""

log = logging.getLogger("formabudget.budget")

AGENCE_FALLBACK_LABEL = "Agence"


def _money(value: Decimal) -> str:
    return f"{value:.2f}"


def _parse_amount(value: Any) -> Optional[Decimal]:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return None
    if not amount.is_finite():
        return None
    return amount


def _parse_seuil(value: Any) -> Optional[int]:
    # bool est un int en Python : True ne vaut pas 1 %
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    amount = _parse_amount(value)
    if amount is None or amount != amount.to_integral_value():
        return None
    return int(amount)


def agence_label(agence_id: Optional[uuid.UUID], agence: Optional[EntrepriseAgence]) -> str:
    if agence_id is None:
        return settings.SIEGE_LABEL
    if agence is None:
        return AGENCE_FALLBACK_LABEL
    return agence.nom


@dataclass(frozen=True)
class AllocationView:
    id: uuid.UUID
    plan_formation_id: uuid.UUID
    agence_id: Optional[uuid.UUID]
    agence_nom: str
    budget_alloue: Decimal


@dataclass(frozen=True)
class BudgetDistribution:
    plan_id: uuid.UUID
    entreprise_id: uuid.UUID
    annee: int
    budget_total: Decimal
    seuil_alerte_pct: int
    allocations: List[AllocationView]
    total_alloue: Decimal
    reste_a_repartir: Decimal


@dataclass
class AllocationDraft:
    """Écriture validée, pas encore appliquée."""
    plan: PlanFormation
    agence_id: Optional[uuid.UUID]
    agence_nom: str
    montant: Decimal
    existing: Optional[PlanBudgetAgence]
    ancien_montant: Decimal
    nouveau_total: Decimal


@dataclass(frozen=True)
class AllocationUpserted:
    plan_id: uuid.UUID
    entreprise_id: uuid.UUID
    agence_id: Optional[uuid.UUID]
    agence_nom: str
    ancien_budget: Decimal
    nouveau_budget: Decimal
    total_alloue: Decimal

    @property
    def invalidate_paths(self) -> List[str]:
        return [f"/entreprises/{self.entreprise_id}"]


async def _get_plan(
    db: AsyncSession, ctx: TenantContext, plan_id: uuid.UUID, *, lock: bool = False
) -> Optional[PlanFormation]:
    stmt = select(PlanFormation).where(
        PlanFormation.id == plan_id,
        PlanFormation.organisation_id == ctx.organisation_id,
    )
    if lock:
        stmt = stmt.with_for_update()
    return (await db.execute(stmt)).scalars().first()


async def _plan_allocations(db: AsyncSession, ctx: TenantContext, plan_id: uuid.UUID) -> List[PlanBudgetAgence]:
    rows = (
        await db.execute(
            select(PlanBudgetAgence).where(
                PlanBudgetAgence.plan_formation_id == plan_id,
                PlanBudgetAgence.organisation_id == ctx.organisation_id,
            )
        )
    ).scalars().all()
    return list(rows)


def _sort_key(row: PlanBudgetAgence) -> tuple:
    # siège d’abord, puis par identifiant d’agence
    return (row.agence_id is not None, str(row.agence_id or ""))


async def get_distribution(db: AsyncSession, ctx: TenantContext, plan_id: uuid.UUID) -> Result:
    try:
        plan = await _get_plan(db, ctx, plan_id)
        if plan is None:
            return NotFound("Plan non trouvé")
        rows = sorted(await _plan_allocations(db, ctx, plan_id), key=_sort_key)
    except SQLAlchemyError as exc:
        return persistence_failed(exc)

    allocations = [
        AllocationView(
            id=row.id,
            plan_formation_id=row.plan_formation_id,
            agence_id=row.agence_id,
            agence_nom=agence_label(row.agence_id, row.agence),
            budget_alloue=Decimal(row.budget_alloue),
        )
        for row in rows
    ]
    total_alloue = sum((a.budget_alloue for a in allocations), Decimal("0"))
    budget_total = Decimal(plan.budget_total)

    return Ok(
        BudgetDistribution(
            plan_id=plan.id,
            entreprise_id=plan.entreprise_id,
            annee=plan.annee,
            budget_total=budget_total,
            seuil_alerte_pct=plan.seuil_alerte_pct,
            allocations=allocations,
            total_alloue=total_alloue,
            reste_a_repartir=budget_total - total_alloue,
        )
    )


async def prepare_allocation(
    db: AsyncSession,
    ctx: TenantContext,
    plan_id: uuid.UUID,
    agence_id: Optional[uuid.UUID],
    budget_alloue: Any,
    *,
    lock: bool = True,
) -> Result:
    denied = require_manage(ctx, "modifier la répartition du budget")
    if denied:
        return denied

    amount = _parse_amount(budget_alloue)
    if amount is None:
        return ValidationFailed({"budget_alloue": ["Le montant doit être un nombre"]})
    if amount < 0:
        return ValidationFailed({"budget_alloue": ["Le budget alloué doit être positif ou nul"]})

    try:
        plan = await _get_plan(db, ctx, plan_id, lock=lock)
        if plan is None:
            return NotFound("Plan non trouvé")

        agence: Optional[EntrepriseAgence] = None
        if agence_id is not None:
            agence = (
                await db.execute(
                    select(EntrepriseAgence).where(
                        EntrepriseAgence.id == agence_id,
                        EntrepriseAgence.entreprise_id == plan.entreprise_id,
                    )
                )
            ).scalars().first()
            if agence is None:
                await db.rollback()
                return NotFound("Agence non trouvée")

        rows = await _plan_allocations(db, ctx, plan_id)
    except SQLAlchemyError as exc:
        await db.rollback()
        return persistence_failed(exc)

    other_sum = sum((Decimal(r.budget_alloue) for r in rows if r.agence_id != agence_id), Decimal("0"))
    new_total = other_sum + amount
    budget_total = Decimal(plan.budget_total)

    if new_total > budget_total:
        await db.rollback()
        return RuleViolation(
            f"La somme des budgets alloués ({_money(new_total)} €) "
            f"dépasse le budget total ({_money(budget_total)} €)"
        )

    existing = next((r for r in rows if r.agence_id == agence_id), None)
    return Ok(
        AllocationDraft(
            plan=plan,
            agence_id=agence_id,
            agence_nom=agence_label(agence_id, agence),
            montant=amount,
            existing=existing,
            ancien_montant=Decimal(existing.budget_alloue) if existing else Decimal("0"),
            nouveau_total=new_total,
        )
    )


async def apply_allocation(db: AsyncSession, ctx: TenantContext, draft: AllocationDraft) -> Result:
    plan = draft.plan
    plan_id, entreprise_id = plan.id, plan.entreprise_id
    try:
        if draft.existing is not None:
            draft.existing.budget_alloue = draft.montant
            draft.existing.updated_at = utcnow()
        else:
            db.add(
                PlanBudgetAgence(
                    organisation_id=ctx.organisation_id,
                    plan_formation_id=plan.id,
                    agence_id=draft.agence_id,
                    budget_alloue=draft.montant,
                )
            )

        if draft.ancien_montant != draft.montant:
            log_historique(
                db,
                ctx,
                module="entreprise",
                action="updated",
                entite_type="plan_budget_agence",
                entite_id=plan.id,
                entite_label=f"{draft.agence_nom} — {plan.libelle}",
                entreprise_id=plan.entreprise_id,
                objet_href=f"/entreprises/{plan.entreprise_id}",
                description=(
                    f"Budget {draft.agence_nom} : {fmt_montant(draft.ancien_montant)} → "
                    f"{fmt_montant(draft.montant)} € ({plan.libelle})"
                ),
                metadata={
                    "agence_id": draft.agence_id,
                    "agence_nom": draft.agence_nom,
                    "ancien_budget": draft.ancien_montant,
                    "nouveau_budget": draft.montant,
                },
            )

        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        log.warning(
            "allocation_persist_failed",
            extra={"organisation_id": str(ctx.organisation_id), "plan_id": str(plan_id)},
        )
        return persistence_failed(exc)

    log.info(
        "allocation_upserted",
        extra={
            "organisation_id": str(ctx.organisation_id),
            "plan_id": str(plan_id),
            "agence_id": str(draft.agence_id) if draft.agence_id else None,
            "actor": str(ctx.user_id) if ctx.user_id else None,
        },
    )

    return Ok(
        AllocationUpserted(
            plan_id=plan_id,
            entreprise_id=entreprise_id,
            agence_id=draft.agence_id,
            agence_nom=draft.agence_nom,
            ancien_budget=draft.ancien_montant,
            nouveau_budget=draft.montant,
            total_alloue=draft.nouveau_total,
        )
    )


async def upsert_allocation(
    db: AsyncSession,
    ctx: TenantContext,
    plan_id: uuid.UUID,
    agence_id: Optional[uuid.UUID],
    budget_alloue: Any,
    *,
    lock: bool = True,
) -> Result:
    """
    Crée ou met à jour l’allocation (plan, agence) ; agence_id None = siège social.

    Échecs :
    - ValidationFailed : montant négatif ou non numérique
    - NotFound         : plan (ou agence) introuvable dans l’organisation
    - RuleViolation    : la nouvelle somme dépasserait le budget total
    - PersistenceFailed: erreur base, message transmis tel quel
    """
    prepared = await prepare_allocation(db, ctx, plan_id, agence_id, budget_alloue, lock=lock)
    if not isinstance(prepared, Ok):
        return prepared
    return await apply_allocation(db, ctx, prepared.value)


async def update_seuil_alerte(db: AsyncSession, ctx: TenantContext, plan_id: uuid.UUID, seuil_pct: Any) -> Result:
    denied = require_manage(ctx, "modifier le seuil d'alerte")
    if denied:
        return denied

    seuil = _parse_seuil(seuil_pct)
    if seuil is None:
        return ValidationFailed({"seuil_alerte_pct": ["Le seuil doit être un entier"]})
    if seuil < 1 or seuil > 100:
        return ValidationFailed({"seuil_alerte_pct": ["Le seuil doit être compris entre 1 et 100"]})

    try:
        plan = await _get_plan(db, ctx, plan_id)
        if plan is None:
            return NotFound("Plan non trouvé")

        ancien = plan.seuil_alerte_pct
        if ancien != seuil:
            plan.seuil_alerte_pct = seuil
            plan.updated_at = utcnow()
            log_historique(
                db,
                ctx,
                module="entreprise",
                action="updated",
                entite_type="plan_formation",
                entite_id=plan.id,
                entite_label=plan.libelle,
                entreprise_id=plan.entreprise_id,
                objet_href=f"/entreprises/{plan.entreprise_id}",
                description=f"Seuil d'alerte modifié : {ancien}% → {seuil}%",
                metadata={"ancien_seuil": ancien, "nouveau_seuil": seuil},
            )
            await db.commit()
            await db.refresh(plan)
    except SQLAlchemyError as exc:
        await db.rollback()
        return persistence_failed(exc)

    return Ok(plan)
