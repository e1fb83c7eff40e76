from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping, Union

from sqlalchemy import desc, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from formabudget.core.settings import settings
from formabudget.db.base import utcnow
from formabudget.models.besoin_formation import BesoinFormation
from formabudget.models.entreprise import Entreprise
from formabudget.models.plan_formation import PlanBudgetAgence, PlanFormation
from formabudget.schemas.plans import PlanCreate, PlanUpdate
from formabudget.services.cost_engine import TypeBesoin, compute_engaged_for_plan
from formabudget.services.historique_service import fmt_montant, log_historique
from formabudget.services.results import (
    NotFound,
    Ok,
    Result,
    RuleViolation,
    parse_payload,
    persistence_failed,
)
from formabudget.services.tenant_service import TenantContext, require_archive, require_manage

"""
Plan Service (plans de formation annuels).

Rôle (fonctionnel) :
- CRUD des plans d’un client : liste (plus récents d’abord), détail, création, mise à jour, archivage.
- get_or_create : plan actif de l’année, créé à budget 0 s’il n’existe pas.
- Synthèse budgétaire d’un plan (engagé des besoins rattachés, compteurs de besoins).

Règles :
- Un seul plan actif par (organisation, client, année).
- Le budget total ne peut pas descendre sous la somme des allocations déjà réparties.
- Archiver un plan détache ses besoins : ils deviennent “ponctuel”, sans plan.
"""

log = logging.getLogger("formabudget.plans")

STATUTS_VALIDES = ("valide", "planifie", "transforme", "realise")


@dataclass(frozen=True)
class PlanSummary:
    plan: PlanFormation
    budget_total: Decimal
    budget_engage: Decimal
    budget_restant: Decimal
    nb_besoins: int
    nb_valides: int
    nb_transformes: int


def _duplicate(annee: int) -> RuleViolation:
    return RuleViolation(f"Un plan de formation existe déjà pour l'année {annee}")


async def _find_plan(db: AsyncSession, ctx: TenantContext, plan_id: uuid.UUID, *, lock: bool = False):
    stmt = select(PlanFormation).where(
        PlanFormation.id == plan_id,
        PlanFormation.organisation_id == ctx.organisation_id,
    )
    if lock:
        stmt = stmt.with_for_update()
    return (await db.execute(stmt)).scalars().first()


async def list_plans(db: AsyncSession, ctx: TenantContext, entreprise_id: uuid.UUID) -> Result:
    try:
        rows = (
            await db.execute(
                select(PlanFormation)
                .where(
                    PlanFormation.organisation_id == ctx.organisation_id,
                    PlanFormation.entreprise_id == entreprise_id,
                    PlanFormation.archived_at.is_(None),
                )
                .order_by(desc(PlanFormation.annee))
            )
        ).scalars().all()
    except SQLAlchemyError as exc:
        return persistence_failed(exc)
    return Ok(list(rows))


async def get_plan(db: AsyncSession, ctx: TenantContext, plan_id: uuid.UUID) -> Result:
    try:
        plan = await _find_plan(db, ctx, plan_id)
    except SQLAlchemyError as exc:
        return persistence_failed(exc)
    if plan is None:
        return NotFound("Plan non trouvé")
    return Ok(plan)


async def create_plan(
    db: AsyncSession, ctx: TenantContext, payload: Union[PlanCreate, Mapping[str, Any]]
) -> Result:
    denied = require_manage(ctx, "créer un plan de formation")
    if denied:
        return denied

    parsed = parse_payload(PlanCreate, payload)
    if not isinstance(parsed, Ok):
        return parsed
    d: PlanCreate = parsed.value

    try:
        entreprise = (
            await db.execute(
                select(Entreprise).where(
                    Entreprise.id == d.entreprise_id,
                    Entreprise.organisation_id == ctx.organisation_id,
                )
            )
        ).scalars().first()
        if entreprise is None:
            return NotFound("Entreprise non trouvée")

        existing = (
            await db.execute(
                select(PlanFormation.id).where(
                    PlanFormation.organisation_id == ctx.organisation_id,
                    PlanFormation.entreprise_id == d.entreprise_id,
                    PlanFormation.annee == d.annee,
                    PlanFormation.archived_at.is_(None),
                )
            )
        ).first()
        if existing is not None:
            return _duplicate(d.annee)

        plan = PlanFormation(
            organisation_id=ctx.organisation_id,
            entreprise_id=d.entreprise_id,
            annee=d.annee,
            nom=d.nom or f"Plan de formation {d.annee}",
            budget_total=d.budget_total,
            seuil_alerte_pct=d.seuil_alerte_pct or settings.DEFAULT_SEUIL_ALERTE_PCT,
            notes=d.notes,
        )
        db.add(plan)
        await db.flush()

        log_historique(
            db,
            ctx,
            module="entreprise",
            action="created",
            entite_type="plan_formation",
            entite_id=plan.id,
            entite_label=plan.nom,
            entreprise_id=d.entreprise_id,
            description=f'Plan de formation "{plan.nom}" créé (budget: {fmt_montant(d.budget_total)} €)',
            objet_href=f"/entreprises/{d.entreprise_id}",
            metadata={"annee": d.annee, "budget_total": d.budget_total},
        )

        await db.commit()
        await db.refresh(plan)
    except IntegrityError:
        # index unique partiel : création concurrente pour la même année
        await db.rollback()
        return _duplicate(d.annee)
    except SQLAlchemyError as exc:
        await db.rollback()
        return persistence_failed(exc)

    log.info(
        "plan_created",
        extra={"organisation_id": str(ctx.organisation_id), "entreprise_id": str(d.entreprise_id), "plan_id": str(plan.id)},
    )
    return Ok(plan)


async def update_plan(
    db: AsyncSession,
    ctx: TenantContext,
    plan_id: uuid.UUID,
    payload: Union[PlanUpdate, Mapping[str, Any]],
) -> Result:
    denied = require_manage(ctx, "modifier un plan de formation")
    if denied:
        return denied

    parsed = parse_payload(PlanUpdate, payload)
    if not isinstance(parsed, Ok):
        return parsed
    d = parsed.value.model_dump(exclude_unset=True)

    try:
        plan = await _find_plan(db, ctx, plan_id, lock="budget_total" in d)
        if plan is None:
            return NotFound("Plan non trouvé")

        if d.get("budget_total") is not None:
            alloue = sum(
                (
                    Decimal(v)
                    for v in (
                        await db.execute(
                            select(PlanBudgetAgence.budget_alloue).where(
                                PlanBudgetAgence.plan_formation_id == plan.id,
                                PlanBudgetAgence.organisation_id == ctx.organisation_id,
                            )
                        )
                    ).scalars()
                ),
                Decimal("0"),
            )
            if d["budget_total"] < alloue:
                await db.rollback()
                return RuleViolation(
                    f"Le budget total ({d['budget_total']:.2f} €) est inférieur à la somme "
                    f"des budgets alloués ({alloue:.2f} €)"
                )

        changes: list[str] = []
        ancien_nom = plan.nom
        if d.get("budget_total") is not None and Decimal(d["budget_total"]) != Decimal(plan.budget_total):
            changes.append(f"Budget : {fmt_montant(plan.budget_total)} → {fmt_montant(d['budget_total'])} €")
        if d.get("nom") and d["nom"] != plan.nom:
            changes.append(f'Nom : "{plan.nom}" → "{d["nom"]}"')

        if "nom" in d:
            plan.nom = d["nom"] or None
        if d.get("budget_total") is not None:
            plan.budget_total = d["budget_total"]
        if "notes" in d:
            plan.notes = d["notes"] or None
        if d.get("seuil_alerte_pct") is not None:
            plan.seuil_alerte_pct = d["seuil_alerte_pct"]
        plan.updated_at = utcnow()

        if changes:
            log_historique(
                db,
                ctx,
                module="entreprise",
                action="updated",
                entite_type="plan_formation",
                entite_id=plan.id,
                entite_label=d.get("nom") or ancien_nom,
                entreprise_id=plan.entreprise_id,
                description=" | ".join(changes),
                objet_href=f"/entreprises/{plan.entreprise_id}",
                metadata={"changes": changes},
            )

        await db.commit()
        await db.refresh(plan)
    except SQLAlchemyError as exc:
        await db.rollback()
        return persistence_failed(exc)

    return Ok(plan)


async def archive_plan(db: AsyncSession, ctx: TenantContext, plan_id: uuid.UUID) -> Result:
    denied = require_archive(ctx, "archiver un plan de formation")
    if denied:
        return denied

    try:
        plan = await _find_plan(db, ctx, plan_id)
        if plan is None:
            return NotFound("Plan non trouvé")

        plan.archived_at = utcnow()
        detached = await db.execute(
            update(BesoinFormation)
            .where(
                BesoinFormation.plan_formation_id == plan.id,
                BesoinFormation.organisation_id == ctx.organisation_id,
            )
            .values(plan_formation_id=None, type_besoin=TypeBesoin.PONCTUEL.value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )

        log_historique(
            db,
            ctx,
            module="entreprise",
            action="archived",
            entite_type="plan_formation",
            entite_id=plan.id,
            entite_label=plan.nom,
            entreprise_id=plan.entreprise_id,
            description=f'Plan de formation "{plan.nom}" archivé',
            objet_href=f"/entreprises/{plan.entreprise_id}",
            metadata={"besoins_detaches": detached.rowcount or 0},
        )

        await db.commit()
        await db.refresh(plan)
    except SQLAlchemyError as exc:
        await db.rollback()
        return persistence_failed(exc)

    log.info("plan_archived", extra={"organisation_id": str(ctx.organisation_id), "plan_id": str(plan.id)})
    return Ok(plan)


async def get_or_create_plan(db: AsyncSession, ctx: TenantContext, entreprise_id: uuid.UUID, annee: int) -> Result:
    try:
        existing = (
            await db.execute(
                select(PlanFormation).where(
                    PlanFormation.organisation_id == ctx.organisation_id,
                    PlanFormation.entreprise_id == entreprise_id,
                    PlanFormation.annee == annee,
                    PlanFormation.archived_at.is_(None),
                )
            )
        ).scalars().first()
    except SQLAlchemyError as exc:
        return persistence_failed(exc)

    if existing is not None:
        return Ok(existing)
    return await create_plan(db, ctx, {"entreprise_id": entreprise_id, "annee": annee, "budget_total": 0})


async def plan_budget_summary(db: AsyncSession, ctx: TenantContext, plan_id: uuid.UUID) -> Result:
    try:
        plan = await _find_plan(db, ctx, plan_id)
        if plan is None:
            return NotFound("Plan non trouvé")

        statuts = (
            await db.execute(
                select(BesoinFormation.statut).where(
                    BesoinFormation.plan_formation_id == plan.id,
                    BesoinFormation.organisation_id == ctx.organisation_id,
                    BesoinFormation.archived_at.is_(None),
                )
            )
        ).scalars().all()
        engaged = await compute_engaged_for_plan(db, ctx.organisation_id, plan.id)
    except SQLAlchemyError as exc:
        return persistence_failed(exc)

    budget_total = Decimal(plan.budget_total)
    return Ok(
        PlanSummary(
            plan=plan,
            budget_total=budget_total,
            budget_engage=engaged.total,
            budget_restant=budget_total - engaged.total,
            nb_besoins=len(statuts),
            nb_valides=sum(1 for s in statuts if s in STATUTS_VALIDES),
            nb_transformes=sum(1 for s in statuts if s == "transforme"),
        )
    )
