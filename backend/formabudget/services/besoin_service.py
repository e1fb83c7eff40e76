from __future__ import annotations

import logging
import uuid
from typing import Any, List, Mapping, Optional, Union

from sqlalchemy import desc, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from formabudget.db.base import utcnow
from formabudget.models.besoin_formation import BesoinFormation
from formabudget.models.entreprise import Entreprise, EntrepriseAgence
from formabudget.models.plan_formation import PlanFormation
from formabudget.models.produit import ProduitFormation, ProduitTarif
from formabudget.schemas.besoins import BesoinCreate, BesoinUpdate
from formabudget.services.results import NotFound, Ok, Result, parse_payload, persistence_failed
from formabudget.services.tenant_service import TenantContext, require_manage

"""
Besoin Service (besoins de formation).

Rôle (fonctionnel) :
- Liste des besoins d’un client (année cible décroissante, puis plus récents).
- Création (statut "a_etudier"), mise à jour partielle, archivage.
- Rattachement à une session planifiée (statut -> "planifie").

Notes :
- Un besoin rattaché à un plan est de type "plan" ; le plan doit appartenir au même client.
- agences_ids est stocké comme liste JSON d’identifiants texte ; la première agence porte le coût.
- Les agences doivent appartenir au client ; produit et tarif au catalogue de l’organisation
  (le tarif au produit choisi).
"""

log = logging.getLogger("formabudget.besoins")

NON_NULLABLE = ("intitule", "priorite", "annee_cible", "type_besoin", "statut", "siege_social")


async def _find_besoin(db: AsyncSession, ctx: TenantContext, besoin_id: uuid.UUID) -> Optional[BesoinFormation]:
    return (
        await db.execute(
            select(BesoinFormation).where(
                BesoinFormation.id == besoin_id,
                BesoinFormation.organisation_id == ctx.organisation_id,
            )
        )
    ).scalars().first()


async def _plan_belongs(
    db: AsyncSession, ctx: TenantContext, plan_id: uuid.UUID, entreprise_id: uuid.UUID
) -> bool:
    found = (
        await db.execute(
            select(PlanFormation.id).where(
                PlanFormation.id == plan_id,
                PlanFormation.organisation_id == ctx.organisation_id,
                PlanFormation.entreprise_id == entreprise_id,
                PlanFormation.archived_at.is_(None),
            )
        )
    ).first()
    return found is not None


async def _check_references(
    db: AsyncSession,
    ctx: TenantContext,
    entreprise_id: uuid.UUID,
    *,
    agences_ids: Optional[List[uuid.UUID]] = None,
    produit_id: Optional[uuid.UUID] = None,
    tarif_id: Optional[uuid.UUID] = None,
) -> Optional[NotFound]:
    """Agences du client, produit et tarif du catalogue de l’organisation ; None si tout existe."""
    if agences_ids:
        known = set(
            (
                await db.execute(
                    select(EntrepriseAgence.id)
                    .join(Entreprise, Entreprise.id == EntrepriseAgence.entreprise_id)
                    .where(
                        EntrepriseAgence.entreprise_id == entreprise_id,
                        EntrepriseAgence.id.in_(agences_ids),
                        Entreprise.organisation_id == ctx.organisation_id,
                    )
                )
            ).scalars()
        )
        if any(a not in known for a in agences_ids):
            return NotFound("Agence non trouvée")

    if produit_id is not None:
        found = (
            await db.execute(
                select(ProduitFormation.id).where(
                    ProduitFormation.id == produit_id,
                    ProduitFormation.organisation_id == ctx.organisation_id,
                )
            )
        ).first()
        if found is None:
            return NotFound("Produit non trouvé")

    if tarif_id is not None:
        stmt = (
            select(ProduitTarif.id)
            .join(ProduitFormation, ProduitFormation.id == ProduitTarif.produit_id)
            .where(ProduitTarif.id == tarif_id, ProduitFormation.organisation_id == ctx.organisation_id)
        )
        # un tarif choisi doit appartenir au produit du besoin
        if produit_id is not None:
            stmt = stmt.where(ProduitTarif.produit_id == produit_id)
        if (await db.execute(stmt)).first() is None:
            return NotFound("Tarif non trouvé")

    return None


async def list_besoins(
    db: AsyncSession,
    ctx: TenantContext,
    entreprise_id: uuid.UUID,
    *,
    annee: Optional[int] = None,
    type_besoin: Optional[str] = None,
) -> Result:
    stmt = (
        select(BesoinFormation)
        .where(
            BesoinFormation.organisation_id == ctx.organisation_id,
            BesoinFormation.entreprise_id == entreprise_id,
            BesoinFormation.archived_at.is_(None),
        )
        .order_by(desc(BesoinFormation.annee_cible), desc(BesoinFormation.created_at))
    )
    if annee:
        stmt = stmt.where(BesoinFormation.annee_cible == annee)
    if type_besoin:
        stmt = stmt.where(BesoinFormation.type_besoin == type_besoin)

    try:
        rows = (await db.execute(stmt)).scalars().all()
    except SQLAlchemyError as exc:
        return persistence_failed(exc)
    return Ok(list(rows))


async def get_besoin(db: AsyncSession, ctx: TenantContext, besoin_id: uuid.UUID) -> Result:
    try:
        besoin = await _find_besoin(db, ctx, besoin_id)
    except SQLAlchemyError as exc:
        return persistence_failed(exc)
    if besoin is None:
        return NotFound("Besoin non trouvé")
    return Ok(besoin)


async def create_besoin(
    db: AsyncSession, ctx: TenantContext, payload: Union[BesoinCreate, Mapping[str, Any]]
) -> Result:
    denied = require_manage(ctx, "créer un besoin de formation")
    if denied:
        return denied

    parsed = parse_payload(BesoinCreate, payload)
    if not isinstance(parsed, Ok):
        return parsed
    d: BesoinCreate = parsed.value

    try:
        entreprise = (
            await db.execute(
                select(Entreprise.id).where(
                    Entreprise.id == d.entreprise_id,
                    Entreprise.organisation_id == ctx.organisation_id,
                )
            )
        ).first()
        if entreprise is None:
            return NotFound("Entreprise non trouvée")

        if d.plan_formation_id and not await _plan_belongs(db, ctx, d.plan_formation_id, d.entreprise_id):
            return NotFound("Plan non trouvé")

        missing = await _check_references(
            db, ctx, d.entreprise_id, agences_ids=d.agences_ids, produit_id=d.produit_id, tarif_id=d.tarif_id
        )
        if missing is not None:
            return missing

        besoin = BesoinFormation(
            organisation_id=ctx.organisation_id,
            entreprise_id=d.entreprise_id,
            plan_formation_id=d.plan_formation_id,
            intitule=d.intitule,
            description=d.description,
            public_cible=d.public_cible,
            annee_cible=d.annee_cible,
            type_besoin="plan" if d.plan_formation_id else d.type_besoin,
            priorite=d.priorite,
            statut="a_etudier",
            date_echeance=d.date_echeance,
            produit_id=d.produit_id,
            tarif_id=d.tarif_id,
            siege_social=d.siege_social,
            agences_ids=[str(a) for a in d.agences_ids],
            notes=d.notes,
        )
        db.add(besoin)
        await db.commit()
        await db.refresh(besoin)
    except SQLAlchemyError as exc:
        await db.rollback()
        return persistence_failed(exc)

    log.info(
        "besoin_created",
        extra={"organisation_id": str(ctx.organisation_id), "entreprise_id": str(d.entreprise_id)},
    )
    return Ok(besoin)


async def update_besoin(
    db: AsyncSession,
    ctx: TenantContext,
    besoin_id: uuid.UUID,
    payload: Union[BesoinUpdate, Mapping[str, Any]],
) -> Result:
    denied = require_manage(ctx, "modifier un besoin de formation")
    if denied:
        return denied

    parsed = parse_payload(BesoinUpdate, payload)
    if not isinstance(parsed, Ok):
        return parsed
    d = parsed.value.model_dump(exclude_unset=True)

    try:
        besoin = await _find_besoin(db, ctx, besoin_id)
        if besoin is None:
            return NotFound("Besoin non trouvé")

        if d.get("plan_formation_id") and not await _plan_belongs(
            db, ctx, d["plan_formation_id"], besoin.entreprise_id
        ):
            return NotFound("Plan non trouvé")

        missing = await _check_references(
            db,
            ctx,
            besoin.entreprise_id,
            agences_ids=d.get("agences_ids"),
            produit_id=d["produit_id"] if "produit_id" in d else besoin.produit_id,
            tarif_id=d.get("tarif_id"),
        )
        if missing is not None:
            return missing

        for key, value in d.items():
            if key == "agences_ids":
                value = [str(a) for a in (value or [])]
            elif key in ("description", "public_cible", "notes") and value == "":
                value = None
            elif value is None and key in NON_NULLABLE:
                continue
            setattr(besoin, key, value)

        if d.get("plan_formation_id"):
            besoin.type_besoin = "plan"
        besoin.updated_at = utcnow()

        await db.commit()
        await db.refresh(besoin)
    except SQLAlchemyError as exc:
        await db.rollback()
        return persistence_failed(exc)

    return Ok(besoin)


async def archive_besoin(db: AsyncSession, ctx: TenantContext, besoin_id: uuid.UUID) -> Result:
    denied = require_manage(ctx, "supprimer un besoin de formation")
    if denied:
        return denied

    try:
        besoin = await _find_besoin(db, ctx, besoin_id)
        if besoin is None:
            return NotFound("Besoin non trouvé")
        besoin.archived_at = utcnow()
        await db.commit()
        await db.refresh(besoin)
    except SQLAlchemyError as exc:
        await db.rollback()
        return persistence_failed(exc)

    return Ok(besoin)


async def link_besoin_to_session(
    db: AsyncSession, ctx: TenantContext, besoin_id: uuid.UUID, session_id: uuid.UUID
) -> Result:
    denied = require_manage(ctx, "planifier un besoin de formation")
    if denied:
        return denied

    try:
        besoin = await _find_besoin(db, ctx, besoin_id)
        if besoin is None:
            return NotFound("Besoin non trouvé")
        besoin.session_id = session_id
        besoin.statut = "planifie"
        besoin.updated_at = utcnow()
        await db.commit()
        await db.refresh(besoin)
    except SQLAlchemyError as exc:
        await db.rollback()
        return persistence_failed(exc)

    return Ok(besoin)
