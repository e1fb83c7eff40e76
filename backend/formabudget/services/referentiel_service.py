from __future__ import annotations

import logging
import uuid
from typing import Any, Mapping, Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from formabudget.models.entreprise import Entreprise, EntrepriseAgence
from formabudget.models.produit import ProduitFormation, ProduitTarif
from formabudget.schemas.referentiel import AgenceIn, EntrepriseCreate, ProduitCreate
from formabudget.services.results import NotFound, Ok, Result, parse_payload, persistence_failed
from formabudget.services.tenant_service import TenantContext, require_manage

"""
Référentiel Service.

Rôle (fonctionnel) :
- Clients (entreprises) et leurs agences.
- Catalogue : produits de formation et tarifs (valorisation des besoins).
"""

log = logging.getLogger("formabudget.referentiel")


async def _load_entreprise(db: AsyncSession, ctx: TenantContext, entreprise_id: uuid.UUID) -> Optional[Entreprise]:
    return (
        await db.execute(
            select(Entreprise)
            .where(Entreprise.id == entreprise_id, Entreprise.organisation_id == ctx.organisation_id)
            .execution_options(populate_existing=True)
        )
    ).scalars().first()


async def list_entreprises(db: AsyncSession, ctx: TenantContext) -> Result:
    try:
        rows = (
            await db.execute(
                select(Entreprise)
                .where(Entreprise.organisation_id == ctx.organisation_id, Entreprise.archived_at.is_(None))
                .order_by(Entreprise.nom)
            )
        ).scalars().all()
    except SQLAlchemyError as exc:
        return persistence_failed(exc)
    return Ok(list(rows))


async def get_entreprise(db: AsyncSession, ctx: TenantContext, entreprise_id: uuid.UUID) -> Result:
    try:
        entreprise = await _load_entreprise(db, ctx, entreprise_id)
    except SQLAlchemyError as exc:
        return persistence_failed(exc)
    return Ok(entreprise) if entreprise is not None else NotFound("Entreprise non trouvée")


async def create_entreprise(
    db: AsyncSession, ctx: TenantContext, payload: Union[EntrepriseCreate, Mapping[str, Any]]
) -> Result:
    denied = require_manage(ctx, "créer une entreprise")
    if denied:
        return denied

    parsed = parse_payload(EntrepriseCreate, payload)
    if not isinstance(parsed, Ok):
        return parsed
    d: EntrepriseCreate = parsed.value

    entreprise = Entreprise(
        organisation_id=ctx.organisation_id,
        nom=d.nom.strip(),
        siret=d.siret,
        agences=[EntrepriseAgence(nom=a.nom.strip(), est_siege=a.est_siege, actif=a.actif) for a in d.agences],
    )
    try:
        db.add(entreprise)
        await db.commit()
        entreprise = await _load_entreprise(db, ctx, entreprise.id)
    except SQLAlchemyError as exc:
        await db.rollback()
        return persistence_failed(exc)

    log.info("entreprise_created", extra={"organisation_id": str(ctx.organisation_id)})
    return Ok(entreprise)


async def add_agence(
    db: AsyncSession,
    ctx: TenantContext,
    entreprise_id: uuid.UUID,
    payload: Union[AgenceIn, Mapping[str, Any]],
) -> Result:
    denied = require_manage(ctx, "ajouter une agence")
    if denied:
        return denied

    parsed = parse_payload(AgenceIn, payload)
    if not isinstance(parsed, Ok):
        return parsed
    d: AgenceIn = parsed.value

    try:
        entreprise = await _load_entreprise(db, ctx, entreprise_id)
        if entreprise is None:
            return NotFound("Entreprise non trouvée")
        agence = EntrepriseAgence(entreprise_id=entreprise.id, nom=d.nom.strip(), est_siege=d.est_siege, actif=d.actif)
        db.add(agence)
        await db.commit()
        await db.refresh(agence)
    except SQLAlchemyError as exc:
        await db.rollback()
        return persistence_failed(exc)

    return Ok(agence)


async def list_produits(db: AsyncSession, ctx: TenantContext) -> Result:
    try:
        rows = (
            await db.execute(
                select(ProduitFormation)
                .where(ProduitFormation.organisation_id == ctx.organisation_id)
                .order_by(ProduitFormation.intitule)
            )
        ).scalars().all()
    except SQLAlchemyError as exc:
        return persistence_failed(exc)
    return Ok(list(rows))


async def create_produit(
    db: AsyncSession, ctx: TenantContext, payload: Union[ProduitCreate, Mapping[str, Any]]
) -> Result:
    denied = require_manage(ctx, "créer un produit")
    if denied:
        return denied

    parsed = parse_payload(ProduitCreate, payload)
    if not isinstance(parsed, Ok):
        return parsed
    d: ProduitCreate = parsed.value

    produit = ProduitFormation(
        organisation_id=ctx.organisation_id,
        intitule=d.intitule.strip(),
        code=d.code,
        tarifs=[ProduitTarif(libelle=t.libelle, prix_ht=t.prix_ht, is_default=t.is_default) for t in d.tarifs],
    )
    try:
        db.add(produit)
        await db.commit()
        produit = (
            await db.execute(
                select(ProduitFormation)
                .where(ProduitFormation.id == produit.id)
                .execution_options(populate_existing=True)
            )
        ).scalars().one()
    except SQLAlchemyError as exc:
        await db.rollback()
        return persistence_failed(exc)

    return Ok(produit)
