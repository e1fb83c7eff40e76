from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, List, Mapping, Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from formabudget.db.base import utcnow
from formabudget.models.entreprise import Entreprise
from formabudget.models.facturation import (
    CompteurNumero,
    Devis,
    DevisLigne,
    Facture,
    FactureLigne,
    FacturePaiement,
    SessionCommanditaire,
)
from formabudget.schemas.facturation import (
    AcompteCreate,
    CommanditaireCreate,
    DevisCreate,
    FactureCreate,
    PaiementCreate,
)
from formabudget.services.historique_service import fmt_montant, log_historique
from formabudget.services.results import (
    NotFound,
    Ok,
    Result,
    RuleViolation,
    ValidationFailed,
    parse_payload,
    persistence_failed,
)
from formabudget.services.tenant_service import TenantContext, require_archive, require_manage

"""
Facturation Service (devis -> facture -> paiement).

Rôle (fonctionnel) :
- Numérotation D-{année}-{0001} / F-{année}-{0001} via compteurs_numeros (ligne verrouillée).
- Devis : création / modification avec lignes et totaux, changement de statut, refus,
  conversion en facture, archivage.
- Factures : saisie directe / modification, changement de statut, paiements (recalcul du
  payé et du statut), acompte / solde par commanditaire de session, archivage.
- Pipeline de facturation d’une session : devis, factures et totaux par commanditaire.

Règles :
- Client et commanditaire référencés doivent appartenir à l’organisation ; un document
  rattaché à un commanditaire prend la session de ce commanditaire.
- Une modification remplace toutes les lignes et recalcule les totaux ; le statut d’un devis
  ne change que par les actions dédiées.
- Un changement de statut vérifie seulement l’appartenance au vocabulaire
  (pas de table de prédécesseurs) ; envoye_le / signe_le sont horodatés.
- Refus : seulement depuis "envoye".
- Conversion devis -> facture : une seule fois (devis "transforme" ensuite).
- Solde = budget - déjà facturé ; refusé si nul ou négatif.
- Archivage réservé aux admins.
"""

log = logging.getLogger("formabudget.facturation")

DEVIS_STATUTS = ("brouillon", "envoye", "signe", "refuse", "expire", "transforme")
FACTURE_STATUTS = ("brouillon", "envoyee", "payee", "partiellement_payee", "en_retard")

CENT = Decimal("0.01")
ZERO = Decimal("0")


def arrondi(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Totaux:
    total_ht: Decimal
    total_tva: Decimal
    total_ttc: Decimal


def calc_totals(lignes: Iterable[Any]) -> Totaux:
    """Totaux HT / TVA / TTC d’un ensemble de lignes (quantite, prix_unitaire_ht, taux_tva)."""
    total_ht = ZERO
    total_tva = ZERO
    for ligne in lignes:
        ht = Decimal(ligne.quantite) * Decimal(ligne.prix_unitaire_ht)
        total_ht += ht
        total_tva += ht * Decimal(ligne.taux_tva) / 100
    return Totaux(arrondi(total_ht), arrondi(total_tva), arrondi(total_ht + total_tva))


async def next_numero(db: AsyncSession, organisation_id: uuid.UUID, prefixe: str, annee: int) -> str:
    """Prochain numéro d’affichage ; le compteur est verrouillé jusqu’au commit de l’appelant."""
    compteur = (
        await db.execute(
            select(CompteurNumero)
            .where(
                CompteurNumero.organisation_id == organisation_id,
                CompteurNumero.prefixe == prefixe,
                CompteurNumero.annee == annee,
            )
            .with_for_update()
        )
    ).scalars().first()

    if compteur is None:
        compteur = CompteurNumero(organisation_id=organisation_id, prefixe=prefixe, annee=annee, dernier_numero=0)
        db.add(compteur)

    compteur.dernier_numero = (compteur.dernier_numero or 0) + 1
    await db.flush()
    return f"{prefixe}-{annee}-{compteur.dernier_numero:04d}"


# --- Lecture ---------------------------------------------------------------


async def _load_devis(db: AsyncSession, ctx: TenantContext, devis_id: uuid.UUID) -> Optional[Devis]:
    return (
        await db.execute(
            select(Devis)
            .where(Devis.id == devis_id, Devis.organisation_id == ctx.organisation_id)
            .execution_options(populate_existing=True)
        )
    ).scalars().first()


async def _load_facture(db: AsyncSession, ctx: TenantContext, facture_id: uuid.UUID) -> Optional[Facture]:
    return (
        await db.execute(
            select(Facture)
            .where(Facture.id == facture_id, Facture.organisation_id == ctx.organisation_id)
            .execution_options(populate_existing=True)
        )
    ).scalars().first()


async def _load_commanditaire(
    db: AsyncSession, ctx: TenantContext, commanditaire_id: uuid.UUID
) -> Optional[SessionCommanditaire]:
    return (
        await db.execute(
            select(SessionCommanditaire).where(
                SessionCommanditaire.id == commanditaire_id,
                SessionCommanditaire.organisation_id == ctx.organisation_id,
            )
        )
    ).scalars().first()


async def _entreprise_exists(db: AsyncSession, ctx: TenantContext, entreprise_id: uuid.UUID) -> bool:
    found = (
        await db.execute(
            select(Entreprise.id).where(
                Entreprise.id == entreprise_id,
                Entreprise.organisation_id == ctx.organisation_id,
            )
        )
    ).first()
    return found is not None


async def _resolve_links(
    db: AsyncSession,
    ctx: TenantContext,
    entreprise_id: Optional[uuid.UUID],
    commanditaire_id: Optional[uuid.UUID],
    session_id: Optional[uuid.UUID],
) -> Result:
    """Contrôle client / commanditaire d’un document ; Ok(session_id retenue)."""
    if entreprise_id is not None and not await _entreprise_exists(db, ctx, entreprise_id):
        return NotFound("Entreprise non trouvée")
    if commanditaire_id is None:
        return Ok(session_id)

    cmd = await _load_commanditaire(db, ctx, commanditaire_id)
    if cmd is None:
        return NotFound("Commanditaire introuvable")
    if session_id is not None and session_id != cmd.session_id:
        return ValidationFailed({"session_id": ["La session ne correspond pas au commanditaire"]})
    return Ok(cmd.session_id)


def _lignes_values(lignes: Iterable[Any]) -> List[dict]:
    return [
        dict(
            designation=l.designation,
            description=l.description,
            quantite=l.quantite,
            prix_unitaire_ht=l.prix_unitaire_ht,
            taux_tva=l.taux_tva,
            montant_ht=arrondi(l.quantite * l.prix_unitaire_ht),
            ordre=l.ordre if l.ordre is not None else i,
        )
        for i, l in enumerate(lignes)
    ]


async def get_devis(db: AsyncSession, ctx: TenantContext, devis_id: uuid.UUID) -> Result:
    try:
        devis = await _load_devis(db, ctx, devis_id)
    except SQLAlchemyError as exc:
        return persistence_failed(exc)
    return Ok(devis) if devis is not None else NotFound("Devis introuvable")


async def get_facture(db: AsyncSession, ctx: TenantContext, facture_id: uuid.UUID) -> Result:
    try:
        facture = await _load_facture(db, ctx, facture_id)
    except SQLAlchemyError as exc:
        return persistence_failed(exc)
    return Ok(facture) if facture is not None else NotFound("Facture introuvable")


async def list_factures(
    db: AsyncSession,
    ctx: TenantContext,
    *,
    statut: Optional[str] = None,
    commanditaire_id: Optional[uuid.UUID] = None,
) -> Result:
    stmt = (
        select(Facture)
        .where(Facture.organisation_id == ctx.organisation_id, Facture.archived_at.is_(None))
        .order_by(Facture.date_emission.desc(), Facture.created_at.desc())
    )
    if statut:
        stmt = stmt.where(Facture.statut == statut)
    if commanditaire_id:
        stmt = stmt.where(Facture.commanditaire_id == commanditaire_id)
    try:
        rows = (await db.execute(stmt)).scalars().all()
    except SQLAlchemyError as exc:
        return persistence_failed(exc)
    return Ok(list(rows))


# --- Commanditaires / devis -----------------------------------------------


async def create_commanditaire(
    db: AsyncSession, ctx: TenantContext, payload: Union[CommanditaireCreate, Mapping[str, Any]]
) -> Result:
    denied = require_manage(ctx, "ajouter un commanditaire")
    if denied:
        return denied

    parsed = parse_payload(CommanditaireCreate, payload)
    if not isinstance(parsed, Ok):
        return parsed
    d: CommanditaireCreate = parsed.value

    try:
        if d.entreprise_id is not None and not await _entreprise_exists(db, ctx, d.entreprise_id):
            return NotFound("Entreprise non trouvée")

        cmd = SessionCommanditaire(
            organisation_id=ctx.organisation_id,
            session_id=d.session_id,
            entreprise_id=d.entreprise_id,
            budget=d.budget,
        )
        db.add(cmd)
        await db.commit()
        cmd = await _load_commanditaire(db, ctx, cmd.id)
    except SQLAlchemyError as exc:
        await db.rollback()
        return persistence_failed(exc)
    return Ok(cmd)


async def create_devis(db: AsyncSession, ctx: TenantContext, payload: Union[DevisCreate, Mapping[str, Any]]) -> Result:
    denied = require_manage(ctx, "créer un devis")
    if denied:
        return denied

    parsed = parse_payload(DevisCreate, payload)
    if not isinstance(parsed, Ok):
        return parsed
    d: DevisCreate = parsed.value

    emission = d.date_emission or date.today()
    totals = calc_totals(d.lignes)

    try:
        links = await _resolve_links(db, ctx, d.entreprise_id, d.commanditaire_id, d.session_id)
        if not isinstance(links, Ok):
            return links

        numero = await next_numero(db, ctx.organisation_id, "D", emission.year)
        devis = Devis(
            organisation_id=ctx.organisation_id,
            numero_affichage=numero,
            entreprise_id=d.entreprise_id,
            session_id=links.value,
            commanditaire_id=d.commanditaire_id,
            date_emission=emission,
            objet=d.objet,
            conditions=d.conditions,
            statut="brouillon",
            total_ht=totals.total_ht,
            total_tva=totals.total_tva,
            total_ttc=totals.total_ttc,
            lignes=[DevisLigne(**values) for values in _lignes_values(d.lignes)],
        )
        db.add(devis)
        await db.flush()

        log_historique(
            db,
            ctx,
            module="devis",
            action="created",
            entite_type="devis",
            entite_id=devis.id,
            entite_label=f"{numero} — {d.objet or 'Sans objet'}",
            entreprise_id=d.entreprise_id,
            description=f"Devis {numero} créé ({totals.total_ttc:.2f} € TTC)",
            objet_href=f"/devis/{devis.id}",
        )
        await db.commit()
        devis = await _load_devis(db, ctx, devis.id)
    except SQLAlchemyError as exc:
        await db.rollback()
        return persistence_failed(exc)

    return Ok(devis)


async def update_devis(
    db: AsyncSession,
    ctx: TenantContext,
    devis_id: uuid.UUID,
    payload: Union[DevisCreate, Mapping[str, Any]],
) -> Result:
    denied = require_manage(ctx, "modifier un devis")
    if denied:
        return denied

    parsed = parse_payload(DevisCreate, payload)
    if not isinstance(parsed, Ok):
        return parsed
    d: DevisCreate = parsed.value
    totals = calc_totals(d.lignes)

    try:
        devis = await _load_devis(db, ctx, devis_id)
        if devis is None:
            return NotFound("Devis introuvable")

        links = await _resolve_links(db, ctx, d.entreprise_id, d.commanditaire_id, d.session_id)
        if not isinstance(links, Ok):
            return links

        devis.entreprise_id = d.entreprise_id
        devis.session_id = links.value
        devis.commanditaire_id = d.commanditaire_id
        devis.date_emission = d.date_emission or devis.date_emission
        devis.objet = d.objet
        devis.conditions = d.conditions
        devis.total_ht = totals.total_ht
        devis.total_tva = totals.total_tva
        devis.total_ttc = totals.total_ttc
        devis.lignes = [DevisLigne(**values) for values in _lignes_values(d.lignes)]

        log_historique(
            db,
            ctx,
            module="devis",
            action="updated",
            entite_type="devis",
            entite_id=devis.id,
            entite_label=devis.numero_affichage,
            entreprise_id=devis.entreprise_id,
            description=f"Devis {devis.numero_affichage} mis à jour",
            objet_href=f"/devis/{devis.id}",
        )
        await db.commit()
        devis = await _load_devis(db, ctx, devis_id)
    except SQLAlchemyError as exc:
        await db.rollback()
        return persistence_failed(exc)

    return Ok(devis)


async def mark_devis_refused(db: AsyncSession, ctx: TenantContext, devis_id: uuid.UUID) -> Result:
    denied = require_manage(ctx, "marquer un devis comme refusé")
    if denied:
        return denied

    try:
        devis = await _load_devis(db, ctx, devis_id)
        if devis is None:
            return NotFound("Devis introuvable")
        if devis.statut != "envoye":
            return RuleViolation("Seul un devis envoyé peut être marqué comme refusé")

        devis.statut = "refuse"
        log_historique(
            db,
            ctx,
            module="devis",
            action="status_changed",
            entite_type="devis",
            entite_id=devis.id,
            entite_label=devis.numero_affichage,
            entreprise_id=devis.entreprise_id,
            description=f"Devis {devis.numero_affichage} marqué comme refusé",
            objet_href=f"/devis/{devis.id}",
            metadata={"ancien_statut": "envoye", "nouveau_statut": "refuse"},
        )
        await db.commit()
        devis = await _load_devis(db, ctx, devis_id)
    except SQLAlchemyError as exc:
        await db.rollback()
        return persistence_failed(exc)

    return Ok(devis)


async def archive_devis(db: AsyncSession, ctx: TenantContext, devis_id: uuid.UUID) -> Result:
    denied = require_archive(ctx, "archiver un devis")
    if denied:
        return denied

    try:
        devis = await _load_devis(db, ctx, devis_id)
        if devis is None:
            return NotFound("Devis introuvable")

        devis.archived_at = utcnow()
        log_historique(
            db,
            ctx,
            module="devis",
            action="archived",
            entite_type="devis",
            entite_id=devis.id,
            entite_label=devis.numero_affichage,
            entreprise_id=devis.entreprise_id,
            description=f"Devis {devis.numero_affichage} archivé",
            objet_href=f"/devis/{devis.id}",
        )
        await db.commit()
        devis = await _load_devis(db, ctx, devis_id)
    except SQLAlchemyError as exc:
        await db.rollback()
        return persistence_failed(exc)

    return Ok(devis)


async def update_devis_statut(db: AsyncSession, ctx: TenantContext, devis_id: uuid.UUID, statut: str) -> Result:
    denied = require_manage(ctx, "modifier le statut d'un devis")
    if denied:
        return denied
    if statut not in DEVIS_STATUTS:
        return ValidationFailed({"statut": [f"Statut de devis inconnu : {statut}"]})

    try:
        devis = await _load_devis(db, ctx, devis_id)
        if devis is None:
            return NotFound("Devis introuvable")

        ancien = devis.statut
        devis.statut = statut
        if statut == "envoye":
            devis.envoye_le = utcnow()
        if statut == "signe":
            devis.signe_le = utcnow()

        log_historique(
            db,
            ctx,
            module="devis",
            action="status_changed",
            entite_type="devis",
            entite_id=devis.id,
            entite_label=devis.numero_affichage,
            entreprise_id=devis.entreprise_id,
            description=f"Devis {devis.numero_affichage} → {statut}",
            objet_href=f"/devis/{devis.id}",
            metadata={"ancien_statut": ancien, "nouveau_statut": statut},
        )
        await db.commit()
        devis = await _load_devis(db, ctx, devis_id)
    except SQLAlchemyError as exc:
        await db.rollback()
        return persistence_failed(exc)

    log.info(
        "devis_status_changed",
        extra={"organisation_id": str(ctx.organisation_id), "old_status": ancien, "new_status": statut},
    )
    return Ok(devis)


async def convert_devis_to_facture(db: AsyncSession, ctx: TenantContext, devis_id: uuid.UUID) -> Result:
    denied = require_manage(ctx, "convertir un devis en facture")
    if denied:
        return denied

    try:
        devis = (
            await db.execute(
                select(Devis)
                .where(Devis.id == devis_id, Devis.organisation_id == ctx.organisation_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
        ).scalars().first()
        if devis is None:
            return NotFound("Devis introuvable")
        if devis.statut == "transforme":
            # le rollback expire le devis : message construit avant
            violation = RuleViolation(f"Le devis {devis.numero_affichage} a déjà été transformé en facture")
            await db.rollback()
            return violation

        today = date.today()
        numero = await next_numero(db, ctx.organisation_id, "F", today.year)
        facture = Facture(
            organisation_id=ctx.organisation_id,
            numero_affichage=numero,
            entreprise_id=devis.entreprise_id,
            devis_id=devis.id,
            session_id=devis.session_id,
            commanditaire_id=devis.commanditaire_id,
            type_facture="standard",
            date_emission=today,
            objet=devis.objet,
            conditions_paiement=devis.conditions,
            statut="brouillon",
            total_ht=devis.total_ht,
            total_tva=devis.total_tva,
            total_ttc=devis.total_ttc,
            montant_paye=ZERO,
            lignes=[
                FactureLigne(
                    designation=l.designation,
                    description=l.description,
                    quantite=l.quantite,
                    prix_unitaire_ht=l.prix_unitaire_ht,
                    taux_tva=l.taux_tva,
                    montant_ht=l.montant_ht,
                    ordre=l.ordre,
                )
                for l in devis.lignes
            ],
        )
        db.add(facture)
        devis.statut = "transforme"
        await db.flush()

        log_historique(
            db,
            ctx,
            module="facture",
            action="created",
            entite_type="facture",
            entite_id=facture.id,
            entite_label=numero,
            entreprise_id=devis.entreprise_id,
            description=f"Facture {numero} créée depuis devis {devis.numero_affichage}",
            objet_href=f"/factures/{facture.id}",
            metadata={"devis_id": devis.id},
        )
        await db.commit()
        facture = await _load_facture(db, ctx, facture.id)
    except SQLAlchemyError as exc:
        await db.rollback()
        return persistence_failed(exc)

    log.info("devis_converted", extra={"organisation_id": str(ctx.organisation_id), "new_status": "transforme"})
    return Ok(facture)


# --- Factures / paiements ---------------------------------------------------


async def create_facture(
    db: AsyncSession, ctx: TenantContext, payload: Union[FactureCreate, Mapping[str, Any]]
) -> Result:
    denied = require_manage(ctx, "créer une facture")
    if denied:
        return denied

    parsed = parse_payload(FactureCreate, payload)
    if not isinstance(parsed, Ok):
        return parsed
    d: FactureCreate = parsed.value

    emission = d.date_emission or date.today()
    totals = calc_totals(d.lignes)

    try:
        links = await _resolve_links(db, ctx, d.entreprise_id, d.commanditaire_id, d.session_id)
        if not isinstance(links, Ok):
            return links

        numero = await next_numero(db, ctx.organisation_id, "F", emission.year)
        facture = Facture(
            organisation_id=ctx.organisation_id,
            numero_affichage=numero,
            entreprise_id=d.entreprise_id,
            session_id=links.value,
            commanditaire_id=d.commanditaire_id,
            type_facture="standard",
            date_emission=emission,
            date_echeance=d.date_echeance,
            objet=d.objet,
            conditions_paiement=d.conditions_paiement,
            statut=d.statut,
            total_ht=totals.total_ht,
            total_tva=totals.total_tva,
            total_ttc=totals.total_ttc,
            montant_paye=ZERO,
            lignes=[FactureLigne(**values) for values in _lignes_values(d.lignes)],
        )
        db.add(facture)
        await db.flush()

        log_historique(
            db,
            ctx,
            module="facture",
            action="created",
            entite_type="facture",
            entite_id=facture.id,
            entite_label=numero,
            entreprise_id=d.entreprise_id,
            description=f"Facture {numero} créée ({totals.total_ttc:.2f} € TTC)",
            objet_href=f"/factures/{facture.id}",
        )
        await db.commit()
        facture = await _load_facture(db, ctx, facture.id)
    except SQLAlchemyError as exc:
        await db.rollback()
        return persistence_failed(exc)

    return Ok(facture)


async def update_facture(
    db: AsyncSession,
    ctx: TenantContext,
    facture_id: uuid.UUID,
    payload: Union[FactureCreate, Mapping[str, Any]],
) -> Result:
    """Remplace en-tête et lignes ; le statut n’est modifié que s’il est fourni. Le payé reste inchangé."""
    denied = require_manage(ctx, "modifier une facture")
    if denied:
        return denied

    parsed = parse_payload(FactureCreate, payload)
    if not isinstance(parsed, Ok):
        return parsed
    d: FactureCreate = parsed.value
    totals = calc_totals(d.lignes)

    try:
        facture = await _load_facture(db, ctx, facture_id)
        if facture is None:
            return NotFound("Facture introuvable")

        links = await _resolve_links(db, ctx, d.entreprise_id, d.commanditaire_id, d.session_id)
        if not isinstance(links, Ok):
            return links

        facture.entreprise_id = d.entreprise_id
        facture.session_id = links.value
        facture.commanditaire_id = d.commanditaire_id
        facture.date_emission = d.date_emission or facture.date_emission
        facture.date_echeance = d.date_echeance
        facture.objet = d.objet
        facture.conditions_paiement = d.conditions_paiement
        if "statut" in d.model_fields_set:
            facture.statut = d.statut
        facture.total_ht = totals.total_ht
        facture.total_tva = totals.total_tva
        facture.total_ttc = totals.total_ttc
        facture.lignes = [FactureLigne(**values) for values in _lignes_values(d.lignes)]

        log_historique(
            db,
            ctx,
            module="facture",
            action="updated",
            entite_type="facture",
            entite_id=facture.id,
            entite_label=facture.numero_affichage,
            entreprise_id=facture.entreprise_id,
            description=f"Facture {facture.numero_affichage} mise à jour",
            objet_href=f"/factures/{facture.id}",
        )
        await db.commit()
        facture = await _load_facture(db, ctx, facture_id)
    except SQLAlchemyError as exc:
        await db.rollback()
        return persistence_failed(exc)

    return Ok(facture)


async def archive_facture(db: AsyncSession, ctx: TenantContext, facture_id: uuid.UUID) -> Result:
    denied = require_archive(ctx, "archiver une facture")
    if denied:
        return denied

    try:
        facture = await _load_facture(db, ctx, facture_id)
        if facture is None:
            return NotFound("Facture introuvable")

        facture.archived_at = utcnow()
        log_historique(
            db,
            ctx,
            module="facture",
            action="archived",
            entite_type="facture",
            entite_id=facture.id,
            entite_label=facture.numero_affichage,
            entreprise_id=facture.entreprise_id,
            description=f"Facture {facture.numero_affichage} archivée",
            objet_href=f"/factures/{facture.id}",
        )
        await db.commit()
        facture = await _load_facture(db, ctx, facture_id)
    except SQLAlchemyError as exc:
        await db.rollback()
        return persistence_failed(exc)

    log.info("facture_archived", extra={"organisation_id": str(ctx.organisation_id)})
    return Ok(facture)


async def update_facture_statut(db: AsyncSession, ctx: TenantContext, facture_id: uuid.UUID, statut: str) -> Result:
    denied = require_manage(ctx, "modifier le statut d'une facture")
    if denied:
        return denied
    if statut not in FACTURE_STATUTS:
        return ValidationFailed({"statut": [f"Statut de facture inconnu : {statut}"]})

    try:
        facture = await _load_facture(db, ctx, facture_id)
        if facture is None:
            return NotFound("Facture introuvable")

        ancien = facture.statut
        facture.statut = statut
        if statut == "envoyee":
            facture.envoye_le = utcnow()

        log_historique(
            db,
            ctx,
            module="facture",
            action="status_changed",
            entite_type="facture",
            entite_id=facture.id,
            entite_label=facture.numero_affichage,
            entreprise_id=facture.entreprise_id,
            description=f"Facture {facture.numero_affichage} → {statut}",
            objet_href=f"/factures/{facture.id}",
            metadata={"ancien_statut": ancien, "nouveau_statut": statut},
        )
        await db.commit()
        facture = await _load_facture(db, ctx, facture_id)
    except SQLAlchemyError as exc:
        await db.rollback()
        return persistence_failed(exc)

    log.info(
        "facture_status_changed",
        extra={"organisation_id": str(ctx.organisation_id), "old_status": ancien, "new_status": statut},
    )
    return Ok(facture)


async def _total_paye(db: AsyncSession, facture_id: uuid.UUID) -> Decimal:
    montants = (
        await db.execute(select(FacturePaiement.montant).where(FacturePaiement.facture_id == facture_id))
    ).scalars().all()
    return sum((Decimal(m) for m in montants), ZERO)


async def add_paiement(
    db: AsyncSession,
    ctx: TenantContext,
    facture_id: uuid.UUID,
    payload: Union[PaiementCreate, Mapping[str, Any]],
) -> Result:
    denied = require_manage(ctx, "enregistrer un paiement")
    if denied:
        return denied

    parsed = parse_payload(PaiementCreate, payload)
    if not isinstance(parsed, Ok):
        return parsed
    d: PaiementCreate = parsed.value

    try:
        facture = await _load_facture(db, ctx, facture_id)
        if facture is None:
            return NotFound("Facture introuvable")

        db.add(
            FacturePaiement(
                facture_id=facture.id,
                date_paiement=d.date_paiement,
                montant=d.montant,
                mode=d.mode,
                reference=d.reference or None,
            )
        )
        await db.flush()

        total_paye = await _total_paye(db, facture.id)
        facture.montant_paye = total_paye
        facture.statut = "payee" if total_paye >= Decimal(facture.total_ttc) else "partiellement_payee"

        log_historique(
            db,
            ctx,
            module="facture",
            action="updated",
            entite_type="facture",
            entite_id=facture.id,
            entite_label=facture.numero_affichage,
            entreprise_id=facture.entreprise_id,
            description=f"Paiement de {d.montant:.2f} € enregistré sur {facture.numero_affichage}",
            objet_href=f"/factures/{facture.id}",
            metadata={"montant": d.montant, "montant_paye": total_paye},
        )
        await db.commit()
        facture = await _load_facture(db, ctx, facture_id)
    except SQLAlchemyError as exc:
        await db.rollback()
        return persistence_failed(exc)

    return Ok(facture)


async def delete_paiement(
    db: AsyncSession, ctx: TenantContext, facture_id: uuid.UUID, paiement_id: uuid.UUID
) -> Result:
    denied = require_manage(ctx, "supprimer un paiement")
    if denied:
        return denied

    try:
        facture = await _load_facture(db, ctx, facture_id)
        if facture is None:
            return NotFound("Facture introuvable")

        paiement = (
            await db.execute(
                select(FacturePaiement).where(
                    FacturePaiement.id == paiement_id,
                    FacturePaiement.facture_id == facture.id,
                )
            )
        ).scalars().first()
        if paiement is None:
            return NotFound("Paiement introuvable")

        await db.delete(paiement)
        await db.flush()

        total_paye = await _total_paye(db, facture.id)
        total_ttc = Decimal(facture.total_ttc)
        facture.montant_paye = total_paye
        if total_paye >= total_ttc and total_ttc > 0:
            facture.statut = "payee"
        elif total_paye > 0:
            facture.statut = "partiellement_payee"
        else:
            facture.statut = "envoyee"

        await db.commit()
        facture = await _load_facture(db, ctx, facture_id)
    except SQLAlchemyError as exc:
        await db.rollback()
        return persistence_failed(exc)

    return Ok(facture)


# --- Acompte / solde ------------------------------------------------------


async def _facture_forfait(
    db: AsyncSession,
    ctx: TenantContext,
    cmd: SessionCommanditaire,
    *,
    type_facture: str,
    montant: Decimal,
    objet: str,
    pourcentage: Optional[Decimal] = None,
) -> Facture:
    today = date.today()
    numero = await next_numero(db, ctx.organisation_id, "F", today.year)
    facture = Facture(
        organisation_id=ctx.organisation_id,
        numero_affichage=numero,
        entreprise_id=cmd.entreprise_id,
        session_id=cmd.session_id,
        commanditaire_id=cmd.id,
        type_facture=type_facture,
        pourcentage_acompte=pourcentage,
        date_emission=today,
        objet=objet,
        statut="brouillon",
        total_ht=montant,
        total_tva=ZERO,
        total_ttc=montant,
        montant_paye=ZERO,
        lignes=[
            FactureLigne(
                designation=objet,
                quantite=Decimal("1"),
                prix_unitaire_ht=montant,
                taux_tva=ZERO,
                montant_ht=montant,
                ordre=0,
            )
        ],
    )
    db.add(facture)
    await db.flush()
    return facture


async def create_facture_acompte(
    db: AsyncSession,
    ctx: TenantContext,
    commanditaire_id: uuid.UUID,
    payload: Union[AcompteCreate, Mapping[str, Any]],
) -> Result:
    denied = require_manage(ctx, "créer une facture d'acompte")
    if denied:
        return denied

    parsed = parse_payload(AcompteCreate, payload)
    if not isinstance(parsed, Ok):
        return parsed
    pct = parsed.value.pourcentage

    try:
        cmd = await _load_commanditaire(db, ctx, commanditaire_id)
        if cmd is None:
            return NotFound("Commanditaire introuvable")

        montant = arrondi(Decimal(cmd.budget) * pct / 100)
        objet = f"Acompte {fmt_montant(pct)}% — Formation"
        facture = await _facture_forfait(
            db, ctx, cmd, type_facture="acompte", montant=montant, objet=objet, pourcentage=pct
        )

        log_historique(
            db,
            ctx,
            module="facture",
            action="created",
            entite_type="facture",
            entite_id=facture.id,
            entite_label=facture.numero_affichage,
            entreprise_id=cmd.entreprise_id,
            description=(
                f"Facture d'acompte {facture.numero_affichage} ({fmt_montant(pct)}%) créée pour "
                f"{cmd.entreprise_nom or 'commanditaire'} (session {cmd.session_id})"
            ),
            objet_href=f"/factures/{facture.id}",
        )
        await db.commit()
        facture = await _load_facture(db, ctx, facture.id)
    except SQLAlchemyError as exc:
        await db.rollback()
        return persistence_failed(exc)

    return Ok(facture)


async def create_facture_solde(db: AsyncSession, ctx: TenantContext, commanditaire_id: uuid.UUID) -> Result:
    denied = require_manage(ctx, "créer une facture de solde")
    if denied:
        return denied

    try:
        cmd = await _load_commanditaire(db, ctx, commanditaire_id)
        if cmd is None:
            return NotFound("Commanditaire introuvable")

        deja = (
            await db.execute(
                select(Facture.total_ttc).where(
                    Facture.commanditaire_id == cmd.id,
                    Facture.organisation_id == ctx.organisation_id,
                    Facture.archived_at.is_(None),
                )
            )
        ).scalars().all()
        deja_facture = sum((Decimal(t) for t in deja), ZERO)
        budget = Decimal(cmd.budget)
        montant = arrondi(budget - deja_facture)

        if montant <= 0:
            await db.rollback()
            return RuleViolation(
                f"Montant du solde nul ou négatif (budget: {fmt_montant(budget)}€, "
                f"déjà facturé: {fmt_montant(deja_facture)}€)"
            )

        facture = await _facture_forfait(
            db, ctx, cmd, type_facture="solde", montant=montant, objet="Solde — Formation"
        )

        log_historique(
            db,
            ctx,
            module="facture",
            action="created",
            entite_type="facture",
            entite_id=facture.id,
            entite_label=facture.numero_affichage,
            entreprise_id=cmd.entreprise_id,
            description=(
                f"Facture de solde {facture.numero_affichage} ({fmt_montant(montant)}€) créée pour "
                f"{cmd.entreprise_nom or 'commanditaire'} (session {cmd.session_id})"
            ),
            objet_href=f"/factures/{facture.id}",
        )
        await db.commit()
        facture = await _load_facture(db, ctx, facture.id)
    except SQLAlchemyError as exc:
        await db.rollback()
        return persistence_failed(exc)

    return Ok(facture)


# --- Pipeline ---------------------------------------------------------------


@dataclass(frozen=True)
class CommanditaireTotaux:
    budget: Decimal
    total_devis: Decimal
    total_facture: Decimal
    total_paye: Decimal
    reste_a_facturer: Decimal
    reste_a_payer: Decimal


@dataclass(frozen=True)
class CommanditairePipeline:
    commanditaire: SessionCommanditaire
    devis: List[Devis]
    factures: List[Facture]
    totaux: CommanditaireTotaux


@dataclass(frozen=True)
class SessionTotaux:
    budget: Decimal
    total_facture: Decimal
    total_paye: Decimal


@dataclass(frozen=True)
class SessionBillingPipeline:
    session_id: uuid.UUID
    commanditaires: List[CommanditairePipeline]
    totaux: SessionTotaux


async def session_billing_pipeline(db: AsyncSession, ctx: TenantContext, session_id: uuid.UUID) -> Result:
    try:
        commanditaires = (
            await db.execute(
                select(SessionCommanditaire)
                .where(
                    SessionCommanditaire.session_id == session_id,
                    SessionCommanditaire.organisation_id == ctx.organisation_id,
                )
                .order_by(SessionCommanditaire.created_at)
            )
        ).scalars().all()
        all_devis = (
            await db.execute(
                select(Devis)
                .where(
                    Devis.session_id == session_id,
                    Devis.organisation_id == ctx.organisation_id,
                    Devis.archived_at.is_(None),
                )
                .order_by(Devis.created_at)
            )
        ).scalars().all()
        all_factures = (
            await db.execute(
                select(Facture)
                .where(
                    Facture.session_id == session_id,
                    Facture.organisation_id == ctx.organisation_id,
                    Facture.archived_at.is_(None),
                )
                .order_by(Facture.created_at)
            )
        ).scalars().all()
    except SQLAlchemyError as exc:
        return persistence_failed(exc)

    pipelines: List[CommanditairePipeline] = []
    for cmd in commanditaires:
        devis = [d for d in all_devis if d.commanditaire_id == cmd.id]
        factures = [f for f in all_factures if f.commanditaire_id == cmd.id]

        budget = Decimal(cmd.budget)
        total_devis = sum((Decimal(d.total_ttc) for d in devis), ZERO)
        total_facture = sum((Decimal(f.total_ttc) for f in factures), ZERO)
        total_paye = sum((Decimal(f.montant_paye) for f in factures), ZERO)

        pipelines.append(
            CommanditairePipeline(
                commanditaire=cmd,
                devis=devis,
                factures=factures,
                totaux=CommanditaireTotaux(
                    budget=budget,
                    total_devis=arrondi(total_devis),
                    total_facture=arrondi(total_facture),
                    total_paye=arrondi(total_paye),
                    reste_a_facturer=arrondi(budget - total_facture),
                    reste_a_payer=arrondi(total_facture - total_paye),
                ),
            )
        )

    return Ok(
        SessionBillingPipeline(
            session_id=session_id,
            commanditaires=pipelines,
            totaux=SessionTotaux(
                budget=sum((p.totaux.budget for p in pipelines), ZERO),
                total_facture=sum((p.totaux.total_facture for p in pipelines), ZERO),
                total_paye=sum((p.totaux.total_paye for p in pipelines), ZERO),
            ),
        )
    )
