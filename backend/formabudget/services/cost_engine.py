from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from formabudget.models.besoin_formation import BesoinFormation
from formabudget.models.produit import ProduitFormation, ProduitTarif

"""
Cost Engine (coût engagé).

Rôle (fonctionnel) :
- Valorise les besoins de formation d’un client pour une année et un type (plan / ponctuel).
- Attribue chaque coût à un porteur (siège, agence) pour la comparaison avec les allocations.

Valorisation (par besoin) :
1) tarif_id renseigné  -> prix_ht de ce tarif (0 si le tarif n’existe plus)
2) sinon produit_id     -> prix_ht du tarif is_default du produit (0 s’il n’y en a pas)
3) sinon                -> 0

Attribution (par besoin) :
1) siege_social=True        -> seau siège (clé None)
2) sinon agences_ids non vide -> première agence de la liste, pour la totalité du coût
3) sinon                    -> compté dans le total, attribué à personne

Notes :
- Lecture pure, déterministe, sans cache : deux appels sur les mêmes lignes donnent le même résultat.
- resolve_unit_prices / attribute_costs sont pures (testables sans base).
"""

ZERO = Decimal("0")

# Un besoin multi-agences est entièrement porté par la première agence listée
ATTRIBUTION_FIRST_AGENCY = "first_agency"


class TypeBesoin(str, Enum):
    PLAN = "plan"
    PONCTUEL = "ponctuel"


def bucket_key(agence_id: Any) -> Optional[str]:
    """Clé de seau : None pour le siège, identifiant d’agence en texte sinon."""
    return None if agence_id is None else str(agence_id)


@dataclass(frozen=True)
class EngagedCost:
    total: Decimal
    count: int
    per_agence: Dict[Optional[str], Decimal] = field(default_factory=dict)
    attribution: str = ATTRIBUTION_FIRST_AGENCY

    @classmethod
    def empty(cls) -> "EngagedCost":
        return cls(total=ZERO, count=0, per_agence={})

    @property
    def siege(self) -> Decimal:
        return self.per_agence.get(None, ZERO)

    @property
    def non_attribue(self) -> Decimal:
        return self.total - sum(self.per_agence.values(), ZERO)

    def for_agence(self, agence_id: Any) -> Decimal:
        return self.per_agence.get(bucket_key(agence_id), ZERO)


def resolve_unit_prices(
    besoins: Sequence[Any],
    tarif_prices: Mapping[str, Decimal],
    default_prices: Mapping[str, Decimal],
) -> List[Decimal]:
    """Prix unitaire HT de chaque besoin, dans l’ordre reçu."""
    prices: List[Decimal] = []
    for besoin in besoins:
        if besoin.tarif_id:
            prices.append(Decimal(tarif_prices.get(str(besoin.tarif_id), ZERO)))
        elif besoin.produit_id:
            prices.append(Decimal(default_prices.get(str(besoin.produit_id), ZERO)))
        else:
            prices.append(ZERO)
    return prices


def cost_carrier(besoin: Any) -> tuple[bool, Optional[str]]:
    """(attribué ?, clé du seau) pour un besoin."""
    if besoin.siege_social:
        return True, None
    agences = besoin.agences_ids or []
    if agences:
        return True, str(agences[0])
    return False, None


def attribute_costs(besoins: Sequence[Any], prices: Sequence[Decimal]) -> EngagedCost:
    total = ZERO
    per_agence: Dict[Optional[str], Decimal] = {}

    for besoin, price in zip(besoins, prices):
        total += price
        attributed, key = cost_carrier(besoin)
        if attributed:
            per_agence[key] = per_agence.get(key, ZERO) + price

    return EngagedCost(total=total, count=len(besoins), per_agence=per_agence)


async def _tarif_prices(
    db: AsyncSession, organisation_id: uuid.UUID, tarif_ids: Iterable[uuid.UUID]
) -> Dict[str, Decimal]:
    ids = list({t for t in tarif_ids if t})
    if not ids:
        return {}
    rows = (
        await db.execute(
            select(ProduitTarif.id, ProduitTarif.prix_ht)
            .join(ProduitFormation, ProduitFormation.id == ProduitTarif.produit_id)
            .where(ProduitTarif.id.in_(ids), ProduitFormation.organisation_id == organisation_id)
        )
    ).all()
    return {str(tid): Decimal(prix) for tid, prix in rows}


async def _default_prices(
    db: AsyncSession, organisation_id: uuid.UUID, produit_ids: Iterable[uuid.UUID]
) -> Dict[str, Decimal]:
    ids = list({p for p in produit_ids if p})
    if not ids:
        return {}
    rows = (
        await db.execute(
            select(ProduitTarif.produit_id, ProduitTarif.prix_ht)
            .join(ProduitFormation, ProduitFormation.id == ProduitTarif.produit_id)
            .where(
                ProduitTarif.produit_id.in_(ids),
                ProduitTarif.is_default.is_(True),
                ProduitFormation.organisation_id == organisation_id,
            )
            .order_by(ProduitTarif.created_at, ProduitTarif.id)
        )
    ).all()
    prices: Dict[str, Decimal] = {}
    for pid, prix in rows:
        # plusieurs tarifs par défaut : le plus ancien gagne
        prices.setdefault(str(pid), Decimal(prix))
    return prices


async def price_besoins(
    db: AsyncSession, organisation_id: uuid.UUID, besoins: Sequence[BesoinFormation]
) -> EngagedCost:
    if not besoins:
        return EngagedCost.empty()

    tarif_prices = await _tarif_prices(db, organisation_id, (b.tarif_id for b in besoins if b.tarif_id))
    default_prices = await _default_prices(
        db, organisation_id, (b.produit_id for b in besoins if not b.tarif_id and b.produit_id)
    )
    prices = resolve_unit_prices(besoins, tarif_prices, default_prices)
    return attribute_costs(besoins, prices)


async def compute_engaged(
    db: AsyncSession,
    organisation_id: uuid.UUID,
    entreprise_id: uuid.UUID,
    annee: int,
    type_besoin: TypeBesoin | str,
) -> EngagedCost:
    kind = TypeBesoin(type_besoin).value
    besoins = (
        await db.execute(
            select(BesoinFormation)
            .where(
                BesoinFormation.organisation_id == organisation_id,
                BesoinFormation.entreprise_id == entreprise_id,
                BesoinFormation.annee_cible == annee,
                BesoinFormation.type_besoin == kind,
                BesoinFormation.archived_at.is_(None),
            )
            .order_by(BesoinFormation.created_at, BesoinFormation.id)
        )
    ).scalars().all()
    return await price_besoins(db, organisation_id, besoins)


async def compute_engaged_for_plan(
    db: AsyncSession, organisation_id: uuid.UUID, plan_id: uuid.UUID
) -> EngagedCost:
    """Coût des besoins rattachés explicitement à un plan (synthèse du plan)."""
    besoins = (
        await db.execute(
            select(BesoinFormation)
            .where(
                BesoinFormation.organisation_id == organisation_id,
                BesoinFormation.plan_formation_id == plan_id,
                BesoinFormation.archived_at.is_(None),
            )
            .order_by(BesoinFormation.created_at, BesoinFormation.id)
        )
    ).scalars().all()
    return await price_besoins(db, organisation_id, besoins)
