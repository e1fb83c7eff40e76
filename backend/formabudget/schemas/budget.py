from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from formabudget.schemas.common import to_decimal
from formabudget.services.budget_alerts_service import AlertType
from formabudget.services.cost_engine import EngagedCost

"""
Schemas Budget (répartition, vues consolidées, alertes).

Rôle (fonctionnel) :
- Entrées : allocation d’un porteur (agence_id null = siège), seuil d’alerte.
- Sorties : répartition d’un plan, coût engagé, vues annuelle / par agence, alertes.

Notes :
- Le contrôle “montant >= 0” et “seuil 1–100” reste au service : l’erreur revient
  sous forme d’erreurs par champ (422 VALIDATION_ERROR) comme toute saisie invalide.
- Dans per_agence, la clé "siege" désigne le siège social.
"""

SIEGE_KEY = "siege"


class AllocationUpsert(BaseModel):
    model_config = ConfigDict(extra="forbid")

    agence_id: Optional[UUID] = None
    budget_alloue: Decimal

    @field_validator("budget_alloue", mode="before")
    @classmethod
    def _amount_to_decimal(cls, v: Any) -> Any:
        return to_decimal(v)


class SeuilUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    seuil_alerte_pct: int = Field(..., strict=True)


class AllocationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    plan_formation_id: UUID
    agence_id: Optional[UUID] = None
    agence_nom: str
    budget_alloue: Decimal


class DistributionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    plan_id: UUID
    entreprise_id: UUID
    annee: int
    budget_total: Decimal
    seuil_alerte_pct: int
    allocations: List[AllocationOut]
    total_alloue: Decimal
    reste_a_repartir: Decimal


class AllocationUpsertedOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    plan_id: UUID
    entreprise_id: UUID
    agence_id: Optional[UUID] = None
    agence_nom: str
    ancien_budget: Decimal
    nouveau_budget: Decimal
    total_alloue: Decimal


class EngagedCostOut(BaseModel):
    type_besoin: str
    total: Decimal
    count: int
    per_agence: Dict[str, Decimal]
    non_attribue: Decimal
    attribution: str

    @classmethod
    def from_cost(cls, cost: EngagedCost, type_besoin: str) -> "EngagedCostOut":
        return cls(
            type_besoin=type_besoin,
            total=cost.total,
            count=cost.count,
            per_agence={(SIEGE_KEY if k is None else k): v for k, v in cost.per_agence.items()},
            non_attribue=cost.non_attribue,
            attribution=cost.attribution,
        )


class ConsolidatedAnnualOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    entreprise_id: UUID
    annee: int
    plan_id: Optional[UUID] = None
    plan_budget_total: Decimal
    plan_budget_engage: Decimal
    plan_budget_restant: Decimal
    plan_nb_formations: int
    ponctuel_budget_total: Decimal
    ponctuel_nb_formations: int
    depense_totale: Decimal
    seuil_alerte_pct: int


class AgenceBudgetRowOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    agence_id: Optional[UUID] = None
    agence_nom: str
    budget_alloue: Decimal
    engage_plan: Decimal
    engage_ponctuel: Decimal
    engage_total: Decimal
    budget_restant: Decimal


class ConsolidatedByAgenceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    entreprise_id: UUID
    annee: int
    rows: List[AgenceBudgetRowOut]
    totals: AgenceBudgetRowOut
    seuil_alerte_pct: int


class BudgetAlertOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    type: AlertType
    entite: str
    agence_id: Optional[UUID] = None
    budget_alloue: Decimal
    budget_engage: Decimal
    pourcentage: int
    seuil: int
