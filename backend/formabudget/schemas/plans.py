from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from formabudget.schemas.common import blank_to_none, to_decimal

"""
Schemas Plans de formation (Pydantic).

Rôle (fonctionnel) :
- Contrat de création / mise à jour d’un plan annuel (année 2020–2100, budget >= 0,
  seuil d’alerte 1–100).
- Sorties : plan, synthèse budgétaire du plan.

Notes :
- extra="forbid" sur les entrées ; nom vide -> None (nom par défaut appliqué par le service).
"""


class PlanCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    entreprise_id: UUID
    annee: int = Field(..., ge=2020, le=2100)
    nom: Optional[str] = Field(default=None, max_length=255)
    budget_total: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))
    notes: Optional[str] = Field(default=None, max_length=5000)
    seuil_alerte_pct: Optional[int] = Field(default=None, ge=1, le=100)

    @field_validator("budget_total", mode="before")
    @classmethod
    def _budget_to_decimal(cls, v: Any) -> Any:
        return to_decimal(v)

    @field_validator("nom", "notes", mode="before")
    @classmethod
    def _blank(cls, v: Any) -> Any:
        return blank_to_none(v)


class PlanUpdate(BaseModel):
    """Mise à jour partielle : seuls les champs envoyés sont appliqués."""
    model_config = ConfigDict(extra="forbid")

    nom: Optional[str] = Field(default=None, max_length=255)
    budget_total: Optional[Decimal] = Field(default=None, ge=Decimal("0"))
    notes: Optional[str] = Field(default=None, max_length=5000)
    seuil_alerte_pct: Optional[int] = Field(default=None, ge=1, le=100)

    @field_validator("budget_total", mode="before")
    @classmethod
    def _budget_to_decimal(cls, v: Any) -> Any:
        return to_decimal(v)


class PlanGetOrCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    entreprise_id: UUID
    annee: int = Field(..., ge=2020, le=2100)


class PlanOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    entreprise_id: UUID
    annee: int
    nom: Optional[str] = None
    budget_total: Decimal
    seuil_alerte_pct: int
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    archived_at: Optional[datetime] = None


class PlanSummaryOut(BaseModel):
    """Synthèse d’un plan : budget, engagé (besoins rattachés), reste, compteurs de besoins."""
    model_config = ConfigDict(from_attributes=True)

    plan: PlanOut
    budget_total: Decimal
    budget_engage: Decimal
    budget_restant: Decimal
    nb_besoins: int
    nb_valides: int
    nb_transformes: int
