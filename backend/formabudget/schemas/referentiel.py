from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from formabudget.schemas.common import blank_to_none, to_decimal

"""
Schemas Référentiel (clients, agences, catalogue).

Rôle (fonctionnel) :
- Création d’un client avec ses agences, ajout d’une agence.
- Création d’un produit de formation avec ses tarifs (un tarif par défaut au plus).
"""


class AgenceIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    nom: str = Field(..., min_length=1, max_length=255)
    est_siege: bool = False
    actif: bool = True


class EntrepriseCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    nom: str = Field(..., min_length=1, max_length=255)
    siret: Optional[str] = Field(default=None, max_length=14)
    agences: List[AgenceIn] = Field(default_factory=list)

    @field_validator("siret", mode="before")
    @classmethod
    def _blank(cls, v: Any) -> Any:
        return blank_to_none(v)


class TarifIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    libelle: str = Field(default="Tarif", min_length=1, max_length=120)
    prix_ht: Decimal = Field(..., ge=Decimal("0"))
    is_default: bool = False

    @field_validator("prix_ht", mode="before")
    @classmethod
    def _to_decimal(cls, v: Any) -> Any:
        return to_decimal(v)


class ProduitCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    intitule: str = Field(..., min_length=1, max_length=255)
    code: Optional[str] = Field(default=None, max_length=50)
    tarifs: List[TarifIn] = Field(default_factory=list)

    @field_validator("tarifs")
    @classmethod
    def _un_seul_defaut(cls, v: List[TarifIn]) -> List[TarifIn]:
        if sum(1 for t in v if t.is_default) > 1:
            raise ValueError("Un seul tarif par défaut est autorisé")
        return v


class AgenceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    entreprise_id: UUID
    nom: str
    est_siege: bool
    actif: bool


class EntrepriseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    nom: str
    siret: Optional[str] = None
    created_at: datetime
    agences: List[AgenceOut] = Field(default_factory=list)


class TarifOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    libelle: str
    prix_ht: Decimal
    is_default: bool


class ProduitOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    intitule: str
    code: Optional[str] = None
    tarifs: List[TarifOut] = Field(default_factory=list)
