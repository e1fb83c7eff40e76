from __future__ import annotations

from datetime import date, datetime
from typing import Any, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from formabudget.schemas.common import blank_to_none

"""
Schemas Besoins de formation (Pydantic).

Rôle (fonctionnel) :
- Création d’un besoin : client, intitulé, année cible, type (plan / ponctuel), valorisation
  (produit, tarif) et porteur du coût (siège ou agences).
- Mise à jour partielle (statut inclus), rattachement à une session.
"""

Priorite = Literal["faible", "moyenne", "haute"]
StatutBesoin = Literal["a_etudier", "valide", "planifie", "transforme", "realise"]
TypeBesoinLiteral = Literal["plan", "ponctuel"]


class BesoinCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    entreprise_id: UUID
    intitule: str = Field(..., max_length=255)
    description: Optional[str] = Field(default=None, max_length=5000)
    public_cible: Optional[str] = Field(default=None, max_length=255)
    priorite: Priorite = "moyenne"
    annee_cible: int = Field(..., ge=2020, le=2100)
    type_besoin: TypeBesoinLiteral = "plan"
    plan_formation_id: Optional[UUID] = None
    date_echeance: Optional[date] = None

    produit_id: Optional[UUID] = None
    tarif_id: Optional[UUID] = None
    siege_social: bool = False
    agences_ids: List[UUID] = Field(default_factory=list)

    notes: Optional[str] = Field(default=None, max_length=5000)

    @field_validator("intitule", mode="before")
    @classmethod
    def _intitule_required(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip()
        if not v:
            raise ValueError("L'intitulé est requis")
        return v

    @field_validator("description", "public_cible", "notes", mode="before")
    @classmethod
    def _blank(cls, v: Any) -> Any:
        return blank_to_none(v)


class BesoinUpdate(BaseModel):
    """Mise à jour partielle : seuls les champs envoyés sont appliqués."""
    model_config = ConfigDict(extra="forbid")

    intitule: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = Field(default=None, max_length=5000)
    public_cible: Optional[str] = Field(default=None, max_length=255)
    priorite: Optional[Priorite] = None
    annee_cible: Optional[int] = Field(default=None, ge=2020, le=2100)
    type_besoin: Optional[TypeBesoinLiteral] = None
    plan_formation_id: Optional[UUID] = None
    date_echeance: Optional[date] = None
    statut: Optional[StatutBesoin] = None
    session_id: Optional[UUID] = None

    produit_id: Optional[UUID] = None
    tarif_id: Optional[UUID] = None
    siege_social: Optional[bool] = None
    agences_ids: Optional[List[UUID]] = None

    notes: Optional[str] = Field(default=None, max_length=5000)

    @field_validator("intitule")
    @classmethod
    def _intitule_not_blank(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            raise ValueError("L'intitulé est requis")
        return v.strip() if v else v


class BesoinLinkSession(BaseModel):
    model_config = ConfigDict(extra="forbid")

    session_id: UUID


class BesoinOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    entreprise_id: UUID
    plan_formation_id: Optional[UUID] = None
    intitule: str
    description: Optional[str] = None
    public_cible: Optional[str] = None
    annee_cible: int
    type_besoin: str
    priorite: str
    statut: str
    date_echeance: Optional[date] = None
    produit_id: Optional[UUID] = None
    tarif_id: Optional[UUID] = None
    siege_social: bool
    agences_ids: List[str] = Field(default_factory=list)
    session_id: Optional[UUID] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime
