from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from formabudget.schemas.common import blank_to_none, to_decimal

"""
Schemas Facturation (Pydantic).

Rôle (fonctionnel) :
- Entrées : commanditaire de session, devis et lignes, facture saisie, changement de statut,
  paiement, acompte. DevisCreate et FactureCreate servent aussi aux mises à jour.
- Sorties : devis, facture (lignes + paiements), pipeline de facturation d’une session.

Notes :
- Le statut de StatutUpdate est une chaîne libre : l’appartenance au vocabulaire est vérifiée
  par le service (erreur par champ "statut").
"""

ModePaiement = Literal["virement", "cheque", "cb", "especes", "prelevement", "autre"]


class LigneIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    designation: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=5000)
    quantite: Decimal = Field(default=Decimal("1"), gt=Decimal("0"))
    prix_unitaire_ht: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))
    taux_tva: Decimal = Field(default=Decimal("0"), ge=Decimal("0"), le=Decimal("100"))
    ordre: Optional[int] = Field(default=None, ge=0)

    @field_validator("quantite", "prix_unitaire_ht", "taux_tva", mode="before")
    @classmethod
    def _to_decimal(cls, v: Any) -> Any:
        return to_decimal(v)


class CommanditaireCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    session_id: UUID
    entreprise_id: Optional[UUID] = None
    budget: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))

    @field_validator("budget", mode="before")
    @classmethod
    def _to_decimal(cls, v: Any) -> Any:
        return to_decimal(v)


class DevisCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    entreprise_id: Optional[UUID] = None
    session_id: Optional[UUID] = None
    commanditaire_id: Optional[UUID] = None
    date_emission: Optional[date] = None
    objet: Optional[str] = Field(default=None, max_length=2000)
    conditions: Optional[str] = Field(default=None, max_length=5000)
    lignes: List[LigneIn] = Field(default_factory=list)

    @field_validator("objet", "conditions", mode="before")
    @classmethod
    def _blank(cls, v: Any) -> Any:
        return blank_to_none(v)


class FactureCreate(BaseModel):
    """Facture standard saisie directement ; sert aussi à la mise à jour (lignes remplacées)."""

    model_config = ConfigDict(extra="forbid")

    entreprise_id: Optional[UUID] = None
    session_id: Optional[UUID] = None
    commanditaire_id: Optional[UUID] = None
    date_emission: Optional[date] = None
    date_echeance: Optional[date] = None
    objet: Optional[str] = Field(default=None, max_length=2000)
    conditions_paiement: Optional[str] = Field(default=None, max_length=5000)
    statut: Literal["brouillon", "envoyee", "payee", "partiellement_payee", "en_retard"] = "brouillon"
    lignes: List[LigneIn] = Field(default_factory=list)

    @field_validator("objet", "conditions_paiement", mode="before")
    @classmethod
    def _blank(cls, v: Any) -> Any:
        return blank_to_none(v)


class StatutUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    statut: str = Field(..., min_length=1, max_length=30)


class PaiementCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    date_paiement: date
    montant: Decimal = Field(..., gt=Decimal("0"))
    mode: Optional[ModePaiement] = None
    reference: Optional[str] = Field(default=None, max_length=120)

    @field_validator("montant", mode="before")
    @classmethod
    def _to_decimal(cls, v: Any) -> Any:
        return to_decimal(v)


class AcompteCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    pourcentage: Decimal = Field(..., gt=Decimal("0"), le=Decimal("100"))

    @field_validator("pourcentage", mode="before")
    @classmethod
    def _to_decimal(cls, v: Any) -> Any:
        return to_decimal(v)


class LigneOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    designation: str
    description: Optional[str] = None
    quantite: Decimal
    prix_unitaire_ht: Decimal
    taux_tva: Decimal
    montant_ht: Decimal
    ordre: int


class PaiementOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    date_paiement: date
    montant: Decimal
    mode: Optional[str] = None
    reference: Optional[str] = None


class DevisOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    numero_affichage: str
    entreprise_id: Optional[UUID] = None
    session_id: Optional[UUID] = None
    commanditaire_id: Optional[UUID] = None
    date_emission: date
    objet: Optional[str] = None
    conditions: Optional[str] = None
    statut: str
    envoye_le: Optional[datetime] = None
    signe_le: Optional[datetime] = None
    total_ht: Decimal
    total_tva: Decimal
    total_ttc: Decimal
    archived_at: Optional[datetime] = None
    lignes: List[LigneOut] = Field(default_factory=list)


class FactureOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    numero_affichage: str
    entreprise_id: Optional[UUID] = None
    devis_id: Optional[UUID] = None
    session_id: Optional[UUID] = None
    commanditaire_id: Optional[UUID] = None
    type_facture: str
    pourcentage_acompte: Optional[Decimal] = None
    date_emission: date
    date_echeance: Optional[date] = None
    objet: Optional[str] = None
    conditions_paiement: Optional[str] = None
    statut: str
    envoye_le: Optional[datetime] = None
    total_ht: Decimal
    total_tva: Decimal
    total_ttc: Decimal
    montant_paye: Decimal
    archived_at: Optional[datetime] = None
    lignes: List[LigneOut] = Field(default_factory=list)
    paiements: List[PaiementOut] = Field(default_factory=list)


class CommanditaireOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    session_id: UUID
    entreprise_id: Optional[UUID] = None
    entreprise_nom: Optional[str] = None
    budget: Decimal
    statut_workflow: str
    convention_statut: str
    convention_signee: bool


class DevisResumeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    numero_affichage: str
    statut: str
    total_ttc: Decimal
    date_emission: date
    objet: Optional[str] = None


class FactureResumeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    numero_affichage: str
    statut: str
    type_facture: str
    total_ttc: Decimal
    montant_paye: Decimal
    date_emission: date
    objet: Optional[str] = None
    pourcentage_acompte: Optional[Decimal] = None


class CommanditaireTotauxOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    budget: Decimal
    total_devis: Decimal
    total_facture: Decimal
    total_paye: Decimal
    reste_a_facturer: Decimal
    reste_a_payer: Decimal


class CommanditairePipelineOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    commanditaire: CommanditaireOut
    devis: List[DevisResumeOut]
    factures: List[FactureResumeOut]
    totaux: CommanditaireTotauxOut


class SessionTotauxOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    budget: Decimal
    total_facture: Decimal
    total_paye: Decimal


class SessionBillingPipelineOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    session_id: UUID
    commanditaires: List[CommanditairePipelineOut]
    totaux: SessionTotauxOut
