from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from formabudget.db.base import Base, Money, utcnow

"""
Models Facturation (devis -> convention -> facture -> paiement).

Rôle (fonctionnel) :
- SessionCommanditaire : payeur d’une session (client + budget + statut de convention).
- Devis / DevisLigne : proposition commerciale et ses lignes.
- Facture / FactureLigne / FacturePaiement : facture (standard, acompte, solde), lignes, encaissements.
- CompteurNumero : compteur par (organisation, préfixe, année) pour numeroter D-2026-0001, F-2026-0001.

Statuts :
- devis   : brouillon, envoye, signe, refuse, expire, transforme
- facture : brouillon, envoyee, payee, partiellement_payee, en_retard

Les transitions sont pilotées par des actions explicites (services.facturation_service) ;
aucune table de prédécesseurs n’est imposée à ce niveau.
"""


class SessionCommanditaire(Base):
    __tablename__ = "session_commanditaires"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organisation_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)

    # Module sessions hors périmètre : simple référence
    session_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    entreprise_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("entreprises.id", ondelete="SET NULL"),
        nullable=True,
    )

    budget: Mapped[Decimal] = mapped_column(Money(), nullable=False, default=Decimal("0"))
    statut_workflow: Mapped[str] = mapped_column(String(30), nullable=False, default="analyse")
    convention_statut: Mapped[str] = mapped_column(String(30), nullable=False, default="aucune")
    convention_signee: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    entreprise = relationship("Entreprise", lazy="joined")

    @property
    def entreprise_nom(self) -> str | None:
        return self.entreprise.nom if self.entreprise is not None else None


class Devis(Base):
    __tablename__ = "devis"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organisation_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    numero_affichage: Mapped[str] = mapped_column(String(30), nullable=False)

    entreprise_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("entreprises.id", ondelete="SET NULL"),
        nullable=True,
    )
    session_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True, index=True)
    commanditaire_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("session_commanditaires.id", ondelete="SET NULL"),
        nullable=True,
    )

    date_emission: Mapped[date] = mapped_column(Date, nullable=False)
    objet: Mapped[str | None] = mapped_column(Text, nullable=True)
    conditions: Mapped[str | None] = mapped_column(Text, nullable=True)

    statut: Mapped[str] = mapped_column(String(20), nullable=False, default="brouillon", index=True)
    envoye_le: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    signe_le: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    total_ht: Mapped[Decimal] = mapped_column(Money(), nullable=False, default=Decimal("0"))
    total_tva: Mapped[Decimal] = mapped_column(Money(), nullable=False, default=Decimal("0"))
    total_ttc: Mapped[Decimal] = mapped_column(Money(), nullable=False, default=Decimal("0"))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    lignes = relationship(
        "DevisLigne",
        back_populates="devis",
        cascade="all, delete-orphan",
        order_by="DevisLigne.ordre",
        lazy="selectin",
    )


class DevisLigne(Base):
    __tablename__ = "devis_lignes"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    devis_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("devis.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    designation: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    quantite: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("1"))
    prix_unitaire_ht: Mapped[Decimal] = mapped_column(Money(), nullable=False, default=Decimal("0"))
    taux_tva: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=Decimal("0"))
    montant_ht: Mapped[Decimal] = mapped_column(Money(), nullable=False, default=Decimal("0"))
    ordre: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    devis = relationship("Devis", back_populates="lignes")


class Facture(Base):
    __tablename__ = "factures"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organisation_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    numero_affichage: Mapped[str] = mapped_column(String(30), nullable=False)

    entreprise_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("entreprises.id", ondelete="SET NULL"),
        nullable=True,
    )
    devis_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("devis.id", ondelete="SET NULL"),
        nullable=True,
    )
    session_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True, index=True)
    commanditaire_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("session_commanditaires.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # standard / acompte / solde
    type_facture: Mapped[str] = mapped_column(String(20), nullable=False, default="standard")
    pourcentage_acompte: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)

    date_emission: Mapped[date] = mapped_column(Date, nullable=False)
    date_echeance: Mapped[date | None] = mapped_column(Date, nullable=True)
    objet: Mapped[str | None] = mapped_column(Text, nullable=True)
    conditions_paiement: Mapped[str | None] = mapped_column(Text, nullable=True)

    statut: Mapped[str] = mapped_column(String(30), nullable=False, default="brouillon", index=True)
    envoye_le: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    total_ht: Mapped[Decimal] = mapped_column(Money(), nullable=False, default=Decimal("0"))
    total_tva: Mapped[Decimal] = mapped_column(Money(), nullable=False, default=Decimal("0"))
    total_ttc: Mapped[Decimal] = mapped_column(Money(), nullable=False, default=Decimal("0"))
    montant_paye: Mapped[Decimal] = mapped_column(Money(), nullable=False, default=Decimal("0"))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    lignes = relationship(
        "FactureLigne",
        back_populates="facture",
        cascade="all, delete-orphan",
        order_by="FactureLigne.ordre",
        lazy="selectin",
    )
    paiements = relationship(
        "FacturePaiement",
        back_populates="facture",
        cascade="all, delete-orphan",
        order_by="FacturePaiement.date_paiement",
        lazy="selectin",
    )

    __table_args__ = (Index("ix_factures_org_date", "organisation_id", "date_emission"),)


class FactureLigne(Base):
    __tablename__ = "facture_lignes"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    facture_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("factures.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    designation: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    quantite: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("1"))
    prix_unitaire_ht: Mapped[Decimal] = mapped_column(Money(), nullable=False, default=Decimal("0"))
    taux_tva: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=Decimal("0"))
    montant_ht: Mapped[Decimal] = mapped_column(Money(), nullable=False, default=Decimal("0"))
    ordre: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    facture = relationship("Facture", back_populates="lignes")


class FacturePaiement(Base):
    __tablename__ = "facture_paiements"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    facture_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("factures.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    date_paiement: Mapped[date] = mapped_column(Date, nullable=False)
    montant: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    mode: Mapped[str | None] = mapped_column(String(20), nullable=True)
    reference: Mapped[str | None] = mapped_column(String(120), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    facture = relationship("Facture", back_populates="paiements")


class CompteurNumero(Base):
    __tablename__ = "compteurs_numeros"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organisation_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    prefixe: Mapped[str] = mapped_column(String(5), nullable=False)
    annee: Mapped[int] = mapped_column(Integer, nullable=False)
    dernier_numero: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (UniqueConstraint("organisation_id", "prefixe", "annee", name="uq_compteurs_numeros_cle"),)
