from __future__ import annotations

import uuid
from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from formabudget.db.base import Base, JSONType, utcnow

"""
Model BesoinFormation.

Rôle (fonctionnel) :
- Besoin de formation exprimé par un client pour une année cible.
- type_besoin : "plan" (rattaché au plan annuel) ou "ponctuel" (hors plan).
- Valorisation : tarif_id (tarif précis) sinon tarif par défaut de produit_id, sinon 0.
- Porteur du coût : siege_social=True -> siège ; sinon première agence de agences_ids ;
  sinon coût compté dans le total sans être attribué.

Index :
- (organisation_id, entreprise_id, annee_cible, type_besoin) : requête du moteur de coûts.
"""


class BesoinFormation(Base):
    __tablename__ = "besoins_formation"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organisation_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)

    entreprise_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("entreprises.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    plan_formation_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("plans_formation.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    intitule: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    public_cible: Mapped[str | None] = mapped_column(String(255), nullable=True)

    annee_cible: Mapped[int] = mapped_column(Integer, nullable=False)
    type_besoin: Mapped[str] = mapped_column(String(20), nullable=False, default="plan")
    priorite: Mapped[str] = mapped_column(String(20), nullable=False, default="moyenne")
    statut: Mapped[str] = mapped_column(String(20), nullable=False, default="a_etudier")
    date_echeance: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Valorisation
    produit_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("produits_formation.id", ondelete="SET NULL"),
        nullable=True,
    )
    tarif_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("produit_tarifs.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Porteur du coût
    siege_social: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    agences_ids: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)

    # Session planifiée (module sessions hors périmètre : simple référence)
    session_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_besoins_formation_cost_lookup", "organisation_id", "entreprise_id", "annee_cible", "type_besoin"),
    )
