from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from formabudget.db.base import Base, Money, utcnow

"""
Models ProduitFormation / ProduitTarif.

Rôle (fonctionnel) :
- ProduitFormation : produit du catalogue (une formation vendable).
- ProduitTarif : un prix HT d’un produit (inter, intra, e-learning…). Un tarif par produit
  est marqué is_default : c’est lui qui valorise un besoin qui ne cite aucun tarif précis.

Index :
- (produit_id, is_default) pour la résolution du tarif par défaut du moteur de coûts.
"""


class ProduitFormation(Base):
    __tablename__ = "produits_formation"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organisation_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)

    intitule: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[str | None] = mapped_column(String(50), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    tarifs = relationship(
        "ProduitTarif",
        back_populates="produit",
        cascade="all, delete-orphan",
        order_by="ProduitTarif.created_at",
        lazy="selectin",
    )


class ProduitTarif(Base):
    __tablename__ = "produit_tarifs"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    produit_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("produits_formation.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    libelle: Mapped[str] = mapped_column(String(120), nullable=False, default="Tarif")
    prix_ht: Mapped[Decimal] = mapped_column(Money(), nullable=False, default=Decimal("0"))
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    produit = relationship("ProduitFormation", back_populates="tarifs")

    __table_args__ = (Index("ix_produit_tarifs_produit_default", "produit_id", "is_default"),)
