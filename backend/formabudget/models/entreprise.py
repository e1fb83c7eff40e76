from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from formabudget.db.base import Base, utcnow

"""
Models Entreprise / EntrepriseAgence.

Rôle (fonctionnel) :
- Entreprise : client de l’organisme de formation (porteur des plans de formation).
- EntrepriseAgence : agence d’un client. Une agence peut être marquée est_siege ;
  le siège reste cependant représenté côté budget par une clé agence NULL.

Relations :
- Entreprise 1..N EntrepriseAgence (cascade delete).
"""


class Entreprise(Base):
    __tablename__ = "entreprises"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organisation_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)

    nom: Mapped[str] = mapped_column(String(255), nullable=False)
    siret: Mapped[str | None] = mapped_column(String(14), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    agences = relationship(
        "EntrepriseAgence",
        back_populates="entreprise",
        cascade="all, delete-orphan",
        order_by="EntrepriseAgence.nom",
        lazy="selectin",
    )


class EntrepriseAgence(Base):
    __tablename__ = "entreprise_agences"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    entreprise_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("entreprises.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    nom: Mapped[str] = mapped_column(String(255), nullable=False)
    est_siege: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    actif: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    entreprise = relationship("Entreprise", back_populates="agences")
