from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from formabudget.db.base import Base, Money, utcnow

"""
Models PlanFormation / PlanBudgetAgence.

Rôle (fonctionnel) :
- PlanFormation : plan annuel de formation d’un client (une année fiscale) avec
  un budget total et un seuil d’alerte en pourcentage (80 par défaut).
- PlanBudgetAgence : part du budget allouée au siège (agence_id NULL) ou à une agence.

Contraintes :
- Un seul plan actif (archived_at NULL) par (organisation, entreprise, année) : index unique partiel.
- Une seule allocation par (plan, agence) et une seule allocation siège par plan.
- Somme des allocations <= budget_total : vérifiée à l’écriture (services.budget_distribution),
  sous verrou de la ligne du plan.
"""

ARCHIVED_IS_NULL = text("archived_at IS NULL")
AGENCE_IS_NULL = text("agence_id IS NULL")


class PlanFormation(Base):
    __tablename__ = "plans_formation"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organisation_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)

    entreprise_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("entreprises.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    annee: Mapped[int] = mapped_column(Integer, nullable=False)
    nom: Mapped[str | None] = mapped_column(String(255), nullable=True)
    budget_total: Mapped[Decimal] = mapped_column(Money(), nullable=False, default=Decimal("0"))
    seuil_alerte_pct: Mapped[int] = mapped_column(Integer, nullable=False, default=80)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    allocations = relationship("PlanBudgetAgence", back_populates="plan", cascade="all, delete-orphan")

    __table_args__ = (
        Index(
            "uq_plans_formation_actif",
            "organisation_id",
            "entreprise_id",
            "annee",
            unique=True,
            postgresql_where=ARCHIVED_IS_NULL,
            sqlite_where=ARCHIVED_IS_NULL,
        ),
    )

    @property
    def libelle(self) -> str:
        return self.nom or f"Plan {self.annee}"


class PlanBudgetAgence(Base):
    __tablename__ = "plan_budgets_agence"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organisation_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)

    plan_formation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("plans_formation.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # NULL = siège social
    agence_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("entreprise_agences.id", ondelete="CASCADE"),
        nullable=True,
    )

    budget_alloue: Mapped[Decimal] = mapped_column(Money(), nullable=False, default=Decimal("0"))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    plan = relationship("PlanFormation", back_populates="allocations")
    agence = relationship("EntrepriseAgence", lazy="joined")

    __table_args__ = (
        Index("uq_plan_budgets_agence_plan_agence", "plan_formation_id", "agence_id", unique=True),
        Index(
            "uq_plan_budgets_agence_siege",
            "plan_formation_id",
            unique=True,
            postgresql_where=AGENCE_IS_NULL,
            sqlite_where=AGENCE_IS_NULL,
        ),
    )
