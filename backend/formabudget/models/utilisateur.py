from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from formabudget.db.base import Base, utcnow

"""
Model Utilisateur.

Rôle (fonctionnel) :
- Utilisateur du back-office, rattaché à une organisation (organisme de formation).
- Sert à résoudre le contexte tenant d’une requête (organisation_id + rôle).

Rôles : admin / manager / user (voir core/security.py).
"""


class Utilisateur(Base):
    __tablename__ = "utilisateurs"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # Tenant : toutes les données métier sont filtrées sur cet identifiant
    organisation_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)

    role: Mapped[str] = mapped_column(String(20), nullable=False, default="user")
    prenom: Mapped[str | None] = mapped_column(String(120), nullable=True)
    nom: Mapped[str | None] = mapped_column(String(120), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    @property
    def nom_complet(self) -> str:
        return " ".join(p for p in (self.prenom, self.nom) if p) or "Utilisateur"
