from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Index, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from formabudget.db.base import Base, JSONType, utcnow

"""
Model HistoriqueEvent.

Rôle (fonctionnel) :
- Journal d’audit append-only de l’organisation (jamais mis à jour ni supprimé par l’API).
- Permet de retracer :
  - le module et l’action (entreprise/updated, facture/status_changed, entreprise/alert_triggered…),
  - l’entité concernée (type, id, libellé) et le client associé,
  - un message lisible (description) + des métadonnées structurées (ancien/nouveau budget…),
  - l’auteur (user_id, nom, rôle) et l’origine (backoffice / systeme),
  - la traçabilité technique (request_id) pour corréler logs + API.
"""


class HistoriqueEvent(Base):
    __tablename__ = "historique_events"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organisation_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)

    # Auteur (optionnel pour les événements système)
    user_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    user_nom: Mapped[str | None] = mapped_column(String(255), nullable=True)
    user_role: Mapped[str | None] = mapped_column(String(20), nullable=True)
    origine: Mapped[str] = mapped_column(String(20), nullable=False, default="backoffice")

    module: Mapped[str] = mapped_column(String(40), nullable=False)
    action: Mapped[str] = mapped_column(String(40), nullable=False)

    entite_type: Mapped[str] = mapped_column(String(60), nullable=False)
    entite_id: Mapped[str] = mapped_column(String(64), nullable=False)
    entite_label: Mapped[str | None] = mapped_column(String(255), nullable=True)
    entreprise_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True, index=True)

    description: Mapped[str] = mapped_column(Text, nullable=False)
    objet_href: Mapped[str | None] = mapped_column(String(255), nullable=True)
    metadata_: Mapped[dict] = mapped_column("metadata", JSONType, nullable=False, default=dict)

    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_historique_events_org_date", "organisation_id", "created_at"),
        Index("ix_historique_events_entite", "entite_type", "entite_id"),
    )
