from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from formabudget.schemas.common import PageMeta

"""
Schemas Historique (journal d’audit).

Rôle (fonctionnel) :
- Sortie d’un événement du journal + liste paginée.

Notes :
- La colonne "metadata" est portée par l’attribut ORM metadata_ (nom réservé par SQLAlchemy).
"""


class HistoriqueOut(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: UUID
    user_id: Optional[UUID] = None
    user_nom: Optional[str] = None
    user_role: Optional[str] = None
    origine: str
    module: str
    action: str
    entite_type: str
    entite_id: str
    entite_label: Optional[str] = None
    entreprise_id: Optional[UUID] = None
    description: str
    objet_href: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="metadata_")
    request_id: Optional[str] = None
    created_at: datetime


class HistoriqueListResponse(BaseModel):
    data: List[HistoriqueOut]
    meta: PageMeta
