from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from formabudget.core.security import can_archive, can_manage
from formabudget.models.utilisateur import Utilisateur
from formabudget.services.results import Forbidden, NotFound, Ok, Result

"""
Tenant Service.

Rôle (fonctionnel) :
- Résout l’utilisateur courant en TenantContext (organisation, utilisateur, rôle).
- Le contexte est passé explicitement à chaque service : aucun état global “tenant courant”.
- Porte les contrôles de rôle utilisés par les mutations (require_manage / require_archive).
"""


@dataclass(frozen=True)
class TenantContext:
    """Organisation + utilisateur à l’origine d’une opération."""
    organisation_id: uuid.UUID
    user_id: Optional[uuid.UUID]
    role: str
    user_nom: Optional[str] = None

    @classmethod
    def systeme(cls, organisation_id: uuid.UUID) -> "TenantContext":
        """Contexte des traitements automatiques (seed, tâches planifiées)."""
        return cls(organisation_id=organisation_id, user_id=None, role="admin", user_nom="Système")


async def resolve_tenant(db: AsyncSession, user_id: Optional[str]) -> Result:
    if not user_id:
        return NotFound("Non authentifié")

    try:
        uid = uuid.UUID(str(user_id))
    except ValueError:
        return NotFound("Non authentifié")

    user = (await db.execute(select(Utilisateur).where(Utilisateur.id == uid))).scalars().first()
    if user is None:
        return NotFound("Utilisateur non trouvé")

    return Ok(
        TenantContext(
            organisation_id=user.organisation_id,
            user_id=user.id,
            role=user.role,
            user_nom=user.nom_complet,
        )
    )


def require_manage(ctx: TenantContext, action: str) -> Optional[Forbidden]:
    """None si le rôle autorise la modification, sinon Forbidden avec un message lisible."""
    if can_manage(ctx.role):
        return None
    return Forbidden(f"Permission refusée : vous n'avez pas le droit de {action}")


def require_archive(ctx: TenantContext, action: str) -> Optional[Forbidden]:
    if can_archive(ctx.role):
        return None
    return Forbidden(f"Permission refusée : vous n'avez pas le droit de {action}")
