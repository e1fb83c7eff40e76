from __future__ import annotations

import logging
import uuid
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

from sqlalchemy import desc, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from formabudget.core.request_id import get_request_id
from formabudget.models.historique_event import HistoriqueEvent
from formabudget.services.results import Ok, Result, persistence_failed
from formabudget.services.tenant_service import TenantContext

"""
Historique Service (journal d’audit).

Rôle (fonctionnel) :
- log_historique : ajoute un HistoriqueEvent dans la transaction de l’appelant
  (il est écrit au commit de l’action métier, ou pas du tout si elle échoue).
- list_historique : lecture paginée, filtrée par organisation.
- compute_changes : diff ancien/nouveau utilisé par les mises à jour.

Règle :
- Le journal ne doit jamais faire échouer l’action principale : une erreur de construction
  de l’événement est loggée puis ignorée.
"""

log = logging.getLogger("formabudget.historique")

IGNORED_FIELDS = ("updated_at", "created_at")


def log_historique(
    db: AsyncSession,
    ctx: TenantContext,
    *,
    module: str,
    action: str,
    entite_type: str,
    entite_id: Any,
    description: str,
    entite_label: Optional[str] = None,
    entreprise_id: Optional[uuid.UUID] = None,
    objet_href: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    origine: str = "backoffice",
) -> Optional[HistoriqueEvent]:
    try:
        event = HistoriqueEvent(
            organisation_id=ctx.organisation_id,
            user_id=ctx.user_id,
            user_nom=ctx.user_nom,
            user_role=ctx.role,
            origine=origine,
            module=module,
            action=action,
            entite_type=entite_type,
            entite_id=str(entite_id),
            entite_label=entite_label,
            entreprise_id=entreprise_id,
            description=description,
            objet_href=objet_href,
            metadata_=_jsonable(metadata or {}),
            request_id=get_request_id(),
        )
        db.add(event)
        return event
    except Exception:
        log.exception("historique_log_failed: %s", description)
        return None


def fmt_montant(value: Any) -> str:
    """5000.00 -> "5000", 1250.50 -> "1250.5" (montants des descriptions)."""
    text = format(Decimal(value).normalize(), "f")
    return "0" if text == "-0" else text


def _jsonable(value: Any) -> Any:
    """Convertit Decimal / UUID en types JSON natifs (colonne JSON)."""
    if isinstance(value, Mapping):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Decimal):
        return float(value)
    return value


def compute_changes(
    old: Mapping[str, Any],
    new: Mapping[str, Any],
    labels: Optional[Mapping[str, str]] = None,
) -> Dict[str, Any]:
    """
    Compare deux états et retourne {changed_fields, old_values, new_values}.

    Seules les clés de `new` sont examinées ; created_at / updated_at sont ignorés.
    """
    changed_fields: list[str] = []
    old_values: Dict[str, Any] = {}
    new_values: Dict[str, Any] = {}

    for key, new_val in new.items():
        if key in IGNORED_FIELDS:
            continue
        old_val = old.get(key)
        if old_val != new_val:
            changed_fields.append((labels or {}).get(key, key))
            old_values[key] = old_val
            new_values[key] = new_val

    return {"changed_fields": changed_fields, "old_values": old_values, "new_values": new_values}


async def list_historique(
    db: AsyncSession,
    ctx: TenantContext,
    *,
    module: Optional[str] = None,
    action: Optional[str] = None,
    origine: Optional[str] = None,
    entite_id: Optional[str] = None,
    entreprise_id: Optional[uuid.UUID] = None,
    page: int = 1,
    page_size: int = 50,
) -> Result:
    filters = [HistoriqueEvent.organisation_id == ctx.organisation_id]
    if module:
        filters.append(HistoriqueEvent.module == module)
    if action:
        filters.append(HistoriqueEvent.action == action)
    if origine:
        filters.append(HistoriqueEvent.origine == origine)
    if entite_id:
        filters.append(HistoriqueEvent.entite_id == entite_id)
    if entreprise_id:
        filters.append(HistoriqueEvent.entreprise_id == entreprise_id)

    try:
        total = (await db.execute(select(func.count()).select_from(HistoriqueEvent).where(*filters))).scalar_one()
        rows = (
            await db.execute(
                select(HistoriqueEvent)
                .where(*filters)
                .order_by(desc(HistoriqueEvent.created_at))
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
        ).scalars().all()
    except SQLAlchemyError as exc:
        return persistence_failed(exc)

    return Ok({"data": list(rows), "meta": {"page": page, "page_size": page_size, "total": total}})
