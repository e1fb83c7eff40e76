from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel

"""
Schemas communs.

Rôle (fonctionnel) :
- Normalisation des montants (int / float / str -> Decimal) partagée par les payloads.
- Métadonnées de pagination.
"""


def to_decimal(v: Any) -> Any:
    """Normalise un montant vers Decimal (les clients envoient souvent int/float)."""
    if isinstance(v, Decimal) or isinstance(v, bool):
        return v
    if isinstance(v, int):
        return Decimal(v)
    if isinstance(v, float):
        return Decimal(str(v))
    if isinstance(v, str):
        s = v.strip().replace(",", ".")
        if not s:
            return v
        try:
            return Decimal(s)
        except InvalidOperation:
            return v
    return v


def blank_to_none(v: Any) -> Any:
    """"" -> None pour les champs texte optionnels."""
    if isinstance(v, str):
        v = v.strip()
        return v or None
    return v


class PageMeta(BaseModel):
    """Métadonnées de pagination (page, taille, total)."""
    page: int
    page_size: int
    total: int
