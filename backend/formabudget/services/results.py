from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Generic, List, Mapping, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import SQLAlchemyError

"""
Résultats typés des services.

Rôle (fonctionnel) :
- Aucun service métier ne lève d’exception à travers sa frontière pour un échec attendu :
  il retourne un résultat étiqueté que l’appelant peut brancher par type.
- Étiquettes :
  - Ok(value)                 : succès
  - ValidationFailed(errors)  : saisie invalide, erreurs par champ ({"budget_alloue": ["…"]})
  - NotFound(message)         : entité absente (ou hors organisation)
  - Forbidden(message)        : rôle insuffisant
  - RuleViolation(message)    : règle métier violée (somme des allocations > budget total…)
  - PersistenceFailed(message): message de la base transmis tel quel, sans retry

La couche HTTP traduit ces résultats via core.errors.unwrap().
"""

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class ValidationFailed:
    field_errors: Dict[str, List[str]] = field(default_factory=dict)


@dataclass(frozen=True)
class NotFound:
    message: str = "Ressource introuvable"


@dataclass(frozen=True)
class Forbidden:
    message: str = "Permission refusée"


@dataclass(frozen=True)
class RuleViolation:
    message: str


@dataclass(frozen=True)
class PersistenceFailed:
    message: str


Result = Union[Ok[Any], ValidationFailed, NotFound, Forbidden, RuleViolation, PersistenceFailed]


def is_ok(result: Result) -> bool:
    return isinstance(result, Ok)


def field_errors(exc: ValidationError) -> Dict[str, List[str]]:
    """Aplatit une ValidationError Pydantic en {champ: [messages]} (champ racine : "_form")."""
    errors: Dict[str, List[str]] = {}
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "_form"
        errors.setdefault(loc, []).append(str(err.get("msg", "Valeur invalide")))
    return errors


def parse_payload(schema: Type[M], data: Union[M, Mapping[str, Any]]) -> Union[Ok[M], ValidationFailed]:
    """Valide un payload brut (dict) ou déjà typé contre un schéma Pydantic."""
    if isinstance(data, schema):
        return Ok(data)
    try:
        return Ok(schema.model_validate(data))
    except ValidationError as exc:
        return ValidationFailed(field_errors(exc))


def persistence_failed(exc: SQLAlchemyError) -> PersistenceFailed:
    """Message du driver (exc.orig) si disponible, sinon message SQLAlchemy."""
    orig = getattr(exc, "orig", None)
    return PersistenceFailed(str(orig) if orig is not None else str(exc))
