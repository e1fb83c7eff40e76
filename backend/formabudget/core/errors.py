from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import HTTPException

from formabudget.services.results import (
    Forbidden,
    NotFound,
    Ok,
    PersistenceFailed,
    Result,
    RuleViolation,
    ValidationFailed,
)

"""
Core Errors.

Rôle (fonctionnel) :
- Standardise le format des erreurs renvoyées par l’API (payload homogène).
- Fournit une exception applicative (AppHTTPException) pour lever des erreurs de façon cohérente.
- Traduit les résultats typés des services (ValidationFailed, NotFound…) en réponses HTTP.

Convention de réponse (exemple) :
{
  "error": {
    "code": "BUSINESS_RULE",
    "message": "La somme des budgets alloués (12000.00 €) dépasse le budget total (10000.00 €)",
    "status": 409,
    "request_id": "...",
    "timestamp": "...",
    "details": {...}
  }
}
"""


def now_iso() -> str:
    """Timestamp ISO-8601 en UTC (utilisé dans toutes les erreurs)."""
    return datetime.now(timezone.utc).isoformat()


def error_payload(
    *,
    code: str,
    message: str,
    status: int,
    request_id: str,
    details: Optional[Any] = None,
) -> Dict[str, Any]:
    """Construit un payload d’erreur homogène pour l’API."""
    payload: Dict[str, Any] = {
        "error": {
            "code": code,
            "message": message,
            "status": status,
            "request_id": request_id,
            "timestamp": now_iso(),
        }
    }
    if details is not None:
        payload["error"]["details"] = details
    return payload


class AppHTTPException(HTTPException):
    """
    Exception applicative standardisée.

    Usage :
    - Lever une erreur “métier” avec un code stable et un message explicite.
    - Laisser la couche API/middlewares produire une réponse cohérente.

    Exemple :
        raise AppHTTPException(404, "NOT_FOUND", "Plan non trouvé")
    """

    def __init__(self, status_code: int, code: str, message: str, details: Any = None):
        super().__init__(status_code=status_code, detail={"code": code, "message": message, "details": details})


def unwrap(result: Result) -> Any:
    """
    Retourne la valeur d’un Ok, sinon lève l’AppHTTPException correspondant au type d’échec.

    Mapping :
    - ValidationFailed  -> 422 VALIDATION_ERROR (details = erreurs par champ)
    - NotFound          -> 404 NOT_FOUND
    - Forbidden         -> 403 FORBIDDEN
    - RuleViolation     -> 409 BUSINESS_RULE
    - PersistenceFailed -> 500 PERSISTENCE_ERROR (message du driver tel quel)
    """
    if isinstance(result, Ok):
        return result.value
    if isinstance(result, ValidationFailed):
        raise AppHTTPException(422, "VALIDATION_ERROR", "Requête invalide", details=result.field_errors)
    if isinstance(result, NotFound):
        raise AppHTTPException(404, "NOT_FOUND", result.message)
    if isinstance(result, Forbidden):
        raise AppHTTPException(403, "FORBIDDEN", result.message)
    if isinstance(result, RuleViolation):
        raise AppHTTPException(409, "BUSINESS_RULE", result.message)
    if isinstance(result, PersistenceFailed):
        raise AppHTTPException(500, "PERSISTENCE_ERROR", result.message)
    raise TypeError(f"Résultat inattendu : {result!r}")
