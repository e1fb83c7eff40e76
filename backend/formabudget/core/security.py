from __future__ import annotations

import secrets
from typing import Optional

from fastapi import Request

from formabudget.core.errors import AppHTTPException
from formabudget.core.settings import settings

"""
Core Security.

Rôle (fonctionnel) :
- Garde optionnelle par API key (passerelle back-office -> API) :
  - Authorization: Bearer <token>
  - X-API-Key: <token>
- Extraction de l’identifiant utilisateur (header X-User-Id), résolu ensuite en
  contexte tenant par services.tenant_service.

Comportement de la clé :
- Si API_KEY est configurée : la clé est requise.
- Si API_KEY est vide et ENV != prod : bypass (dev / tests).
- Si API_KEY est vide et ENV = prod : erreur 500 (configuration serveur invalide).

Rôles (RBAC back-office) :
- admin   : tout, y compris archivage
- manager : création / modification, gestion financière
- user    : lecture seule
"""

ROLES_GESTION = ("admin", "manager")
ROLES_ARCHIVAGE = ("admin",)


def _extract_token(request: Request) -> Optional[str]:
    """Extrait un token depuis Authorization Bearer ou X-API-Key (si présent)."""
    auth = request.headers.get("authorization")
    if auth:
        parts = auth.split()
        if len(parts) == 2 and parts[0].lower() == "bearer":
            return parts[1].strip()

    x_api_key = request.headers.get("x-api-key")
    if x_api_key:
        return x_api_key.strip()

    return None


async def require_api_key(request: Request) -> None:
    """Dépendance FastAPI : lève AppHTTPException si la clé API est absente ou invalide."""
    expected = getattr(settings, "API_KEY", "") or ""

    if not expected:
        if str(getattr(settings, "ENV", "dev")).lower() == "prod":
            raise AppHTTPException(500, "SERVER_MISCONFIG", "API_KEY manquante côté serveur")
        return

    token = _extract_token(request)
    if not token or not secrets.compare_digest(token, expected):
        raise AppHTTPException(401, "UNAUTHORIZED", "Clé API invalide ou manquante")


def extract_user_id(request: Request) -> Optional[str]:
    """Identifiant utilisateur transmis par le front (X-User-Id), ou None."""
    raw = request.headers.get("x-user-id")
    return raw.strip() if raw and raw.strip() else None


def can_manage(role: str) -> bool:
    """Création / modification (plans, budgets, besoins, finances)."""
    return role in ROLES_GESTION


def can_archive(role: str) -> bool:
    return role in ROLES_ARCHIVAGE
