from __future__ import annotations

import logging
from typing import Iterable

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from formabudget.core.errors import AppHTTPException, unwrap
from formabudget.core.security import extract_user_id, require_api_key
from formabudget.db.session import get_db
from formabudget.services.results import NotFound
from formabudget.services.tenant_service import TenantContext, resolve_tenant

"""
Dépendances API.

Rôle (fonctionnel) :
- Centralise les dépendances réutilisables sur les routes.
- get_tenant : clé API (si configurée) + utilisateur X-User-Id -> TenantContext.
  Un utilisateur absent ou inconnu donne 401 UNAUTHORIZED.
- invalidate_cache : diffusion best-effort CACHE_INVALIDATED après une mutation.
"""

log = logging.getLogger("formabudget.api")


async def get_tenant(request: Request, db: AsyncSession = Depends(get_db)) -> TenantContext:
    await require_api_key(request)

    result = await resolve_tenant(db, extract_user_id(request))
    if isinstance(result, NotFound):
        raise AppHTTPException(401, "UNAUTHORIZED", result.message)
    return unwrap(result)


# Dépendance prête à l’emploi pour les routes métier
TenantDep = Depends(get_tenant)


async def invalidate_cache(request: Request, paths: Iterable[str]) -> None:
    """Publie l’invalidation sans faire échouer l’endpoint si le WS n’est pas disponible."""
    manager = getattr(request.app.state, "ws_manager", None)
    if manager is None:
        return
    try:
        await manager.invalidate(paths)
    except Exception:
        log.warning("cache_invalidation_failed", exc_info=True)
