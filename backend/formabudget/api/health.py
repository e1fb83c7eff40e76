from fastapi import APIRouter

from formabudget.core.settings import settings

"""
API Health.

Rôle (fonctionnel) :
- Sonde de vie (liveness) : ne touche pas la base, voir /system/status pour la readiness.
- Rappelle les paramètres budgétaires actifs (seuil d’alerte par défaut, libellé du siège).
"""

router = APIRouter()


@router.get("/health")
def health():
    return {
        "status": "ok",
        "app": settings.APP_NAME,
        "env": settings.ENV,
        "rate_limit": settings.RATE_LIMIT_ENABLED,
        "default_seuil_alerte_pct": settings.DEFAULT_SEUIL_ALERTE_PCT,
        "siege_label": settings.SIEGE_LABEL,
    }
