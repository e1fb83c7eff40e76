from fastapi import APIRouter

from .health import router as health_router

from formabudget.api.status import router as status_router
from formabudget.api.referentiel import router as referentiel_router
from formabudget.api.plans import router as plans_router
from formabudget.api.budget import router as budget_router
from formabudget.api.besoins import router as besoins_router
from formabudget.api.billing import router as billing_router
from formabudget.api.historique import router as historique_router

"""
Router principal de l’API.

Rôle (fonctionnel) :
- Regroupe les routeurs par domaine (health, référentiel, plans, budget, besoins, facturation, historique).
- Sert de point d’entrée unique pour l’inclusion dans l’application FastAPI.
"""

api_router = APIRouter()

api_router.include_router(health_router, tags=["health"])
api_router.include_router(status_router)
api_router.include_router(referentiel_router)
api_router.include_router(plans_router)
api_router.include_router(budget_router)
api_router.include_router(besoins_router)
api_router.include_router(billing_router)
api_router.include_router(historique_router)
