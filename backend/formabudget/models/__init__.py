"""
formabudget.models

Package ORM (SQLAlchemy) : définition des entités persistées en base.

Rôle (fonctionnel) :
- Centralise les modèles (référentiel client/catalogue, plans et budgets, besoins, historique, facturation).
- Importer ce package enregistre toutes les tables dans Base.metadata (migrations, tests).
"""

from formabudget.models.utilisateur import Utilisateur
from formabudget.models.entreprise import Entreprise, EntrepriseAgence
from formabudget.models.produit import ProduitFormation, ProduitTarif
from formabudget.models.plan_formation import PlanBudgetAgence, PlanFormation
from formabudget.models.besoin_formation import BesoinFormation
from formabudget.models.historique_event import HistoriqueEvent
from formabudget.models.facturation import (
    CompteurNumero,
    Devis,
    DevisLigne,
    Facture,
    FactureLigne,
    FacturePaiement,
    SessionCommanditaire,
)

__all__ = [
    "Utilisateur",
    "Entreprise",
    "EntrepriseAgence",
    "ProduitFormation",
    "ProduitTarif",
    "PlanFormation",
    "PlanBudgetAgence",
    "BesoinFormation",
    "HistoriqueEvent",
    "SessionCommanditaire",
    "Devis",
    "DevisLigne",
    "Facture",
    "FactureLigne",
    "FacturePaiement",
    "CompteurNumero",
]
