"""
formabudget.services

Package “services” : logique applicative (use-cases) indépendante des endpoints HTTP.

Rôle (fonctionnel) :
- Contient les services qui orchestrent :
  - accès DB (via une AsyncSession fournie par l’appelant),
  - moteur de coûts, répartition budgétaire, alertes, facturation,
  - écriture du journal d’audit (historique),
  - règles métier réutilisables (hors couche API).

Principe :
- formabudget.api = transport HTTP (routes, validation, dépendances)
- formabudget.services = orchestration métier ; chaque opération reçoit un TenantContext
  explicite et retourne un résultat typé (services.results)
- formabudget.models / formabudget.schemas = persistance et contrats
"""
