"""
formabudget

Package racine du backend FormaBudget (budgets de formation et facturation).

Rôle (fonctionnel) :
- Contient tout le code applicatif (API, logique métier, accès DB, schémas).
- Sert de point d’ancrage pour les imports : `from formabudget...`

Organisation :
- formabudget.api      : routes FastAPI (contrats HTTP, dépendances, sérialisation)
- formabudget.core     : briques transverses (settings, errors, logs, sécurité, realtime, rate-limit…)
- formabudget.db       : base SQLAlchemy + session async
- formabudget.models   : modèles ORM (tables Postgres)
- formabudget.schemas  : schémas Pydantic (entrées/sorties API)
- formabudget.services : opérations métier (moteur de coûts, répartition, alertes, facturation…)
"""
