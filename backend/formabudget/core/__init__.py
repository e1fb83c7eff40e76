"""
formabudget.core

Package “cœur” : ce qui est transversal à tous les domaines (plans, budgets, besoins, facturation).

- settings   : configuration (variables d’environnement, seuil d’alerte par défaut, URLs DB…).
- errors     : format d’erreur API uniforme + traduction des résultats typés des services en HTTP.
- logging    : logs JSON enrichis du request_id.
- request_id : identifiant de corrélation propagé via X-Request-Id.
- security   : garde par API key, extraction de l’utilisateur, règles de rôles.
- rate_limit : limitation de débit in-memory sur les routes de gestion.
- realtime   : WebSocket d’invalidation de cache pour le front.

En résumé :
- formabudget.core = infrastructure + conventions
- formabudget.api / services / models = logique métier + endpoints + persistance
"""
