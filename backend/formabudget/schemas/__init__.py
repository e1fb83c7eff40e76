"""
formabudget.schemas

Contrats HTTP (Pydantic v2) : un module par domaine.

- common      : normalisation des montants, pagination
- referentiel : clients, agences, produits et tarifs
- plans       : plans annuels et synthèse
- budget      : répartition, coût engagé, vues consolidées, alertes
- besoins     : besoins de formation
- facturation : devis, factures, paiements, pipeline de session
- historique  : journal d’audit

Les schémas d’entrée servent aussi aux services : un payload brut (dict) est validé
par services.results.parse_payload, les erreurs reviennent par champ.
"""
