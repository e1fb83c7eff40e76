"""
scripts

Package utilitaire pour les scripts de maintenance / données.

Rôle (fonctionnel) :
- Contient des scripts exécutables (CLI) liés au projet, par exemple :
  - génération d’une organisation de démonstration (seed_demo.py)

Note :
- Les scripts ne contiennent pas de logique métier “centrale” :
  ils orchestrent et appellent les modules de `formabudget/` (models, db, settings).
"""
