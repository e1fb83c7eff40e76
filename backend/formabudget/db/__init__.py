"""
formabudget.db

Package base de données : Base déclarative, types portables et sessions async.

- base    : classe Base commune aux modèles + types JSON/Decimal partagés.
- session : engine async, factory de sessions et dépendance FastAPI get_db().
"""
