from datetime import datetime, timezone

from sqlalchemy import JSON, MetaData, Numeric
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase

"""
DB Base.

Rôle (fonctionnel) :
- Définit la classe Base SQLAlchemy commune à tous les modèles ORM.
- Fixe une convention de nommage des contraintes (migrations Alembic reproductibles).
- Expose les types partagés :
  - JSONType : JSONB sur PostgreSQL, JSON générique ailleurs (SQLite en tests).
  - Money    : Numeric(12, 2) pour tous les montants en euros.
"""

NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

JSONType = JSON().with_variant(JSONB(), "postgresql")


def Money() -> Numeric:
    return Numeric(12, 2)


class Base(DeclarativeBase):
    """Classe racine ORM (SQLAlchemy Declarative)."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)


def utcnow() -> datetime:
    """Horodatage UTC “aware” (défaut des colonnes created_at / updated_at)."""
    return datetime.now(timezone.utc)
