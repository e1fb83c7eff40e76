from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from formabudget.core.settings import settings

"""
DB Session.

Rôle (fonctionnel) :
- Initialise l’engine SQLAlchemy en mode async (runtime FastAPI, asyncpg).
- Fournit une factory de sessions AsyncSession (AsyncSessionLocal).
- Expose `get_db()` comme dépendance FastAPI (Depends(get_db)) ; les tests la surchargent
  avec une base SQLite (aiosqlite).

Notes :
- expire_on_commit=False : les objets restent lisibles après commit (sérialisation des réponses).
- Chaque service gère explicitement commit / rollback : une requête = une transaction.
"""

engine = create_async_engine(settings.DATABASE_URL, echo=False, pool_pre_ping=True)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db():
    """Dépendance FastAPI : yield une session DB et garantit sa fermeture."""
    async with AsyncSessionLocal() as session:
        yield session
