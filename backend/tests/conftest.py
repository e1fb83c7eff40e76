"""
Fixtures communes : base SQLite (aiosqlite) créée depuis les modèles ORM,
organisation de test (utilisateurs, client + agences, catalogue) et client HTTP.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import formabudget.models  # noqa: F401
from formabudget.db.base import Base
from formabudget.db.session import get_db
from formabudget.models import (
    BesoinFormation,
    Entreprise,
    EntrepriseAgence,
    PlanFormation,
    ProduitFormation,
    ProduitTarif,
    Utilisateur,
)
from formabudget.services.tenant_service import TenantContext


@dataclass
class Demo:
    """Organisation de test et ses identifiants."""
    organisation_id: uuid.UUID
    admin: TenantContext
    manager: TenantContext
    lecteur: TenantContext
    entreprise_id: uuid.UUID
    lyon_id: uuid.UUID
    nantes_id: uuid.UUID
    produit_id: uuid.UUID
    tarif_inter_id: uuid.UUID
    tarif_intra_id: uuid.UUID


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'formabudget.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


def _ctx(user: Utilisateur) -> TenantContext:
    return TenantContext(
        organisation_id=user.organisation_id,
        user_id=user.id,
        role=user.role,
        user_nom=user.nom_complet,
    )


@pytest_asyncio.fixture
async def demo(session_factory) -> Demo:
    org = uuid.uuid4()
    async with session_factory() as s:
        admin = Utilisateur(organisation_id=org, role="admin", prenom="Alice", nom="Martin")
        manager = Utilisateur(organisation_id=org, role="manager", prenom="Marc", nom="Petit")
        lecteur = Utilisateur(organisation_id=org, role="user", prenom="Ursula", nom="Blanc")

        entreprise = Entreprise(organisation_id=org, nom="Transports Lemoine")
        lyon = EntrepriseAgence(nom="Lyon")
        nantes = EntrepriseAgence(nom="Nantes")
        entreprise.agences = [lyon, nantes]

        produit = ProduitFormation(organisation_id=org, intitule="Sauveteur Secouriste du Travail")
        inter = ProduitTarif(libelle="Inter", prix_ht=Decimal("1000.00"), is_default=True)
        intra = ProduitTarif(libelle="Intra", prix_ht=Decimal("2500.00"), is_default=False)
        produit.tarifs = [inter, intra]

        s.add_all([admin, manager, lecteur, entreprise, produit])
        await s.commit()

        return Demo(
            organisation_id=org,
            admin=_ctx(admin),
            manager=_ctx(manager),
            lecteur=_ctx(lecteur),
            entreprise_id=entreprise.id,
            lyon_id=lyon.id,
            nantes_id=nantes.id,
            produit_id=produit.id,
            tarif_inter_id=inter.id,
            tarif_intra_id=intra.id,
        )


@pytest_asyncio.fixture
async def plan(session_factory, demo) -> PlanFormation:
    """Plan 2026 du client de démo : budget 10 000 €, seuil 80 %."""
    async with session_factory() as s:
        p = PlanFormation(
            organisation_id=demo.organisation_id,
            entreprise_id=demo.entreprise_id,
            annee=2026,
            nom="Plan de formation 2026",
            budget_total=Decimal("10000.00"),
            seuil_alerte_pct=80,
        )
        s.add(p)
        await s.commit()
        return p


@pytest.fixture
def add_besoin(session_factory, demo):
    """Fabrique de besoins valorisés (tarif explicite, produit, siège ou agences)."""

    async def _add(
        *,
        type_besoin: str = "plan",
        annee: int = 2026,
        plan_id: Optional[uuid.UUID] = None,
        produit_id: Optional[uuid.UUID] = None,
        tarif_id: Optional[uuid.UUID] = None,
        siege: bool = False,
        agences: Optional[List[uuid.UUID]] = None,
        statut: str = "a_etudier",
    ) -> BesoinFormation:
        async with session_factory() as s:
            besoin = BesoinFormation(
                organisation_id=demo.organisation_id,
                entreprise_id=demo.entreprise_id,
                plan_formation_id=plan_id,
                intitule="Recyclage SST",
                annee_cible=annee,
                type_besoin=type_besoin,
                statut=statut,
                produit_id=produit_id,
                tarif_id=tarif_id,
                siege_social=siege,
                agences_ids=[str(a) for a in (agences or [])],
            )
            s.add(besoin)
            await s.commit()
            return besoin

    return _add


@pytest_asyncio.fixture
async def client(session_factory):
    from formabudget.main import app

    async def _override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
