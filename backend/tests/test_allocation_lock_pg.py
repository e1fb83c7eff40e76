"""
Verrou de ligne du plan sur PostgreSQL (SQLite ignore FOR UPDATE).

Lancé seulement si FORMABUDGET_TEST_DATABASE_URL pointe vers une base PostgreSQL
jetable (postgresql+asyncpg://...) : les tables y sont créées puis supprimées.
"""

import asyncio
import os

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from formabudget.db.base import Base
from formabudget.services.budget_distribution_service import (
    apply_allocation,
    prepare_allocation,
    upsert_allocation,
)
from formabudget.services.results import Ok, RuleViolation

PG_URL = os.getenv("FORMABUDGET_TEST_DATABASE_URL")

pytestmark = pytest.mark.skipif(not PG_URL, reason="FORMABUDGET_TEST_DATABASE_URL non défini")


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(PG_URL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


class TestPlanRowLock:
    """Deux écritures entrelacées sur le même plan."""

    async def test_second_writer_waits_then_is_rejected(self, session_factory, demo, plan):
        async with session_factory() as s1, session_factory() as s2:
            first = await prepare_allocation(s1, demo.manager, plan.id, demo.lyon_id, "6000")
            assert isinstance(first, Ok)

            # s1 tient le verrou : s2 reste bloquée sur le SELECT … FOR UPDATE
            second = asyncio.create_task(
                upsert_allocation(s2, demo.manager, plan.id, demo.nantes_id, "6000")
            )
            await asyncio.sleep(0.3)
            assert not second.done()

            assert isinstance(await apply_allocation(s1, demo.manager, first.value), Ok)
            result = await asyncio.wait_for(second, timeout=5)

        assert isinstance(result, RuleViolation)
        assert "12000.00" in result.message
