"""
Répartition du budget d'un plan entre siège et agences.

- Invariant : somme des allocations <= budget total (égalité acceptée)
- Journal d'audit à chaque changement de montant
- Course "lire puis écrire" : reproduite sans verrou, évitée avec verrou
"""

import uuid
from decimal import Decimal

from sqlalchemy import event, func, select
from sqlalchemy.dialects import postgresql

from formabudget.models import HistoriqueEvent, PlanBudgetAgence
from formabudget.services.budget_distribution_service import (
    apply_allocation,
    get_distribution,
    prepare_allocation,
    update_seuil_alerte,
    upsert_allocation,
)
from formabudget.services.results import Forbidden, NotFound, Ok, RuleViolation, ValidationFailed


class TestUpsertAllocation:
    """Création / mise à jour d'une allocation."""

    async def test_sum_equal_to_total_is_accepted(self, db, demo, plan):
        r1 = await upsert_allocation(db, demo.manager, plan.id, None, "4000")
        r2 = await upsert_allocation(db, demo.manager, plan.id, demo.lyon_id, "6000")

        assert isinstance(r1, Ok) and isinstance(r2, Ok)
        assert r2.value.total_alloue == Decimal("10000")

    async def test_sum_above_total_is_rejected(self, db, demo, plan):
        await upsert_allocation(db, demo.manager, plan.id, None, "4000")
        result = await upsert_allocation(db, demo.manager, plan.id, demo.lyon_id, "6000.01")

        assert isinstance(result, RuleViolation)
        assert "10000.01" in result.message
        assert "10000.00" in result.message

    async def test_update_replaces_previous_amount(self, db, demo, plan):
        await upsert_allocation(db, demo.manager, plan.id, demo.lyon_id, "8000")
        result = await upsert_allocation(db, demo.manager, plan.id, demo.lyon_id, "9000")

        assert isinstance(result, Ok)
        assert result.value.ancien_budget == Decimal("8000")
        assert result.value.total_alloue == Decimal("9000")
        count = (await db.execute(select(func.count()).select_from(PlanBudgetAgence))).scalar_one()
        assert count == 1

    async def test_negative_amount(self, db, demo, plan):
        result = await upsert_allocation(db, demo.manager, plan.id, None, "-1")
        assert isinstance(result, ValidationFailed)
        assert "budget_alloue" in result.field_errors

    async def test_not_a_number(self, db, demo, plan):
        result = await upsert_allocation(db, demo.manager, plan.id, None, "abc")
        assert isinstance(result, ValidationFailed)

    async def test_unknown_plan(self, db, demo):
        result = await upsert_allocation(db, demo.manager, uuid.uuid4(), None, "10")
        assert isinstance(result, NotFound)

    async def test_agence_of_another_client(self, db, demo, plan):
        result = await upsert_allocation(db, demo.manager, plan.id, uuid.uuid4(), "10")
        assert isinstance(result, NotFound)
        assert result.message == "Agence non trouvée"

    async def test_reader_cannot_allocate(self, db, demo, plan):
        result = await upsert_allocation(db, demo.lecteur, plan.id, None, "10")
        assert isinstance(result, Forbidden)

    async def test_audit_entry(self, db, demo, plan):
        await upsert_allocation(db, demo.manager, plan.id, None, "5000")

        entry = (await db.execute(select(HistoriqueEvent))).scalars().one()
        assert entry.module == "entreprise"
        assert entry.action == "updated"
        assert entry.description == "Budget Siège social : 0 → 5000 € (Plan de formation 2026)"
        assert entry.user_nom == "Marc Petit"

    async def test_same_amount_writes_no_audit(self, db, demo, plan):
        await upsert_allocation(db, demo.manager, plan.id, None, "5000")
        await upsert_allocation(db, demo.manager, plan.id, None, "5000")

        count = (await db.execute(select(func.count()).select_from(HistoriqueEvent))).scalar_one()
        assert count == 1


class TestDistribution:
    """Lecture de la répartition."""

    async def test_siege_first_and_remaining(self, db, demo, plan):
        await upsert_allocation(db, demo.manager, plan.id, demo.lyon_id, "3000")
        await upsert_allocation(db, demo.manager, plan.id, None, "2000")

        result = await get_distribution(db, demo.lecteur, plan.id)

        assert isinstance(result, Ok)
        dist = result.value
        assert dist.allocations[0].agence_id is None
        assert dist.allocations[0].agence_nom == "Siège social"
        assert dist.allocations[1].agence_nom == "Lyon"
        assert dist.total_alloue == Decimal("5000")
        assert dist.reste_a_repartir == Decimal("5000")


class TestSeuilAlerte:
    """Seuil d'alerte du plan (1 à 100)."""

    async def test_update(self, db, demo, plan):
        result = await update_seuil_alerte(db, demo.manager, plan.id, 90)
        assert isinstance(result, Ok)
        assert result.value.seuil_alerte_pct == 90

    async def test_out_of_range(self, db, demo, plan):
        for value in (0, 101):
            result = await update_seuil_alerte(db, demo.manager, plan.id, value)
            assert isinstance(result, ValidationFailed)
            assert "seuil_alerte_pct" in result.field_errors

    async def test_non_integral_rejected(self, db, demo, plan):
        for value in (80.9, "80.5", True, "abc", None):
            result = await update_seuil_alerte(db, demo.manager, plan.id, value)
            assert isinstance(result, ValidationFailed), value
            assert result.field_errors["seuil_alerte_pct"] == ["Le seuil doit être un entier"]

    async def test_integral_values_accepted(self, db, demo, plan):
        result = await update_seuil_alerte(db, demo.manager, plan.id, "75")
        assert isinstance(result, Ok)
        assert result.value.seuil_alerte_pct == 75

        result = await update_seuil_alerte(db, demo.manager, plan.id, Decimal("70.0"))
        assert result.value.seuil_alerte_pct == 70


class TestConcurrentAllocations:
    """Deux écritures sur le même plan depuis deux sessions."""

    async def test_unlocked_read_then_write_can_exceed_total(self, session_factory, demo, plan):
        """Sans verrou, les deux contrôles lisent une somme nulle : l'invariant casse."""
        async with session_factory() as s1, session_factory() as s2:
            a = await prepare_allocation(s1, demo.manager, plan.id, demo.lyon_id, "6000", lock=False)
            b = await prepare_allocation(s2, demo.manager, plan.id, demo.nantes_id, "6000", lock=False)
            assert isinstance(a, Ok) and isinstance(b, Ok)

            assert isinstance(await apply_allocation(s1, demo.manager, a.value), Ok)
            assert isinstance(await apply_allocation(s2, demo.manager, b.value), Ok)

        async with session_factory() as s:
            total = sum((await s.execute(select(PlanBudgetAgence.budget_alloue))).scalars())
        assert total == Decimal("12000")

    async def test_sequential_writes_respect_total(self, session_factory, demo, plan):
        """Une écriture commitée est vue par la suivante, qui est refusée."""
        async with session_factory() as s1:
            first = await upsert_allocation(s1, demo.manager, plan.id, demo.lyon_id, "6000")
        async with session_factory() as s2:
            second = await upsert_allocation(s2, demo.manager, plan.id, demo.nantes_id, "6000")

        assert isinstance(first, Ok)
        assert isinstance(second, RuleViolation)

    async def test_prepare_locks_plan_row(self, db, demo, plan):
        """Le plan est relu en SELECT … FOR UPDATE (SQLite l'ignore, PostgreSQL le pose)."""
        emitted = []

        @event.listens_for(db.sync_session, "do_orm_execute")
        def _capture(state):
            emitted.append(str(state.statement.compile(dialect=postgresql.dialect())))

        await prepare_allocation(db, demo.manager, plan.id, demo.lyon_id, "1000")
        await prepare_allocation(db, demo.manager, plan.id, demo.lyon_id, "1000", lock=False)
        event.remove(db.sync_session, "do_orm_execute", _capture)

        plan_reads = [sql for sql in emitted if "FROM plans_formation" in sql]
        assert len(plan_reads) == 2
        assert "FOR UPDATE" in plan_reads[0]
        assert "FOR UPDATE" not in plan_reads[1]
