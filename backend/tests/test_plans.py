"""
Plans de formation annuels et vues consolidées.

- Un seul plan actif par client et par année
- Budget total jamais inférieur à la somme répartie
- Archivage : besoins détachés (deviennent ponctuels)
"""

import uuid
from decimal import Decimal

from formabudget.services.besoin_service import get_besoin
from formabudget.services.budget_distribution_service import upsert_allocation
from formabudget.services.consolidation_service import consolidated_annual_budget, consolidated_by_agence
from formabudget.services.plan_service import (
    archive_plan,
    create_plan,
    get_or_create_plan,
    list_plans,
    plan_budget_summary,
    update_plan,
)
from formabudget.services.results import Forbidden, NotFound, Ok, RuleViolation, ValidationFailed


class TestCreatePlan:
    """Création d'un plan."""

    async def test_create_with_default_name(self, db, demo):
        result = await create_plan(
            db, demo.manager, {"entreprise_id": str(demo.entreprise_id), "annee": 2027, "budget_total": "15000"}
        )
        assert isinstance(result, Ok)
        assert result.value.nom == "Plan de formation 2027"
        assert result.value.seuil_alerte_pct == 80

    async def test_duplicate_year(self, db, demo, plan):
        result = await create_plan(db, demo.manager, {"entreprise_id": demo.entreprise_id, "annee": 2026})
        assert isinstance(result, RuleViolation)
        assert result.message == "Un plan de formation existe déjà pour l'année 2026"

    async def test_year_out_of_range(self, db, demo):
        result = await create_plan(db, demo.manager, {"entreprise_id": demo.entreprise_id, "annee": 1999})
        assert isinstance(result, ValidationFailed)
        assert "annee" in result.field_errors

    async def test_unknown_entreprise(self, db, demo):
        result = await create_plan(db, demo.manager, {"entreprise_id": uuid.uuid4(), "annee": 2026})
        assert isinstance(result, NotFound)

    async def test_reader_forbidden(self, db, demo):
        result = await create_plan(db, demo.lecteur, {"entreprise_id": demo.entreprise_id, "annee": 2026})
        assert isinstance(result, Forbidden)
        assert result.message.startswith("Permission refusée")

    async def test_get_or_create_is_idempotent(self, db, demo):
        first = await get_or_create_plan(db, demo.manager, demo.entreprise_id, 2028)
        second = await get_or_create_plan(db, demo.manager, demo.entreprise_id, 2028)
        assert first.value.id == second.value.id
        assert first.value.budget_total == Decimal("0")


class TestUpdatePlan:
    """Mise à jour du budget total."""

    async def test_budget_below_allocated_is_rejected(self, db, demo, plan):
        await upsert_allocation(db, demo.manager, plan.id, None, "6000")
        result = await update_plan(db, demo.manager, plan.id, {"budget_total": "5000"})
        assert isinstance(result, RuleViolation)

    async def test_budget_update(self, db, demo, plan):
        result = await update_plan(db, demo.manager, plan.id, {"budget_total": "12000", "nom": "Plan 2026 révisé"})
        assert isinstance(result, Ok)
        assert result.value.budget_total == Decimal("12000")
        assert result.value.nom == "Plan 2026 révisé"


class TestArchivePlan:
    """Archivage (admin uniquement)."""

    async def test_manager_cannot_archive(self, db, demo, plan):
        assert isinstance(await archive_plan(db, demo.manager, plan.id), Forbidden)

    async def test_archive_detaches_needs_and_frees_year(self, db, demo, plan, add_besoin):
        besoin = await add_besoin(plan_id=plan.id, produit_id=demo.produit_id)

        result = await archive_plan(db, demo.admin, plan.id)
        assert isinstance(result, Ok)
        assert result.value.archived_at is not None

        listed = await list_plans(db, demo.lecteur, demo.entreprise_id)
        assert listed.value == []

        detached = (await get_besoin(db, demo.lecteur, besoin.id)).value
        assert detached.plan_formation_id is None
        assert detached.type_besoin == "ponctuel"

        again = await create_plan(db, demo.manager, {"entreprise_id": demo.entreprise_id, "annee": 2026})
        assert isinstance(again, Ok)


class TestSummaryAndConsolidation:
    """Synthèse du plan et vues consolidées."""

    async def test_plan_summary(self, db, demo, plan, add_besoin):
        await add_besoin(plan_id=plan.id, tarif_id=demo.tarif_intra_id, statut="valide")
        await add_besoin(plan_id=plan.id, produit_id=demo.produit_id, statut="transforme")
        await add_besoin(plan_id=plan.id)

        result = await plan_budget_summary(db, demo.lecteur, plan.id)

        summary = result.value
        assert summary.budget_engage == Decimal("3500")
        assert summary.budget_restant == Decimal("6500")
        assert summary.nb_besoins == 3
        assert summary.nb_valides == 2
        assert summary.nb_transformes == 1

    async def test_annual_budget(self, db, demo, plan, add_besoin):
        await add_besoin(produit_id=demo.produit_id, siege=True)
        await add_besoin(tarif_id=demo.tarif_intra_id, type_besoin="ponctuel")

        result = await consolidated_annual_budget(db, demo.lecteur, demo.entreprise_id, 2026)

        view = result.value
        assert view.plan_id == plan.id
        assert view.plan_budget_engage == Decimal("1000")
        assert view.plan_budget_restant == Decimal("9000")
        assert view.ponctuel_budget_total == Decimal("2500")
        assert view.depense_totale == Decimal("3500")

    async def test_annual_budget_without_plan(self, db, demo):
        view = (await consolidated_annual_budget(db, demo.lecteur, demo.entreprise_id, 2030)).value
        assert view.plan_id is None
        assert view.plan_budget_total == Decimal("0")
        assert view.seuil_alerte_pct == 80

    async def test_by_agence_rows_and_totals(self, db, demo, plan, add_besoin):
        await upsert_allocation(db, demo.manager, plan.id, None, "4000")
        await upsert_allocation(db, demo.manager, plan.id, demo.nantes_id, "3000")
        await add_besoin(tarif_id=demo.tarif_intra_id, agences=[demo.nantes_id, demo.lyon_id])

        view = (await consolidated_by_agence(db, demo.lecteur, demo.entreprise_id, 2026)).value

        assert [r.agence_nom for r in view.rows] == ["Siège social", "Lyon", "Nantes"]
        nantes = view.rows[2]
        assert nantes.engage_total == Decimal("2500")
        assert nantes.budget_restant == Decimal("500")
        assert view.rows[1].engage_total == Decimal("0")
        assert view.totals.agence_nom == "Total"
        assert view.totals.budget_alloue == Decimal("7000")
        assert view.totals.budget_restant == Decimal("4500")
