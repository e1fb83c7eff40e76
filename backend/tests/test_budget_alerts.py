"""
Alertes budgétaires : vigilance (seuil atteint) et dépassement.

- Même règle pour le global et chaque porteur
- Au plus une alerte par seau, allocation à 0 ignorée
- Journalisation dans l'historique avec l'origine "systeme"
"""

import uuid
from decimal import Decimal

from sqlalchemy import select

from formabudget.models import HistoriqueEvent, ProduitTarif
from formabudget.services.budget_alerts_service import (
    AlertType,
    check_alerts,
    evaluate,
    log_budget_alerts,
    pourcentage,
)
from formabudget.services.budget_distribution_service import upsert_allocation
from formabudget.services.results import Ok


class TestEvaluate:
    """Règle de sévérité pure."""

    def test_below_threshold(self):
        assert evaluate(Decimal("790"), Decimal("1000"), 80) is None

    def test_threshold_reached(self):
        assert evaluate(Decimal("800"), Decimal("1000"), 80) == (AlertType.VIGILANCE, 80)

    def test_exactly_full_is_vigilance(self):
        assert evaluate(Decimal("1000"), Decimal("1000"), 80) == (AlertType.VIGILANCE, 100)

    def test_over_budget(self):
        assert evaluate(Decimal("1001"), Decimal("1000"), 80) == (AlertType.DEPASSEMENT, 100)

    def test_global_types(self):
        hit = evaluate(Decimal("2000"), Decimal("1000"), 80, is_global=True)
        assert hit == (AlertType.GLOBAL_DEPASSEMENT, 200)

    def test_percentage_rounds_half_up(self):
        assert pourcentage(Decimal("795"), Decimal("1000")) == 80
        assert pourcentage(Decimal("794"), Decimal("1000")) == 79


class TestCheckAlerts:
    """Évaluation du plan actif d'un client."""

    async def test_no_plan_no_alert(self, db, demo):
        result = await check_alerts(db, demo.lecteur, demo.entreprise_id, 2026)
        assert isinstance(result, Ok)
        assert result.value == []

    async def test_vigilance_and_overrun(self, db, demo, plan, add_besoin):
        await upsert_allocation(db, demo.manager, plan.id, None, "1200")
        await upsert_allocation(db, demo.manager, plan.id, demo.lyon_id, "2000")
        await add_besoin(produit_id=demo.produit_id, siege=True)
        await add_besoin(tarif_id=demo.tarif_intra_id, agences=[demo.lyon_id])

        result = await check_alerts(db, demo.lecteur, demo.entreprise_id, 2026)

        by_entite = {a.entite: a for a in result.value}
        assert set(by_entite) == {"Siège social", "Lyon"}
        assert by_entite["Siège social"].type == AlertType.VIGILANCE
        assert by_entite["Siège social"].pourcentage == 83
        assert by_entite["Lyon"].type == AlertType.DEPASSEMENT
        assert by_entite["Lyon"].budget_engage == Decimal("2500")

    async def test_global_overrun(self, db, demo, plan, add_besoin):
        for _ in range(5):
            await add_besoin(tarif_id=demo.tarif_intra_id)

        result = await check_alerts(db, demo.lecteur, demo.entreprise_id, 2026)

        assert [a.type for a in result.value] == [AlertType.GLOBAL_DEPASSEMENT]
        assert result.value[0].entite == "Global"
        assert result.value[0].pourcentage == 125

    async def test_ponctuel_counts_towards_buckets(self, db, demo, plan, add_besoin):
        await upsert_allocation(db, demo.manager, plan.id, demo.nantes_id, "1000")
        await add_besoin(produit_id=demo.produit_id, type_besoin="ponctuel", agences=[demo.nantes_id])

        result = await check_alerts(db, demo.lecteur, demo.entreprise_id, 2026)

        assert [(a.entite, a.type) for a in result.value] == [("Nantes", AlertType.VIGILANCE)]

    async def test_zero_allocation_is_skipped(self, db, demo, plan, add_besoin):
        await upsert_allocation(db, demo.manager, plan.id, demo.lyon_id, "0")
        await add_besoin(produit_id=demo.produit_id, agences=[demo.lyon_id])

        result = await check_alerts(db, demo.lecteur, demo.entreprise_id, 2026)
        assert result.value == []


class TestLogBudgetAlerts:
    """Écriture des alertes dans l'historique."""

    async def test_alerts_written_as_system_events(self, db, demo, plan, add_besoin):
        await upsert_allocation(db, demo.manager, plan.id, demo.lyon_id, "1000")
        await add_besoin(tarif_id=demo.tarif_intra_id, agences=[demo.lyon_id])

        result = await log_budget_alerts(db, demo.manager, demo.entreprise_id, 2026)
        assert isinstance(result, Ok)

        events = (
            await db.execute(select(HistoriqueEvent).where(HistoriqueEvent.action == "alert_triggered"))
        ).scalars().all()
        assert len(events) == 1
        assert events[0].origine == "systeme"
        assert events[0].description.startswith("Dépassement budgétaire : Lyon")
        assert events[0].metadata_["alert_type"] == "depassement"

    async def test_nothing_logged_without_alert(self, db, demo):
        result = await log_budget_alerts(db, demo.manager, uuid.uuid4(), 2026)
        assert result.value == []
        assert (await db.execute(select(HistoriqueEvent))).scalars().all() == []


class TestSiegeThresholdExample:
    """Plan de 10 000 € à 80 %, siège doté de 6 000 €."""

    async def _siege_need(self, session_factory, demo, prix):
        async with session_factory() as s:
            tarif = ProduitTarif(produit_id=demo.produit_id, libelle="Sur devis", prix_ht=Decimal(prix))
            s.add(tarif)
            await s.commit()
            return tarif.id

    async def test_threshold_reached_on_siege_only(self, db, session_factory, demo, plan, add_besoin):
        await upsert_allocation(db, demo.manager, plan.id, None, "6000")
        tarif_id = await self._siege_need(session_factory, demo, "4800")
        await add_besoin(tarif_id=tarif_id, siege=True)

        result = await check_alerts(db, demo.lecteur, demo.entreprise_id, 2026)

        assert [(a.entite, a.type) for a in result.value] == [("Siège social", AlertType.VIGILANCE)]
        assert result.value[0].pourcentage == 80
        assert result.value[0].budget_engage == Decimal("4800")

    async def test_one_euro_over_is_overrun(self, db, session_factory, demo, plan, add_besoin):
        await upsert_allocation(db, demo.manager, plan.id, None, "6000")
        tarif_id = await self._siege_need(session_factory, demo, "6001")
        await add_besoin(tarif_id=tarif_id, siege=True)

        result = await check_alerts(db, demo.lecteur, demo.entreprise_id, 2026)

        assert [(a.entite, a.type) for a in result.value] == [("Siège social", AlertType.DEPASSEMENT)]
