"""
Moteur de coûts : valorisation des besoins et attribution aux porteurs.

- Précédence du tarif : tarif précis > tarif par défaut du produit > 0
- Attribution : siège > première agence listée > non attribué
- Lecture déterministe, filtrée par client, année et type
"""

import uuid
from decimal import Decimal
from types import SimpleNamespace

from formabudget.services.cost_engine import (
    EngagedCost,
    TypeBesoin,
    attribute_costs,
    compute_engaged,
    resolve_unit_prices,
)


def _besoin(tarif_id=None, produit_id=None, siege=False, agences=None):
    return SimpleNamespace(
        tarif_id=tarif_id,
        produit_id=produit_id,
        siege_social=siege,
        agences_ids=agences or [],
    )


class TestResolveUnitPrices:
    """Prix unitaire d'un besoin."""

    def test_explicit_tarif_wins_over_default(self):
        tarif, produit = uuid.uuid4(), uuid.uuid4()
        prices = resolve_unit_prices(
            [_besoin(tarif_id=tarif, produit_id=produit)],
            {str(tarif): Decimal("2500")},
            {str(produit): Decimal("1000")},
        )
        assert prices == [Decimal("2500")]

    def test_product_default_when_no_tarif(self):
        produit = uuid.uuid4()
        prices = resolve_unit_prices([_besoin(produit_id=produit)], {}, {str(produit): Decimal("1000")})
        assert prices == [Decimal("1000")]

    def test_unknown_tarif_is_zero(self):
        """Un tarif supprimé ne retombe pas sur le défaut du produit."""
        produit = uuid.uuid4()
        prices = resolve_unit_prices(
            [_besoin(tarif_id=uuid.uuid4(), produit_id=produit)], {}, {str(produit): Decimal("1000")}
        )
        assert prices == [Decimal("0")]

    def test_no_valuation_is_zero(self):
        assert resolve_unit_prices([_besoin()], {}, {}) == [Decimal("0")]


class TestAttributeCosts:
    """Répartition du coût entre siège et agences."""

    def test_siege_bucket(self):
        cost = attribute_costs([_besoin(siege=True, agences=["a1"])], [Decimal("500")])
        assert cost.siege == Decimal("500")
        assert cost.for_agence("a1") == Decimal("0")

    def test_first_agency_carries_full_cost(self):
        a1, a2 = uuid.uuid4(), uuid.uuid4()
        cost = attribute_costs([_besoin(agences=[str(a1), str(a2)])], [Decimal("900")])
        assert cost.for_agence(a1) == Decimal("900")
        assert cost.for_agence(a2) == Decimal("0")
        assert cost.attribution == "first_agency"

    def test_unattributed_counts_in_total_only(self):
        cost = attribute_costs([_besoin(), _besoin(siege=True)], [Decimal("300"), Decimal("200")])
        assert cost.total == Decimal("500")
        assert cost.count == 2
        assert cost.non_attribue == Decimal("300")

    def test_deterministic(self):
        besoins = [_besoin(agences=["a"]), _besoin(siege=True), _besoin()]
        prices = [Decimal("1"), Decimal("2"), Decimal("3")]
        assert attribute_costs(besoins, prices) == attribute_costs(besoins, prices)

    def test_empty(self):
        assert attribute_costs([], []) == EngagedCost.empty()


class TestComputeEngaged:
    """Valorisation depuis la base."""

    async def test_tarif_default_and_missing(self, db, demo, add_besoin):
        await add_besoin(tarif_id=demo.tarif_intra_id, agences=[demo.lyon_id])
        await add_besoin(produit_id=demo.produit_id, siege=True)
        await add_besoin(tarif_id=uuid.uuid4())

        cost = await compute_engaged(db, demo.organisation_id, demo.entreprise_id, 2026, TypeBesoin.PLAN)

        assert cost.count == 3
        assert cost.total == Decimal("3500")
        assert cost.siege == Decimal("1000")
        assert cost.for_agence(demo.lyon_id) == Decimal("2500")

    async def test_filters_type_and_year(self, db, demo, add_besoin):
        await add_besoin(produit_id=demo.produit_id, type_besoin="ponctuel", siege=True)
        await add_besoin(produit_id=demo.produit_id, annee=2025, siege=True)

        plan_cost = await compute_engaged(db, demo.organisation_id, demo.entreprise_id, 2026, "plan")
        ponctuel_cost = await compute_engaged(db, demo.organisation_id, demo.entreprise_id, 2026, "ponctuel")

        assert plan_cost.total == Decimal("0")
        assert ponctuel_cost.total == Decimal("1000")

    async def test_other_organisation_sees_nothing(self, db, demo, add_besoin):
        await add_besoin(produit_id=demo.produit_id, siege=True)
        cost = await compute_engaged(db, uuid.uuid4(), demo.entreprise_id, 2026, "plan")
        assert cost.total == Decimal("0")
        assert cost.count == 0

    async def test_repeated_reads_are_identical(self, db, demo, add_besoin):
        await add_besoin(tarif_id=demo.tarif_intra_id, agences=[demo.nantes_id, demo.lyon_id])
        await add_besoin(produit_id=demo.produit_id, siege=True)
        await add_besoin(produit_id=demo.produit_id)

        first = await compute_engaged(db, demo.organisation_id, demo.entreprise_id, 2026, TypeBesoin.PLAN)
        second = await compute_engaged(db, demo.organisation_id, demo.entreprise_id, 2026, TypeBesoin.PLAN)

        assert first == second
        assert first.for_agence(demo.nantes_id) == Decimal("2500")
        assert first.non_attribue == Decimal("1000")
