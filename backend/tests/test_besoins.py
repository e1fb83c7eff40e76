"""
Besoins de formation : création, mise à jour, archivage, planification.
"""

import uuid

from formabudget.services.besoin_service import (
    archive_besoin,
    create_besoin,
    link_besoin_to_session,
    list_besoins,
    update_besoin,
)
from formabudget.services.results import Forbidden, NotFound, Ok, ValidationFailed


class TestCreateBesoin:
    """Création."""

    async def test_attached_to_plan_is_plan_type(self, db, demo, plan):
        result = await create_besoin(
            db,
            demo.manager,
            {
                "entreprise_id": demo.entreprise_id,
                "intitule": "  Recyclage SST  ",
                "annee_cible": 2026,
                "type_besoin": "ponctuel",
                "plan_formation_id": plan.id,
                "agences_ids": [str(demo.lyon_id)],
            },
        )
        assert isinstance(result, Ok)
        besoin = result.value
        assert besoin.intitule == "Recyclage SST"
        assert besoin.type_besoin == "plan"
        assert besoin.statut == "a_etudier"
        assert besoin.agences_ids == [str(demo.lyon_id)]

    async def test_blank_title(self, db, demo):
        result = await create_besoin(
            db, demo.manager, {"entreprise_id": demo.entreprise_id, "intitule": "   ", "annee_cible": 2026}
        )
        assert isinstance(result, ValidationFailed)
        assert "intitule" in result.field_errors

    async def test_plan_of_another_client(self, db, demo):
        result = await create_besoin(
            db,
            demo.manager,
            {
                "entreprise_id": demo.entreprise_id,
                "intitule": "Excel",
                "annee_cible": 2026,
                "plan_formation_id": uuid.uuid4(),
            },
        )
        assert isinstance(result, NotFound)

    async def test_reader_forbidden(self, db, demo):
        result = await create_besoin(
            db, demo.lecteur, {"entreprise_id": demo.entreprise_id, "intitule": "Excel", "annee_cible": 2026}
        )
        assert isinstance(result, Forbidden)


class TestUpdateBesoin:
    """Mise à jour partielle, archivage, session."""

    async def test_partial_update(self, db, demo, add_besoin):
        besoin = await add_besoin()
        result = await update_besoin(db, demo.manager, besoin.id, {"statut": "valide", "siege_social": True})
        assert result.value.statut == "valide"
        assert result.value.siege_social is True
        assert result.value.intitule == "Recyclage SST"

    async def test_unknown_status(self, db, demo, add_besoin):
        besoin = await add_besoin()
        result = await update_besoin(db, demo.manager, besoin.id, {"statut": "inconnu"})
        assert isinstance(result, ValidationFailed)

    async def test_archive_hides_from_list(self, db, demo, add_besoin):
        besoin = await add_besoin()
        await archive_besoin(db, demo.manager, besoin.id)
        listed = await list_besoins(db, demo.lecteur, demo.entreprise_id)
        assert listed.value == []

    async def test_link_to_session(self, db, demo, add_besoin):
        besoin = await add_besoin(statut="valide")
        session_id = uuid.uuid4()
        result = await link_besoin_to_session(db, demo.manager, besoin.id, session_id)
        assert result.value.session_id == session_id
        assert result.value.statut == "planifie"

    async def test_list_filters(self, db, demo, add_besoin):
        await add_besoin(type_besoin="ponctuel")
        await add_besoin(annee=2025)
        result = await list_besoins(db, demo.lecteur, demo.entreprise_id, annee=2026, type_besoin="ponctuel")
        assert len(result.value) == 1


class TestBesoinReferences:
    """Agences du client, produit et tarif du catalogue."""

    def _payload(self, demo, **extra):
        return {"entreprise_id": demo.entreprise_id, "intitule": "Recyclage SST", "annee_cible": 2026, **extra}

    async def test_unknown_agence(self, db, demo):
        result = await create_besoin(
            db, demo.manager, self._payload(demo, agences_ids=[str(demo.lyon_id), str(uuid.uuid4())])
        )
        assert isinstance(result, NotFound)
        assert result.message == "Agence non trouvée"

    async def test_unknown_produit(self, db, demo):
        result = await create_besoin(db, demo.manager, self._payload(demo, produit_id=uuid.uuid4()))
        assert isinstance(result, NotFound)
        assert result.message == "Produit non trouvé"

    async def test_tarif_must_match_produit(self, db, demo):
        ok = await create_besoin(
            db, demo.manager, self._payload(demo, produit_id=demo.produit_id, tarif_id=demo.tarif_intra_id)
        )
        assert isinstance(ok, Ok)

        unknown = await create_besoin(db, demo.manager, self._payload(demo, tarif_id=uuid.uuid4()))
        assert isinstance(unknown, NotFound)
        assert unknown.message == "Tarif non trouvé"

    async def test_update_checks_agences(self, db, demo, add_besoin):
        besoin = await add_besoin(agences=[demo.lyon_id])
        result = await update_besoin(db, demo.manager, besoin.id, {"agences_ids": [str(uuid.uuid4())]})
        assert isinstance(result, NotFound)

        moved = await update_besoin(db, demo.manager, besoin.id, {"agences_ids": [str(demo.nantes_id)]})
        assert moved.value.agences_ids == [str(demo.nantes_id)]
