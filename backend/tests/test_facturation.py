"""
Facturation : devis -> facture -> paiement, acompte / solde, pipeline de session.

- Numérotation séquentielle par organisation, préfixe et année
- Conversion devis -> facture une seule fois
- Statut de facture recalculé à chaque paiement
"""

import uuid
from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest
import pytest_asyncio

from formabudget.models import Entreprise
from formabudget.services.facturation_service import (
    add_paiement,
    archive_devis,
    archive_facture,
    calc_totals,
    convert_devis_to_facture,
    create_commanditaire,
    create_devis,
    create_facture,
    create_facture_acompte,
    create_facture_solde,
    delete_paiement,
    list_factures,
    mark_devis_refused,
    session_billing_pipeline,
    update_devis,
    update_devis_statut,
    update_facture,
    update_facture_statut,
)
from formabudget.services.results import Forbidden, NotFound, Ok, RuleViolation, ValidationFailed

LIGNES = [
    {"designation": "SST initial", "quantite": 2, "prix_unitaire_ht": "450.00", "taux_tva": 20},
    {"designation": "Support stagiaire", "quantite": 1, "prix_unitaire_ht": "100", "taux_tva": 0},
]

ANNEE = date.today().year


@pytest.fixture
def session_id():
    return uuid.uuid4()


@pytest_asyncio.fixture
async def commanditaire(db, demo, session_id):
    result = await create_commanditaire(
        db, demo.manager, {"session_id": session_id, "entreprise_id": demo.entreprise_id, "budget": "3000"}
    )
    return result.value


async def _devis(db, demo, **extra):
    payload = {"entreprise_id": demo.entreprise_id, "objet": "Formation SST", "lignes": LIGNES}
    payload.update(extra)
    result = await create_devis(db, demo.manager, payload)
    assert isinstance(result, Ok)
    return result.value


class TestTotals:
    """Totaux HT / TVA / TTC."""

    def test_calc_totals(self):
        lignes = [SimpleNamespace(**{**l, "prix_unitaire_ht": Decimal(l["prix_unitaire_ht"])}) for l in LIGNES]
        totaux = calc_totals(lignes)
        assert totaux.total_ht == Decimal("1000.00")
        assert totaux.total_tva == Decimal("180.00")
        assert totaux.total_ttc == Decimal("1180.00")

    def test_rounding_half_up(self):
        totaux = calc_totals([SimpleNamespace(quantite=1, prix_unitaire_ht=Decimal("0.125"), taux_tva=0)])
        assert totaux.total_ht == Decimal("0.13")


class TestDevis:
    """Création, statut, conversion."""

    async def test_numbering(self, db, demo):
        first = await _devis(db, demo, date_emission="2026-03-01")
        second = await _devis(db, demo, date_emission="2026-04-01")
        other_year = await _devis(db, demo, date_emission="2027-01-15")

        assert first.numero_affichage == "D-2026-0001"
        assert second.numero_affichage == "D-2026-0002"
        assert other_year.numero_affichage == "D-2027-0001"
        assert first.total_ttc == Decimal("1180.00")
        assert [l.designation for l in first.lignes] == ["SST initial", "Support stagiaire"]

    async def test_status_vocabulary(self, db, demo):
        devis = await _devis(db, demo)

        result = await update_devis_statut(db, demo.manager, devis.id, "signe")
        assert result.value.statut == "signe"
        assert result.value.signe_le is not None

        bad = await update_devis_statut(db, demo.manager, devis.id, "valide")
        assert isinstance(bad, ValidationFailed)
        assert "statut" in bad.field_errors

    async def test_convert_once(self, db, demo):
        devis = await _devis(db, demo, conditions="30 jours fin de mois")
        numero = devis.numero_affichage

        result = await convert_devis_to_facture(db, demo.manager, devis.id)
        assert isinstance(result, Ok)
        facture = result.value
        assert facture.numero_affichage == f"F-{ANNEE}-0001"
        assert facture.statut == "brouillon"
        assert facture.devis_id == devis.id
        assert facture.total_ttc == Decimal("1180.00")
        assert facture.conditions_paiement == "30 jours fin de mois"
        assert len(facture.lignes) == 2

        again = await convert_devis_to_facture(db, demo.manager, devis.id)
        assert isinstance(again, RuleViolation)
        assert again.message == f"Le devis {numero} a déjà été transformé en facture"

    async def test_unknown_devis(self, db, demo):
        assert isinstance(await convert_devis_to_facture(db, demo.manager, uuid.uuid4()), NotFound)

    async def test_reader_forbidden(self, db, demo):
        result = await create_devis(db, demo.lecteur, {"lignes": LIGNES})
        assert isinstance(result, Forbidden)


class TestPaiements:
    """Encaissements et statut de la facture."""

    @pytest_asyncio.fixture
    async def facture(self, db, demo):
        devis = await _devis(db, demo)
        return (await convert_devis_to_facture(db, demo.manager, devis.id)).value

    async def test_partial_then_full(self, db, demo, facture):
        partial = await add_paiement(
            db, demo.manager, facture.id, {"date_paiement": "2026-05-01", "montant": "500", "mode": "virement"}
        )
        assert partial.value.statut == "partiellement_payee"
        assert partial.value.montant_paye == Decimal("500")

        full = await add_paiement(db, demo.manager, facture.id, {"date_paiement": "2026-05-20", "montant": "680"})
        assert full.value.statut == "payee"
        assert len(full.value.paiements) == 2

    async def test_delete_payment_recomputes(self, db, demo, facture):
        paid = await add_paiement(db, demo.manager, facture.id, {"date_paiement": "2026-05-01", "montant": "1180"})
        paiement_id = paid.value.paiements[0].id

        result = await delete_paiement(db, demo.manager, facture.id, paiement_id)
        assert result.value.statut == "envoyee"
        assert result.value.montant_paye == Decimal("0")

        missing = await delete_paiement(db, demo.manager, facture.id, paiement_id)
        assert isinstance(missing, NotFound)

    async def test_invalid_amount(self, db, demo, facture):
        result = await add_paiement(db, demo.manager, facture.id, {"date_paiement": "2026-05-01", "montant": "0"})
        assert isinstance(result, ValidationFailed)

    async def test_facture_status(self, db, demo, facture):
        result = await update_facture_statut(db, demo.manager, facture.id, "envoyee")
        assert result.value.envoye_le is not None
        assert isinstance(await update_facture_statut(db, demo.manager, facture.id, "annulee"), ValidationFailed)


class TestAcompteSolde:
    """Factures forfaitaires d'un commanditaire."""

    async def test_acompte_then_solde(self, db, demo, commanditaire):
        acompte = await create_facture_acompte(db, demo.manager, commanditaire.id, {"pourcentage": 30})
        assert acompte.value.type_facture == "acompte"
        assert acompte.value.total_ttc == Decimal("900.00")
        assert acompte.value.objet == "Acompte 30% — Formation"

        solde = await create_facture_solde(db, demo.manager, commanditaire.id)
        assert solde.value.type_facture == "solde"
        assert solde.value.total_ttc == Decimal("2100.00")

        listed = await list_factures(db, demo.lecteur, commanditaire_id=commanditaire.id)
        assert len(listed.value) == 2

    async def test_solde_refused_when_nothing_left(self, db, demo, commanditaire):
        await create_facture_acompte(db, demo.manager, commanditaire.id, {"pourcentage": 100})
        result = await create_facture_solde(db, demo.manager, commanditaire.id)
        assert isinstance(result, RuleViolation)
        assert result.message.startswith("Montant du solde nul ou négatif")

    async def test_unknown_commanditaire(self, db, demo):
        result = await create_facture_solde(db, demo.manager, uuid.uuid4())
        assert isinstance(result, NotFound)


class TestPipeline:
    """Vue de facturation d'une session."""

    async def test_totals_per_commanditaire(self, db, demo, commanditaire, session_id):
        await _devis(db, demo, session_id=str(session_id), commanditaire_id=str(commanditaire.id))
        acompte = (await create_facture_acompte(db, demo.manager, commanditaire.id, {"pourcentage": 50})).value
        await add_paiement(db, demo.manager, acompte.id, {"date_paiement": "2026-06-01", "montant": "1000"})

        result = await session_billing_pipeline(db, demo.lecteur, session_id)

        pipeline = result.value
        assert len(pipeline.commanditaires) == 1
        totaux = pipeline.commanditaires[0].totaux
        assert totaux.total_devis == Decimal("1180.00")
        assert totaux.total_facture == Decimal("1500.00")
        assert totaux.total_paye == Decimal("1000.00")
        assert totaux.reste_a_facturer == Decimal("1500.00")
        assert totaux.reste_a_payer == Decimal("500.00")
        assert pipeline.totaux.budget == Decimal("3000")


class TestDevisEdition:
    """Modification, refus, archivage d'un devis."""

    async def test_update_replaces_lines_and_totals(self, db, demo):
        devis = await _devis(db, demo)
        await update_devis_statut(db, demo.manager, devis.id, "envoye")

        result = await update_devis(
            db,
            demo.manager,
            devis.id,
            {
                "entreprise_id": demo.entreprise_id,
                "objet": "Formation SST (2 jours)",
                "lignes": [{"designation": "SST intra", "quantite": 1, "prix_unitaire_ht": "1000", "taux_tva": 20}],
            },
        )

        assert isinstance(result, Ok)
        updated = result.value
        assert updated.numero_affichage == devis.numero_affichage
        assert updated.statut == "envoye"
        assert updated.total_ht == Decimal("1000.00")
        assert updated.total_ttc == Decimal("1200.00")
        assert [l.designation for l in updated.lignes] == ["SST intra"]

    async def test_refuse_only_when_sent(self, db, demo):
        devis = await _devis(db, demo)

        early = await mark_devis_refused(db, demo.manager, devis.id)
        assert isinstance(early, RuleViolation)
        assert early.message == "Seul un devis envoyé peut être marqué comme refusé"

        await update_devis_statut(db, demo.manager, devis.id, "envoye")
        refused = await mark_devis_refused(db, demo.manager, devis.id)
        assert refused.value.statut == "refuse"

    async def test_archive_is_admin_only_and_leaves_pipeline(self, db, demo, commanditaire, session_id):
        devis = await _devis(db, demo, commanditaire_id=str(commanditaire.id))

        assert isinstance(await archive_devis(db, demo.manager, devis.id), Forbidden)

        archived = await archive_devis(db, demo.admin, devis.id)
        assert archived.value.archived_at is not None

        pipeline = (await session_billing_pipeline(db, demo.lecteur, session_id)).value
        assert pipeline.commanditaires[0].devis == []
        assert pipeline.commanditaires[0].totaux.total_devis == Decimal("0.00")


class TestFactureEdition:
    """Facture saisie directement, modification, archivage."""

    async def test_create_standard_facture(self, db, demo):
        result = await create_facture(
            db,
            demo.manager,
            {"entreprise_id": demo.entreprise_id, "date_emission": "2026-02-10", "lignes": LIGNES},
        )

        assert isinstance(result, Ok)
        facture = result.value
        assert facture.numero_affichage == "F-2026-0001"
        assert facture.type_facture == "standard"
        assert facture.statut == "brouillon"
        assert facture.total_ttc == Decimal("1180.00")
        assert facture.montant_paye == Decimal("0")

    async def test_unknown_status_on_create(self, db, demo):
        result = await create_facture(db, demo.manager, {"statut": "annulee", "lignes": LIGNES})
        assert isinstance(result, ValidationFailed)
        assert "statut" in result.field_errors

    async def test_update_keeps_payments_and_status(self, db, demo):
        facture = (await create_facture(db, demo.manager, {"lignes": LIGNES})).value
        await add_paiement(db, demo.manager, facture.id, {"date_paiement": "2026-05-01", "montant": "500"})

        result = await update_facture(
            db,
            demo.manager,
            facture.id,
            {"lignes": [{"designation": "SST", "quantite": 3, "prix_unitaire_ht": "450", "taux_tva": 20}]},
        )

        updated = result.value
        assert updated.total_ttc == Decimal("1620.00")
        assert updated.montant_paye == Decimal("500")
        assert updated.statut == "partiellement_payee"
        assert len(updated.lignes) == 1
        assert len(updated.paiements) == 1

    async def test_archive_hides_from_list(self, db, demo):
        facture = (await create_facture(db, demo.manager, {"lignes": LIGNES})).value

        assert isinstance(await archive_facture(db, demo.manager, facture.id), Forbidden)
        assert isinstance(await archive_facture(db, demo.admin, facture.id), Ok)

        listed = await list_factures(db, demo.lecteur)
        assert listed.value == []


class TestTenantIsolation:
    """Client et commanditaire d'une autre organisation."""

    @pytest_asyncio.fixture
    async def foreign_entreprise_id(self, db):
        entreprise = Entreprise(organisation_id=uuid.uuid4(), nom="Concurrent SA")
        db.add(entreprise)
        await db.commit()
        return entreprise.id

    async def test_commanditaire_on_foreign_entreprise(self, db, demo, foreign_entreprise_id):
        result = await create_commanditaire(
            db, demo.manager, {"session_id": uuid.uuid4(), "entreprise_id": foreign_entreprise_id, "budget": "3000"}
        )
        assert isinstance(result, NotFound)
        assert result.message == "Entreprise non trouvée"

    async def test_devis_and_facture_on_foreign_entreprise(self, db, demo, foreign_entreprise_id):
        devis = await create_devis(db, demo.manager, {"entreprise_id": foreign_entreprise_id, "lignes": LIGNES})
        facture = await create_facture(db, demo.manager, {"entreprise_id": foreign_entreprise_id, "lignes": LIGNES})

        assert isinstance(devis, NotFound)
        assert isinstance(facture, NotFound)

    async def test_unknown_commanditaire(self, db, demo):
        result = await create_devis(db, demo.manager, {"commanditaire_id": uuid.uuid4(), "lignes": LIGNES})
        assert isinstance(result, NotFound)
        assert result.message == "Commanditaire introuvable"

    async def test_session_follows_commanditaire(self, db, demo, commanditaire, session_id):
        devis = await _devis(db, demo, commanditaire_id=str(commanditaire.id))
        assert devis.session_id == session_id

        mismatch = await create_devis(
            db,
            demo.manager,
            {"commanditaire_id": commanditaire.id, "session_id": uuid.uuid4(), "lignes": LIGNES},
        )
        assert isinstance(mismatch, ValidationFailed)
        assert "session_id" in mismatch.field_errors
