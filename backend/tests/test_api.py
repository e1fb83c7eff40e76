"""
API HTTP : authentification par X-User-Id, format d'erreur, routes principales.

Codes attendus :
- 401 UNAUTHORIZED  : utilisateur absent ou inconnu
- 403 FORBIDDEN     : rôle insuffisant
- 404 NOT_FOUND     : entité absente
- 409 BUSINESS_RULE : règle métier violée
- 422 VALIDATION_ERROR : saisie invalide (erreurs par champ)
"""

import uuid
from decimal import Decimal


def headers(ctx):
    return {"X-User-Id": str(ctx.user_id)}


class TestHealthAndAuth:
    """Routes publiques et résolution de l'utilisateur."""

    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"
        assert resp.headers["x-request-id"]

    async def test_system_status(self, client):
        resp = await client.get("/system/status")
        assert resp.status_code == 200
        assert resp.json()["db"]["ok"] is True
        assert resp.json()["last_event"] is None

    async def test_missing_user(self, client, demo):
        resp = await client.get("/plans", params={"entreprise_id": str(demo.entreprise_id)})
        assert resp.status_code == 401
        error = resp.json()["error"]
        assert error["code"] == "UNAUTHORIZED"
        assert error["message"] == "Non authentifié"

    async def test_unknown_user(self, client, demo):
        resp = await client.get(
            "/plans", params={"entreprise_id": str(demo.entreprise_id)}, headers={"X-User-Id": str(uuid.uuid4())}
        )
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == "Utilisateur non trouvé"

    async def test_request_id_is_echoed(self, client):
        resp = await client.get("/health", headers={"X-Request-Id": "req-123"})
        assert resp.headers["x-request-id"] == "req-123"


class TestPlansApi:
    """Plans et erreurs métier."""

    async def test_create_then_duplicate(self, client, demo):
        body = {"entreprise_id": str(demo.entreprise_id), "annee": 2027, "budget_total": 8000}
        created = await client.post("/plans", json=body, headers=headers(demo.manager))
        assert created.status_code == 201
        assert Decimal(created.json()["budget_total"]) == Decimal("8000")

        duplicate = await client.post("/plans", json=body, headers=headers(demo.manager))
        assert duplicate.status_code == 409
        assert duplicate.json()["error"]["code"] == "BUSINESS_RULE"

    async def test_request_validation(self, client, demo):
        resp = await client.post(
            "/plans", json={"entreprise_id": str(demo.entreprise_id), "annee": 1900}, headers=headers(demo.manager)
        )
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert "annee" in error["details"]

    async def test_unknown_plan(self, client, demo):
        resp = await client.get(f"/plans/{uuid.uuid4()}", headers=headers(demo.lecteur))
        assert resp.status_code == 404
        assert resp.json()["error"]["message"] == "Plan non trouvé"

    async def test_reader_forbidden(self, client, demo):
        resp = await client.post(
            "/plans", json={"entreprise_id": str(demo.entreprise_id), "annee": 2027}, headers=headers(demo.lecteur)
        )
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "FORBIDDEN"


class TestBudgetApi:
    """Répartition et vues consolidées."""

    async def test_allocation_flow(self, client, demo, plan):
        url = f"/budget/plans/{plan.id}/allocations"

        ok = await client.put(url, json={"agence_id": None, "budget_alloue": "7000"}, headers=headers(demo.manager))
        assert ok.status_code == 200
        assert ok.json()["agence_nom"] == "Siège social"
        assert Decimal(ok.json()["total_alloue"]) == Decimal("7000")

        over = await client.put(
            url, json={"agence_id": str(demo.lyon_id), "budget_alloue": "3000.01"}, headers=headers(demo.manager)
        )
        assert over.status_code == 409
        assert "dépasse le budget total" in over.json()["error"]["message"]

        negative = await client.put(url, json={"budget_alloue": "-5"}, headers=headers(demo.manager))
        assert negative.status_code == 422
        assert "budget_alloue" in negative.json()["error"]["details"]

        dist = await client.get(f"/budget/plans/{plan.id}/distribution", headers=headers(demo.lecteur))
        assert Decimal(dist.json()["reste_a_repartir"]) == Decimal("3000")

    async def test_engaged_and_agences(self, client, demo, plan, add_besoin):
        await add_besoin(tarif_id=demo.tarif_intra_id, agences=[demo.lyon_id])

        engaged = await client.get(
            f"/budget/entreprises/{demo.entreprise_id}/engage",
            params={"annee": 2026, "type_besoin": "plan"},
            headers=headers(demo.lecteur),
        )
        assert engaged.status_code == 200
        assert Decimal(engaged.json()["total"]) == Decimal("2500")

        agences = await client.get(
            f"/budget/entreprises/{demo.entreprise_id}/agences",
            params={"annee": 2026},
            headers=headers(demo.lecteur),
        )
        body = agences.json()
        assert [r["agence_nom"] for r in body["rows"]] == ["Siège social", "Lyon", "Nantes"]
        assert Decimal(body["totals"]["engage_total"]) == Decimal("2500")

    async def test_alerts_logged_in_history(self, client, demo, plan, add_besoin):
        for _ in range(4):
            await add_besoin(tarif_id=demo.tarif_intra_id)

        logged = await client.post(
            f"/budget/entreprises/{demo.entreprise_id}/alerts/log",
            params={"annee": 2026},
            headers=headers(demo.manager),
        )
        assert logged.status_code == 200
        assert [a["type"] for a in logged.json()] == ["global_vigilance"]

        history = await client.get(
            "/historique", params={"origine": "systeme"}, headers=headers(demo.lecteur)
        )
        assert history.json()["meta"]["total"] == 1
        assert history.json()["data"][0]["action"] == "alert_triggered"


class TestBillingApi:
    """Devis et facture par HTTP."""

    async def test_devis_convert_twice(self, client, demo):
        devis = await client.post(
            "/billing/devis",
            json={"lignes": [{"designation": "SST", "quantite": 1, "prix_unitaire_ht": 500, "taux_tva": 20}]},
            headers=headers(demo.manager),
        )
        assert devis.status_code == 201
        assert Decimal(devis.json()["total_ttc"]) == Decimal("600")

        devis_id = devis.json()["id"]
        first = await client.post(f"/billing/devis/{devis_id}/convert", headers=headers(demo.manager))
        assert first.status_code == 201
        assert first.json()["numero_affichage"].startswith("F-")

        second = await client.post(f"/billing/devis/{devis_id}/convert", headers=headers(demo.manager))
        assert second.status_code == 409

    async def test_unknown_status(self, client, demo):
        devis = await client.post("/billing/devis", json={"lignes": []}, headers=headers(demo.manager))
        resp = await client.patch(
            f"/billing/devis/{devis.json()['id']}/statut", json={"statut": "perdu"}, headers=headers(demo.manager)
        )
        assert resp.status_code == 422
        assert "statut" in resp.json()["error"]["details"]

    async def test_facture_edit_and_archive(self, client, demo):
        ligne = {"designation": "SST", "quantite": 1, "prix_unitaire_ht": 500, "taux_tva": 20}
        created = await client.post("/billing/factures", json={"lignes": [ligne]}, headers=headers(demo.manager))
        assert created.status_code == 201
        facture_id = created.json()["id"]

        updated = await client.put(
            f"/billing/factures/{facture_id}",
            json={"lignes": [{**ligne, "quantite": 2}]},
            headers=headers(demo.manager),
        )
        assert Decimal(updated.json()["total_ttc"]) == Decimal("1200")

        forbidden = await client.post(f"/billing/factures/{facture_id}/archive", headers=headers(demo.manager))
        assert forbidden.status_code == 403
        archived = await client.post(f"/billing/factures/{facture_id}/archive", headers=headers(demo.admin))
        assert archived.json()["archived_at"] is not None

    async def test_foreign_commanditaire(self, client, demo):
        resp = await client.post(
            "/billing/devis", json={"commanditaire_id": str(uuid.uuid4()), "lignes": []}, headers=headers(demo.manager)
        )
        assert resp.status_code == 404
        assert resp.json()["error"]["message"] == "Commanditaire introuvable"


class TestReferentielApi:
    """Clients et catalogue."""

    async def test_create_entreprise_with_agences(self, client, demo):
        resp = await client.post(
            "/entreprises",
            json={"nom": "Clinique des Tilleuls", "siret": "", "agences": [{"nom": "Nantes"}, {"nom": "Angers"}]},
            headers=headers(demo.manager),
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["siret"] is None
        assert [a["nom"] for a in body["agences"]] == ["Angers", "Nantes"]

        added = await client.post(
            f"/entreprises/{body['id']}/agences", json={"nom": "Cholet"}, headers=headers(demo.manager)
        )
        assert added.status_code == 201

        listed = await client.get("/entreprises", headers=headers(demo.lecteur))
        assert len(listed.json()) == 2

    async def test_single_default_tariff(self, client, demo):
        resp = await client.post(
            "/produits",
            json={
                "intitule": "Gestes et postures",
                "tarifs": [{"prix_ht": 500, "is_default": True}, {"prix_ht": 900, "is_default": True}],
            },
            headers=headers(demo.manager),
        )
        assert resp.status_code == 422
        assert "tarifs" in resp.json()["error"]["details"]

    async def test_unknown_entreprise(self, client, demo):
        resp = await client.get(f"/entreprises/{uuid.uuid4()}", headers=headers(demo.lecteur))
        assert resp.status_code == 404
        assert resp.json()["error"]["message"] == "Entreprise non trouvée"
