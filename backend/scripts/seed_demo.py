# backend/scripts/seed_demo.py
from __future__ import annotations

import argparse
import random
import sys
import uuid
from datetime import date
from decimal import Decimal
from pathlib import Path

from sqlalchemy import create_engine, delete, select
from sqlalchemy.orm import sessionmaker

# Permet de lancer le script depuis backend/ sans souci d'import
BACKEND_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(BACKEND_DIR))

from formabudget.core.settings import settings
from formabudget.models import (
    BesoinFormation,
    CompteurNumero,
    Devis,
    Entreprise,
    EntrepriseAgence,
    Facture,
    HistoriqueEvent,
    PlanBudgetAgence,
    PlanFormation,
    ProduitFormation,
    ProduitTarif,
    SessionCommanditaire,
    Utilisateur,
)

"""
Seed démo FormaBudget.

Rôle (fonctionnel) :
- Crée une organisation de démonstration : 3 utilisateurs (admin / manager / user),
  des clients avec agences, un catalogue (produits + tarifs), un plan par client
  réparti entre siège et agences, et des besoins plan / ponctuels valorisés.
- Affiche les identifiants à passer dans le header X-User-Id.

Usage :
    python scripts/seed_demo.py --reset --annee 2026 --besoins 40
"""

# Organisation fixe : un reseed garde les mêmes identifiants côté front
DEMO_ORGANISATION_ID = uuid.UUID("7d3f0c5e-2b1a-4c6e-9f10-0a1b2c3d4e5f")

CLIENTS = {
    "Transports Lemoine": ["Lyon", "Grenoble", "Saint-Étienne"],
    "Clinique des Tilleuls": ["Nantes", "Angers"],
    "Boulangeries Marchal": [],
}

CATALOGUE = {
    "Sauveteur Secouriste du Travail": [("Inter", "290"), ("Intra", "1450")],
    "Habilitation électrique B0-H0": [("Inter", "380"), ("Intra", "1900")],
    "Management d’équipe": [("Inter", "1250")],
    "Excel perfectionnement": [("E-learning", "190"), ("Inter", "540")],
    "Gestes et postures": [("Intra", "980")],
}

INTITULES = [
    "Recyclage SST",
    "Formation nouveaux managers",
    "Sensibilisation sécurité entrepôt",
    "Montée en compétences bureautique",
    "Prévention TMS",
]


def reset(db) -> None:
    # ordre inverse des FK
    for model in (
        HistoriqueEvent,
        Facture,
        Devis,
        SessionCommanditaire,
        CompteurNumero,
        BesoinFormation,
        PlanBudgetAgence,
        PlanFormation,
        ProduitTarif,
        ProduitFormation,
        EntrepriseAgence,
        Entreprise,
        Utilisateur,
    ):
        db.execute(delete(model).where(_org_filter(model)))
    db.commit()
    print("✅ Reset done (demo organisation deleted).")


def _org_filter(model):
    if hasattr(model, "organisation_id"):
        return model.organisation_id == DEMO_ORGANISATION_ID
    if model is ProduitTarif:
        return ProduitTarif.produit_id.in_(
            select(ProduitFormation.id).where(ProduitFormation.organisation_id == DEMO_ORGANISATION_ID)
        )
    return EntrepriseAgence.entreprise_id.in_(
        select(Entreprise.id).where(Entreprise.organisation_id == DEMO_ORGANISATION_ID)
    )


def seed(do_reset: bool, annee: int, n_besoins: int) -> None:
    engine = create_engine(settings.DATABASE_URL_SYNC, future=True)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)

    with SessionLocal() as db:
        if do_reset:
            reset(db)

        users = [
            Utilisateur(organisation_id=DEMO_ORGANISATION_ID, role=role, prenom=prenom, nom="Démo")
            for role, prenom in (("admin", "Alice"), ("manager", "Marc"), ("user", "Ursula"))
        ]
        db.add_all(users)

        tarifs: list[ProduitTarif] = []
        for intitule, prix in CATALOGUE.items():
            produit = ProduitFormation(
                organisation_id=DEMO_ORGANISATION_ID,
                intitule=intitule,
                tarifs=[
                    ProduitTarif(libelle=libelle, prix_ht=Decimal(p), is_default=(i == 0))
                    for i, (libelle, p) in enumerate(prix)
                ],
            )
            db.add(produit)
            tarifs.extend(produit.tarifs)
        db.flush()

        nb_besoins = 0
        for nom, agences in CLIENTS.items():
            entreprise = Entreprise(
                organisation_id=DEMO_ORGANISATION_ID,
                nom=nom,
                agences=[EntrepriseAgence(nom=a) for a in agences],
            )
            db.add(entreprise)
            db.flush()

            budget_total = Decimal(random.choice([8000, 12000, 20000]))
            plan = PlanFormation(
                organisation_id=DEMO_ORGANISATION_ID,
                entreprise_id=entreprise.id,
                annee=annee,
                nom=f"Plan de formation {annee}",
                budget_total=budget_total,
                seuil_alerte_pct=80,
            )
            db.add(plan)
            db.flush()

            # siège : 40 %, le reste réparti à parts égales entre agences
            part_siege = (budget_total * Decimal("0.4")).quantize(Decimal("1"))
            db.add(
                PlanBudgetAgence(
                    organisation_id=DEMO_ORGANISATION_ID,
                    plan_formation_id=plan.id,
                    agence_id=None,
                    budget_alloue=part_siege,
                )
            )
            if entreprise.agences:
                part = ((budget_total - part_siege) / len(entreprise.agences)).quantize(Decimal("1"))
                for agence in entreprise.agences:
                    db.add(
                        PlanBudgetAgence(
                            organisation_id=DEMO_ORGANISATION_ID,
                            plan_formation_id=plan.id,
                            agence_id=agence.id,
                            budget_alloue=part,
                        )
                    )

            for _ in range(n_besoins // len(CLIENTS)):
                tarif = random.choice(tarifs)
                type_besoin = "plan" if random.random() < 0.7 else "ponctuel"
                siege = not entreprise.agences or random.random() < 0.3
                db.add(
                    BesoinFormation(
                        organisation_id=DEMO_ORGANISATION_ID,
                        entreprise_id=entreprise.id,
                        plan_formation_id=plan.id if type_besoin == "plan" else None,
                        intitule=random.choice(INTITULES),
                        annee_cible=annee,
                        type_besoin=type_besoin,
                        priorite=random.choice(["faible", "moyenne", "haute"]),
                        statut=random.choice(["a_etudier", "valide", "planifie"]),
                        date_echeance=date(annee, random.randint(1, 12), 15),
                        produit_id=tarif.produit_id,
                        tarif_id=tarif.id if random.random() < 0.5 else None,
                        siege_social=siege,
                        agences_ids=[] if siege else [str(random.choice(entreprise.agences).id)],
                    )
                )
                nb_besoins += 1

        db.commit()

        print("✅ Seed terminé.")
        print(f"   - Organisation : {DEMO_ORGANISATION_ID}")
        for user in users:
            print(f"   - X-User-Id ({user.role}) : {user.id}")
        print(f"   - Clients : {len(CLIENTS)} / besoins : {nb_besoins}")


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--reset", action="store_true", help="Supprime l’organisation démo avant de reseed")
    parser.add_argument("--annee", type=int, default=date.today().year, help="Année des plans et besoins")
    parser.add_argument("--besoins", type=int, default=30, help="Nombre de besoins à générer")
    parser.add_argument("--seed", type=int, default=42, help="Graine aléatoire (reproductible)")
    args = parser.parse_args()

    random.seed(args.seed)
    seed(do_reset=args.reset, annee=args.annee, n_besoins=args.besoins)


if __name__ == "__main__":
    main()
