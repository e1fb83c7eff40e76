"""Schéma initial FormaBudget.

Rôle (fonctionnel) :
- Référentiel : utilisateurs, entreprises + agences, produits + tarifs.
- Budget : plans de formation (un plan actif par client et par année), allocations
  siège / agences, besoins de formation.
- Journal d’audit : historique_events.
- Facturation : commanditaires de session, devis, factures, paiements, compteurs de numérotation.

Revision ID: 5e2a9c41d7b3
Revises:
Create Date: 2026-03-02
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# Identifiants Alembic
revision: str = "5e2a9c41d7b3"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

UUID = postgresql.UUID(as_uuid=True)
MONEY = sa.Numeric(12, 2)
TS = sa.DateTime(timezone=True)


def _id() -> sa.Column:
    return sa.Column("id", UUID, primary_key=True)


def _org() -> sa.Column:
    return sa.Column("organisation_id", UUID, nullable=False)


def upgrade() -> None:
    """Application des changements de schéma."""
    op.create_table(
        "utilisateurs",
        _id(),
        _org(),
        sa.Column("role", sa.String(20), nullable=False, server_default="user"),
        sa.Column("prenom", sa.String(120), nullable=True),
        sa.Column("nom", sa.String(120), nullable=True),
        sa.Column("email", sa.String(255), nullable=True, unique=True),
        sa.Column("created_at", TS, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_utilisateurs_organisation_id", "utilisateurs", ["organisation_id"])

    op.create_table(
        "entreprises",
        _id(),
        _org(),
        sa.Column("nom", sa.String(255), nullable=False),
        sa.Column("siret", sa.String(14), nullable=True),
        sa.Column("created_at", TS, nullable=False, server_default=sa.func.now()),
        sa.Column("archived_at", TS, nullable=True),
    )
    op.create_index("ix_entreprises_organisation_id", "entreprises", ["organisation_id"])

    op.create_table(
        "entreprise_agences",
        _id(),
        sa.Column("entreprise_id", UUID, sa.ForeignKey("entreprises.id", ondelete="CASCADE"), nullable=False),
        sa.Column("nom", sa.String(255), nullable=False),
        sa.Column("est_siege", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("actif", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", TS, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_entreprise_agences_entreprise_id", "entreprise_agences", ["entreprise_id"])

    op.create_table(
        "produits_formation",
        _id(),
        _org(),
        sa.Column("intitule", sa.String(255), nullable=False),
        sa.Column("code", sa.String(50), nullable=True),
        sa.Column("created_at", TS, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_produits_formation_organisation_id", "produits_formation", ["organisation_id"])

    op.create_table(
        "produit_tarifs",
        _id(),
        sa.Column("produit_id", UUID, sa.ForeignKey("produits_formation.id", ondelete="CASCADE"), nullable=False),
        sa.Column("libelle", sa.String(120), nullable=False, server_default="Tarif"),
        sa.Column("prix_ht", MONEY, nullable=False, server_default="0"),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", TS, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_produit_tarifs_produit_id", "produit_tarifs", ["produit_id"])
    op.create_index("ix_produit_tarifs_produit_default", "produit_tarifs", ["produit_id", "is_default"])

    op.create_table(
        "plans_formation",
        _id(),
        _org(),
        sa.Column("entreprise_id", UUID, sa.ForeignKey("entreprises.id", ondelete="CASCADE"), nullable=False),
        sa.Column("annee", sa.Integer(), nullable=False),
        sa.Column("nom", sa.String(255), nullable=True),
        sa.Column("budget_total", MONEY, nullable=False, server_default="0"),
        sa.Column("seuil_alerte_pct", sa.Integer(), nullable=False, server_default="80"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", TS, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", TS, nullable=False, server_default=sa.func.now()),
        sa.Column("archived_at", TS, nullable=True),
    )
    op.create_index("ix_plans_formation_organisation_id", "plans_formation", ["organisation_id"])
    op.create_index("ix_plans_formation_entreprise_id", "plans_formation", ["entreprise_id"])
    op.create_index(
        "uq_plans_formation_actif",
        "plans_formation",
        ["organisation_id", "entreprise_id", "annee"],
        unique=True,
        postgresql_where=sa.text("archived_at IS NULL"),
    )

    op.create_table(
        "plan_budgets_agence",
        _id(),
        _org(),
        sa.Column(
            "plan_formation_id", UUID, sa.ForeignKey("plans_formation.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("agence_id", UUID, sa.ForeignKey("entreprise_agences.id", ondelete="CASCADE"), nullable=True),
        sa.Column("budget_alloue", MONEY, nullable=False, server_default="0"),
        sa.Column("created_at", TS, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", TS, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_plan_budgets_agence_organisation_id", "plan_budgets_agence", ["organisation_id"])
    op.create_index("ix_plan_budgets_agence_plan_formation_id", "plan_budgets_agence", ["plan_formation_id"])
    op.create_index(
        "uq_plan_budgets_agence_plan_agence", "plan_budgets_agence", ["plan_formation_id", "agence_id"], unique=True
    )
    op.create_index(
        "uq_plan_budgets_agence_siege",
        "plan_budgets_agence",
        ["plan_formation_id"],
        unique=True,
        postgresql_where=sa.text("agence_id IS NULL"),
    )

    op.create_table(
        "besoins_formation",
        _id(),
        _org(),
        sa.Column("entreprise_id", UUID, sa.ForeignKey("entreprises.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "plan_formation_id", UUID, sa.ForeignKey("plans_formation.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column("intitule", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("public_cible", sa.String(255), nullable=True),
        sa.Column("annee_cible", sa.Integer(), nullable=False),
        sa.Column("type_besoin", sa.String(20), nullable=False, server_default="plan"),
        sa.Column("priorite", sa.String(20), nullable=False, server_default="moyenne"),
        sa.Column("statut", sa.String(20), nullable=False, server_default="a_etudier"),
        sa.Column("date_echeance", sa.Date(), nullable=True),
        sa.Column("produit_id", UUID, sa.ForeignKey("produits_formation.id", ondelete="SET NULL"), nullable=True),
        sa.Column("tarif_id", UUID, sa.ForeignKey("produit_tarifs.id", ondelete="SET NULL"), nullable=True),
        sa.Column("siege_social", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("agences_ids", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("session_id", UUID, nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", TS, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", TS, nullable=False, server_default=sa.func.now()),
        sa.Column("archived_at", TS, nullable=True),
    )
    op.create_index("ix_besoins_formation_organisation_id", "besoins_formation", ["organisation_id"])
    op.create_index("ix_besoins_formation_entreprise_id", "besoins_formation", ["entreprise_id"])
    op.create_index("ix_besoins_formation_plan_formation_id", "besoins_formation", ["plan_formation_id"])
    op.create_index(
        "ix_besoins_formation_cost_lookup",
        "besoins_formation",
        ["organisation_id", "entreprise_id", "annee_cible", "type_besoin"],
    )

    op.create_table(
        "historique_events",
        _id(),
        _org(),
        sa.Column("user_id", UUID, nullable=True),
        sa.Column("user_nom", sa.String(255), nullable=True),
        sa.Column("user_role", sa.String(20), nullable=True),
        sa.Column("origine", sa.String(20), nullable=False, server_default="backoffice"),
        sa.Column("module", sa.String(40), nullable=False),
        sa.Column("action", sa.String(40), nullable=False),
        sa.Column("entite_type", sa.String(60), nullable=False),
        sa.Column("entite_id", sa.String(64), nullable=False),
        sa.Column("entite_label", sa.String(255), nullable=True),
        sa.Column("entreprise_id", UUID, nullable=True),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("objet_href", sa.String(255), nullable=True),
        sa.Column("metadata", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("created_at", TS, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_historique_events_entreprise_id", "historique_events", ["entreprise_id"])
    op.create_index("ix_historique_events_request_id", "historique_events", ["request_id"])
    op.create_index("ix_historique_events_org_date", "historique_events", ["organisation_id", "created_at"])
    op.create_index("ix_historique_events_entite", "historique_events", ["entite_type", "entite_id"])

    op.create_table(
        "session_commanditaires",
        _id(),
        _org(),
        sa.Column("session_id", UUID, nullable=False),
        sa.Column("entreprise_id", UUID, sa.ForeignKey("entreprises.id", ondelete="SET NULL"), nullable=True),
        sa.Column("budget", MONEY, nullable=False, server_default="0"),
        sa.Column("statut_workflow", sa.String(30), nullable=False, server_default="analyse"),
        sa.Column("convention_statut", sa.String(30), nullable=False, server_default="aucune"),
        sa.Column("convention_signee", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", TS, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_session_commanditaires_organisation_id", "session_commanditaires", ["organisation_id"])
    op.create_index("ix_session_commanditaires_session_id", "session_commanditaires", ["session_id"])

    op.create_table(
        "devis",
        _id(),
        _org(),
        sa.Column("numero_affichage", sa.String(30), nullable=False),
        sa.Column("entreprise_id", UUID, sa.ForeignKey("entreprises.id", ondelete="SET NULL"), nullable=True),
        sa.Column("session_id", UUID, nullable=True),
        sa.Column(
            "commanditaire_id",
            UUID,
            sa.ForeignKey("session_commanditaires.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("date_emission", sa.Date(), nullable=False),
        sa.Column("objet", sa.Text(), nullable=True),
        sa.Column("conditions", sa.Text(), nullable=True),
        sa.Column("statut", sa.String(20), nullable=False, server_default="brouillon"),
        sa.Column("envoye_le", TS, nullable=True),
        sa.Column("signe_le", TS, nullable=True),
        sa.Column("total_ht", MONEY, nullable=False, server_default="0"),
        sa.Column("total_tva", MONEY, nullable=False, server_default="0"),
        sa.Column("total_ttc", MONEY, nullable=False, server_default="0"),
        sa.Column("created_at", TS, nullable=False, server_default=sa.func.now()),
        sa.Column("archived_at", TS, nullable=True),
    )
    op.create_index("ix_devis_organisation_id", "devis", ["organisation_id"])
    op.create_index("ix_devis_session_id", "devis", ["session_id"])
    op.create_index("ix_devis_statut", "devis", ["statut"])

    op.create_table(
        "devis_lignes",
        _id(),
        sa.Column("devis_id", UUID, sa.ForeignKey("devis.id", ondelete="CASCADE"), nullable=False),
        sa.Column("designation", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("quantite", sa.Numeric(10, 2), nullable=False, server_default="1"),
        sa.Column("prix_unitaire_ht", MONEY, nullable=False, server_default="0"),
        sa.Column("taux_tva", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("montant_ht", MONEY, nullable=False, server_default="0"),
        sa.Column("ordre", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_devis_lignes_devis_id", "devis_lignes", ["devis_id"])

    op.create_table(
        "factures",
        _id(),
        _org(),
        sa.Column("numero_affichage", sa.String(30), nullable=False),
        sa.Column("entreprise_id", UUID, sa.ForeignKey("entreprises.id", ondelete="SET NULL"), nullable=True),
        sa.Column("devis_id", UUID, sa.ForeignKey("devis.id", ondelete="SET NULL"), nullable=True),
        sa.Column("session_id", UUID, nullable=True),
        sa.Column(
            "commanditaire_id",
            UUID,
            sa.ForeignKey("session_commanditaires.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("type_facture", sa.String(20), nullable=False, server_default="standard"),
        sa.Column("pourcentage_acompte", sa.Numeric(5, 2), nullable=True),
        sa.Column("date_emission", sa.Date(), nullable=False),
        sa.Column("date_echeance", sa.Date(), nullable=True),
        sa.Column("objet", sa.Text(), nullable=True),
        sa.Column("conditions_paiement", sa.Text(), nullable=True),
        sa.Column("statut", sa.String(30), nullable=False, server_default="brouillon"),
        sa.Column("envoye_le", TS, nullable=True),
        sa.Column("total_ht", MONEY, nullable=False, server_default="0"),
        sa.Column("total_tva", MONEY, nullable=False, server_default="0"),
        sa.Column("total_ttc", MONEY, nullable=False, server_default="0"),
        sa.Column("montant_paye", MONEY, nullable=False, server_default="0"),
        sa.Column("created_at", TS, nullable=False, server_default=sa.func.now()),
        sa.Column("archived_at", TS, nullable=True),
    )
    op.create_index("ix_factures_organisation_id", "factures", ["organisation_id"])
    op.create_index("ix_factures_session_id", "factures", ["session_id"])
    op.create_index("ix_factures_commanditaire_id", "factures", ["commanditaire_id"])
    op.create_index("ix_factures_statut", "factures", ["statut"])
    op.create_index("ix_factures_org_date", "factures", ["organisation_id", "date_emission"])

    op.create_table(
        "facture_lignes",
        _id(),
        sa.Column("facture_id", UUID, sa.ForeignKey("factures.id", ondelete="CASCADE"), nullable=False),
        sa.Column("designation", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("quantite", sa.Numeric(10, 2), nullable=False, server_default="1"),
        sa.Column("prix_unitaire_ht", MONEY, nullable=False, server_default="0"),
        sa.Column("taux_tva", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("montant_ht", MONEY, nullable=False, server_default="0"),
        sa.Column("ordre", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_facture_lignes_facture_id", "facture_lignes", ["facture_id"])

    op.create_table(
        "facture_paiements",
        _id(),
        sa.Column("facture_id", UUID, sa.ForeignKey("factures.id", ondelete="CASCADE"), nullable=False),
        sa.Column("date_paiement", sa.Date(), nullable=False),
        sa.Column("montant", MONEY, nullable=False),
        sa.Column("mode", sa.String(20), nullable=True),
        sa.Column("reference", sa.String(120), nullable=True),
        sa.Column("created_at", TS, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_facture_paiements_facture_id", "facture_paiements", ["facture_id"])

    op.create_table(
        "compteurs_numeros",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _org(),
        sa.Column("prefixe", sa.String(5), nullable=False),
        sa.Column("annee", sa.Integer(), nullable=False),
        sa.Column("dernier_numero", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("organisation_id", "prefixe", "annee", name="uq_compteurs_numeros_cle"),
    )


def downgrade() -> None:
    """Retour arrière des changements de schéma."""
    for table in (
        "compteurs_numeros",
        "facture_paiements",
        "facture_lignes",
        "factures",
        "devis_lignes",
        "devis",
        "session_commanditaires",
        "historique_events",
        "besoins_formation",
        "plan_budgets_agence",
        "plans_formation",
        "produit_tarifs",
        "produits_formation",
        "entreprise_agences",
        "entreprises",
        "utilisateurs",
    ):
        op.drop_table(table)
