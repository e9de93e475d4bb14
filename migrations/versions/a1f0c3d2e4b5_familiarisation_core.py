"""familiarisation_core

Creates the familiarisation schema:
  - ship_types, vessels, cadets               - reference data
  - fam_section_templates, fam_task_templates - checklist templates
  - cadet_vessel_assignments                  - postings, one ACTIVE per cadet
  - cadet_task_completions                    - append-only sign-offs
  - cadet_task_completion_attachments         - evidence file references

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via db.create_all()
in a development environment.

Revision ID: a1f0c3d2e4b5
Revises:
Create Date: 2026-10-19 09:12:44.513208
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = 'a1f0c3d2e4b5'
down_revision = None
branch_labels = None
depends_on = None


_ACTIVE_ONLY = sa.text("status = 'ACTIVE'")


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Reference data ────────────────────────────────────────────────────
    if "ship_types" not in existing:
        op.create_table(
            "ship_types",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("name"),
        )

    if "vessels" not in existing:
        op.create_table(
            "vessels",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("imo_number", sa.String(length=20), nullable=True),
            sa.Column("ship_type_id", sa.Integer(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.ForeignKeyConstraint(["ship_type_id"], ["ship_types.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("imo_number"),
        )
        op.create_index("ix_vessels_ship_type_id", "vessels", ["ship_type_id"])

    if "cadets" not in existing:
        op.create_table(
            "cadets",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("full_name", sa.String(length=200), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=True),
            sa.Column(
                "category", sa.String(length=20), nullable=False,
                comment="DECK | ENGINE | ETO | CATERING | RATING",
            ),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("email"),
        )

    # ── Templates ─────────────────────────────────────────────────────────
    if "fam_section_templates" not in existing:
        op.create_table(
            "fam_section_templates",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column(
                "ship_type_id", sa.Integer(), nullable=True,
                comment="NULL = applies to every ship type",
            ),
            sa.Column("section_code", sa.String(length=20), nullable=False),
            sa.Column("title", sa.String(length=200), nullable=False),
            sa.Column("order_number", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["ship_type_id"], ["ship_types.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("ship_type_id", "section_code", name="uq_section_ship_type_code"),
        )
        op.create_index(
            "ix_fam_section_templates_ship_type_id", "fam_section_templates", ["ship_type_id"]
        )

    if "fam_task_templates" not in existing:
        op.create_table(
            "fam_task_templates",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("section_id", sa.Integer(), nullable=False),
            sa.Column("cadet_category", sa.String(length=20), nullable=False),
            sa.Column("task_code", sa.String(length=20), nullable=False),
            sa.Column("task_description", sa.Text(), nullable=False),
            sa.Column("order_number", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("is_mandatory", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(
                ["section_id"], ["fam_section_templates.id"], ondelete="RESTRICT"
            ),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("section_id", "task_code", name="uq_task_section_code"),
        )
        op.create_index(
            "ix_fam_task_templates_section_id", "fam_task_templates", ["section_id"]
        )
        op.create_index(
            "ix_task_category_section", "fam_task_templates", ["cadet_category", "section_id"]
        )

    # ── Assignments ───────────────────────────────────────────────────────
    if "cadet_vessel_assignments" not in existing:
        op.create_table(
            "cadet_vessel_assignments",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("cadet_id", sa.Integer(), nullable=False),
            sa.Column("vessel_id", sa.Integer(), nullable=False),
            sa.Column("start_date", sa.Date(), nullable=False),
            sa.Column("end_date", sa.Date(), nullable=True, comment="NULL = still on board"),
            sa.Column(
                "status", sa.String(length=20), nullable=False, server_default="ACTIVE",
                comment="ACTIVE | COMPLETED | CANCELLED",
            ),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["cadet_id"], ["cadets.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(["vessel_id"], ["vessels.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
            sa.CheckConstraint(
                "status IN ('ACTIVE', 'COMPLETED', 'CANCELLED')", name="ck_assignment_status"
            ),
        )
        op.create_index(
            "ix_cadet_vessel_assignments_cadet_id", "cadet_vessel_assignments", ["cadet_id"]
        )
        op.create_index(
            "ix_cadet_vessel_assignments_vessel_id", "cadet_vessel_assignments", ["vessel_id"]
        )
        op.create_index(
            "ix_assignment_cadet_vessel", "cadet_vessel_assignments", ["cadet_id", "vessel_id"]
        )
        # At most one ACTIVE assignment per cadet, enforced by the database.
        op.create_index(
            "uq_assignment_one_active_per_cadet",
            "cadet_vessel_assignments",
            ["cadet_id"],
            unique=True,
            sqlite_where=_ACTIVE_ONLY,
            postgresql_where=_ACTIVE_ONLY,
        )

    # ── Completions ───────────────────────────────────────────────────────
    if "cadet_task_completions" not in existing:
        op.create_table(
            "cadet_task_completions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("assignment_id", sa.Integer(), nullable=False),
            sa.Column("task_template_id", sa.Integer(), nullable=False),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("signed_by", sa.String(length=200), nullable=False),
            sa.Column("remarks", sa.Text(), nullable=True),
            sa.Column("remarks_updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(
                ["assignment_id"], ["cadet_vessel_assignments.id"], ondelete="RESTRICT"
            ),
            sa.ForeignKeyConstraint(
                ["task_template_id"], ["fam_task_templates.id"], ondelete="RESTRICT"
            ),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint(
                "assignment_id", "task_template_id", name="uq_completion_assignment_task"
            ),
        )
        op.create_index(
            "ix_cadet_task_completions_assignment_id", "cadet_task_completions", ["assignment_id"]
        )
        op.create_index(
            "ix_cadet_task_completions_task_template_id",
            "cadet_task_completions",
            ["task_template_id"],
        )

    if "cadet_task_completion_attachments" not in existing:
        op.create_table(
            "cadet_task_completion_attachments",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("completion_id", sa.Integer(), nullable=False),
            sa.Column("file_name", sa.String(length=255), nullable=False),
            sa.Column("file_url", sa.String(length=1000), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(
                ["completion_id"], ["cadet_task_completions.id"], ondelete="RESTRICT"
            ),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "ix_cadet_task_completion_attachments_completion_id",
            "cadet_task_completion_attachments",
            ["completion_id"],
        )


def downgrade():
    op.drop_table("cadet_task_completion_attachments")
    op.drop_table("cadet_task_completions")
    op.drop_index("uq_assignment_one_active_per_cadet", table_name="cadet_vessel_assignments")
    op.drop_table("cadet_vessel_assignments")
    op.drop_table("fam_task_templates")
    op.drop_table("fam_section_templates")
    op.drop_table("cadets")
    op.drop_table("vessels")
    op.drop_table("ship_types")
