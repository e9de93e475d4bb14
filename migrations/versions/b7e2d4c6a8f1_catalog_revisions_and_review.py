"""catalog_revisions_and_review

Versioned template catalog and sign-off review workflow.

  - fam_catalog_revisions                     - one row per catalog change
  - fam_task_templates.introduced_in / retired_in; the (section_id, task_code)
    unique constraint becomes a partial unique index over current rows
  - cadet_vessel_assignments.catalog_revision - revision the assignment is
    measured against; existing rows stay on the baseline (0)
  - cadet_task_completions.review_status      - RECORDED for existing rows
  - cadet_task_completion_reviews             - review audit rows

Revision ID: b7e2d4c6a8f1
Revises: a1f0c3d2e4b5
Create Date: 2026-10-19 15:40:02.118734
"""
from alembic import op
import sqlalchemy as sa


revision = "b7e2d4c6a8f1"
down_revision = "a1f0c3d2e4b5"
branch_labels = None
depends_on = None


_CURRENT_ONLY = sa.text("retired_in IS NULL")


def _table_names(bind) -> set[str]:
    return set(sa.inspect(bind).get_table_names())


def _columns(bind, table_name: str) -> set[str]:
    return {c["name"] for c in sa.inspect(bind).get_columns(table_name)}


def _unique_constraints(bind, table_name: str) -> set[str]:
    insp = sa.inspect(bind)
    return {c["name"] for c in insp.get_unique_constraints(table_name) if c.get("name")}


def _indexes(bind, table_name: str) -> set[str]:
    insp = sa.inspect(bind)
    return {i["name"] for i in insp.get_indexes(table_name) if i.get("name")}


def upgrade():
    bind = op.get_bind()
    tables = _table_names(bind)

    if "fam_catalog_revisions" not in tables:
        op.create_table(
            "fam_catalog_revisions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("summary", sa.String(length=200), nullable=False),
            sa.Column("actor_id", sa.String(length=200), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )

    # ── Task versioning ───────────────────────────────────────────────────
    cols = _columns(bind, "fam_task_templates")
    uniques = _unique_constraints(bind, "fam_task_templates")
    with op.batch_alter_table("fam_task_templates") as batch_op:
        if "introduced_in" not in cols:
            batch_op.add_column(sa.Column(
                "introduced_in", sa.Integer(), nullable=False, server_default="0",
                comment="Catalog revision that added this row",
            ))
        if "retired_in" not in cols:
            batch_op.add_column(sa.Column(
                "retired_in", sa.Integer(), nullable=True,
                comment="Catalog revision that superseded this row; NULL = current",
            ))
        if "uq_task_section_code" in uniques:
            batch_op.drop_constraint("uq_task_section_code", type_="unique")

    if "uq_task_section_code_current" not in _indexes(bind, "fam_task_templates"):
        op.create_index(
            "uq_task_section_code_current",
            "fam_task_templates",
            ["section_id", "task_code"],
            unique=True,
            sqlite_where=_CURRENT_ONLY,
            postgresql_where=_CURRENT_ONLY,
        )

    # ── Assignment pinning ────────────────────────────────────────────────
    if "catalog_revision" not in _columns(bind, "cadet_vessel_assignments"):
        with op.batch_alter_table("cadet_vessel_assignments") as batch_op:
            batch_op.add_column(sa.Column(
                "catalog_revision", sa.Integer(), nullable=False, server_default="0",
                comment="Template catalog revision this assignment is measured against",
            ))

    # ── Review workflow ───────────────────────────────────────────────────
    if "review_status" not in _columns(bind, "cadet_task_completions"):
        with op.batch_alter_table("cadet_task_completions") as batch_op:
            batch_op.add_column(sa.Column(
                "review_status", sa.String(length=20), nullable=False,
                server_default="RECORDED",
                comment="RECORDED | SUBMITTED | CTO_APPROVED | MASTER_APPROVED | REJECTED",
            ))
    if "ix_completion_review_status" not in _indexes(bind, "cadet_task_completions"):
        op.create_index(
            "ix_completion_review_status", "cadet_task_completions", ["review_status"]
        )

    if "cadet_task_completion_reviews" not in tables:
        op.create_table(
            "cadet_task_completion_reviews",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("completion_id", sa.Integer(), nullable=False),
            sa.Column("from_status", sa.String(length=20), nullable=False),
            sa.Column("to_status", sa.String(length=20), nullable=False),
            sa.Column(
                "actor_role", sa.String(length=20), nullable=False,
                comment="CADET | CTO | MASTER",
            ),
            sa.Column("actor_id", sa.String(length=200), nullable=True),
            sa.Column("comment", sa.Text(), nullable=True, comment="Required when rejecting"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(
                ["completion_id"], ["cadet_task_completions.id"], ondelete="RESTRICT"
            ),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "ix_cadet_task_completion_reviews_completion_id",
            "cadet_task_completion_reviews",
            ["completion_id"],
        )


def downgrade():
    op.drop_table("cadet_task_completion_reviews")
    op.drop_index("ix_completion_review_status", table_name="cadet_task_completions")
    with op.batch_alter_table("cadet_task_completions") as batch_op:
        batch_op.drop_column("review_status")
    with op.batch_alter_table("cadet_vessel_assignments") as batch_op:
        batch_op.drop_column("catalog_revision")
    op.drop_index("uq_task_section_code_current", table_name="fam_task_templates")
    # fails while superseded rows exist; they share codes with their successors
    with op.batch_alter_table("fam_task_templates") as batch_op:
        batch_op.drop_column("retired_in")
        batch_op.drop_column("introduced_in")
        batch_op.create_unique_constraint("uq_task_section_code", ["section_id", "task_code"])
    op.drop_table("fam_catalog_revisions")
