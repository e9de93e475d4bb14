"""
Familiarisation template hierarchy.

Models:
    - CatalogRevision:  one row per authoring change to the task catalog
    - SectionTemplate:  named grouping of tasks (A, B, C, ...), optionally
                        restricted to one ship type
    - TaskTemplate:     a single STCW familiarisation item within a section

Architecture:
    ShipType ──1:N──▶ SectionTemplate ──1:N──▶ TaskTemplate

Applicability:
    A task applies to a cadet on a vessel when its ``cadet_category`` equals
    the cadet's category AND its section is either unrestricted
    (``ship_type_id IS NULL``) or restricted to the vessel's ship type.

Versioning:
    Task rows are never rewritten. A task is visible from the revision that
    introduced it (``introduced_in``) up to, but not including, the revision
    that retired it (``retired_in``). Editing a task retires the row and
    inserts a successor with the same code. Each assignment is pinned to the
    catalog revision current when it was created, so later authoring never
    moves the figures of an existing assignment. Revision 0 is the baseline
    catalog.
"""

from datetime import datetime, timezone

from keel.models import db


# ── Constants ────────────────────────────────────────────────────────────────

CADET_CATEGORIES = ("DECK", "ENGINE", "ETO", "CATERING", "RATING")

BASELINE_REVISION = 0


def normalise_category(value):
    """Upper-case and strip a category string; None stays None."""
    if value is None:
        return None
    return str(value).strip().upper()


def is_valid_category(value):
    """Return True if ``value`` is one of the recognised cadet categories."""
    return normalise_category(value) in CADET_CATEGORIES


# ═════════════════════════════════════════════════════════════════════════════
# 1. CatalogRevision
# ═════════════════════════════════════════════════════════════════════════════


class CatalogRevision(db.Model):
    """A numbered change to the task catalog. Ids only ever grow."""

    __tablename__ = "fam_catalog_revisions"

    id = db.Column(db.Integer, primary_key=True)
    summary = db.Column(db.String(200), nullable=False)
    actor_id = db.Column(db.String(200), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "summary": self.summary,
            "actor_id": self.actor_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<CatalogRevision {self.id}: {self.summary}>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. SectionTemplate
# ═════════════════════════════════════════════════════════════════════════════


class SectionTemplate(db.Model):
    """
    A familiarisation section. Display order is ``order_number``.
    ``ship_type_id`` NULL means the section applies to every ship type.
    """

    __tablename__ = "fam_section_templates"

    id = db.Column(db.Integer, primary_key=True)
    ship_type_id = db.Column(
        db.Integer,
        db.ForeignKey("ship_types.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
        comment="NULL = applies to all ship types",
    )
    section_code = db.Column(db.String(20), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    order_number = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    tasks = db.relationship(
        "TaskTemplate",
        back_populates="section",
        lazy="dynamic",
        order_by="TaskTemplate.order_number",
    )

    __table_args__ = (
        db.UniqueConstraint("ship_type_id", "section_code", name="uq_section_ship_type_code"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "ship_type_id": self.ship_type_id,
            "section_code": self.section_code,
            "title": self.title,
            "order_number": self.order_number,
        }

    def __repr__(self):
        return f"<SectionTemplate {self.id}: {self.section_code} {self.title}>"


# ═════════════════════════════════════════════════════════════════════════════
# 3. TaskTemplate
# ═════════════════════════════════════════════════════════════════════════════


class TaskTemplate(db.Model):
    """
    A familiarisation task. ``task_code`` is unique among the current
    (unretired) tasks of its section (e.g. "A.1", "A.2"). Only mandatory
    tasks gate sign-off.
    """

    __tablename__ = "fam_task_templates"

    id = db.Column(db.Integer, primary_key=True)
    section_id = db.Column(
        db.Integer,
        db.ForeignKey("fam_section_templates.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    cadet_category = db.Column(
        db.String(20), nullable=False,
        comment="DECK | ENGINE | ETO | CATERING | RATING",
    )
    task_code = db.Column(db.String(20), nullable=False)
    task_description = db.Column(db.Text, nullable=False)
    order_number = db.Column(db.Integer, nullable=False, default=0)
    is_mandatory = db.Column(db.Boolean, nullable=False, default=True)
    introduced_in = db.Column(
        db.Integer, nullable=False, default=BASELINE_REVISION,
        comment="Catalog revision that added this row",
    )
    retired_in = db.Column(
        db.Integer, nullable=True,
        comment="Catalog revision that superseded this row; NULL = current",
    )
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=True,
        onupdate=lambda: datetime.now(timezone.utc),
    )

    section = db.relationship("SectionTemplate", back_populates="tasks")

    __table_args__ = (
        db.Index(
            "uq_task_section_code_current",
            "section_id",
            "task_code",
            unique=True,
            sqlite_where=db.text("retired_in IS NULL"),
            postgresql_where=db.text("retired_in IS NULL"),
        ),
        db.Index("ix_task_category_section", "cadet_category", "section_id"),
    )

    @property
    def is_current(self):
        return self.retired_in is None

    def visible_at(self, revision):
        """True if this row belongs to the catalog as of ``revision``.

        ``None`` means the current catalog.
        """
        if revision is None:
            return self.retired_in is None
        if self.introduced_in > revision:
            return False
        return self.retired_in is None or self.retired_in > revision

    def to_dict(self):
        return {
            "id": self.id,
            "section_id": self.section_id,
            "cadet_category": self.cadet_category,
            "task_code": self.task_code,
            "task_description": self.task_description,
            "order_number": self.order_number,
            "is_mandatory": self.is_mandatory,
            "introduced_in": self.introduced_in,
            "retired_in": self.retired_in,
        }

    def __repr__(self):
        return f"<TaskTemplate {self.id}: {self.task_code} ({self.cadet_category})>"
