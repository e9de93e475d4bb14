"""
Cadet ↔ vessel assignment.

An assignment is a bounded period of a cadet aboard one vessel; all
familiarisation progress is scoped to it.

Lifecycle states:
    ACTIVE ──▶ COMPLETED
    ACTIVE ──▶ CANCELLED

COMPLETED and CANCELLED are terminal. ``end_date`` is written exactly once,
by the close transition. Rows are never deleted.

Progress is measured against the template catalog as of ``catalog_revision``,
filled in by the INSERT itself from the latest revision at that moment.

Storage-level invariant:
    ``uq_assignment_one_active_per_cadet`` is a partial unique index on
    ``cadet_id WHERE status = 'ACTIVE'``, so two concurrent creations for the
    same cadet cannot both commit.
"""

from datetime import datetime, timezone

from sqlalchemy import func, select

from keel.models import db
from keel.models.familiarisation import BASELINE_REVISION, CatalogRevision


# ── Constants ────────────────────────────────────────────────────────────────

STATUS_ACTIVE = "ACTIVE"
STATUS_COMPLETED = "COMPLETED"
STATUS_CANCELLED = "CANCELLED"

ASSIGNMENT_STATUSES = {STATUS_ACTIVE, STATUS_COMPLETED, STATUS_CANCELLED}

CLOSING_STATUSES = {STATUS_COMPLETED, STATUS_CANCELLED}


# ── Lifecycle Transition Guards ──────────────────────────────────────────────

ASSIGNMENT_TRANSITIONS = {
    STATUS_ACTIVE:    [STATUS_COMPLETED, STATUS_CANCELLED],
    STATUS_COMPLETED: [],
    STATUS_CANCELLED: [],
}


def validate_assignment_transition(old_status, new_status):
    """Return True if VesselAssignment status transition is valid."""
    return new_status in ASSIGNMENT_TRANSITIONS.get(old_status, [])


class VesselAssignment(db.Model):
    """A cadet posted to a vessel from ``start_date`` until ``end_date``."""

    __tablename__ = "cadet_vessel_assignments"

    id = db.Column(db.Integer, primary_key=True)
    cadet_id = db.Column(
        db.Integer,
        db.ForeignKey("cadets.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    vessel_id = db.Column(
        db.Integer,
        db.ForeignKey("vessels.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=True, comment="NULL = still on board")
    status = db.Column(
        db.String(20),
        nullable=False,
        default=STATUS_ACTIVE,
        comment="ACTIVE | COMPLETED | CANCELLED",
    )
    notes = db.Column(db.Text, nullable=True)
    catalog_revision = db.Column(
        db.Integer,
        nullable=False,
        default=select(
            func.coalesce(func.max(CatalogRevision.id), BASELINE_REVISION)
        ).scalar_subquery(),
        comment="Template catalog revision this assignment is measured against",
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
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    cadet = db.relationship("Cadet", lazy="joined")
    vessel = db.relationship("Vessel", lazy="joined")
    completions = db.relationship(
        "TaskCompletion",
        back_populates="assignment",
        lazy="dynamic",
    )

    __table_args__ = (
        db.Index(
            "uq_assignment_one_active_per_cadet",
            "cadet_id",
            unique=True,
            sqlite_where=db.text("status = 'ACTIVE'"),
            postgresql_where=db.text("status = 'ACTIVE'"),
        ),
        db.Index("ix_assignment_cadet_vessel", "cadet_id", "vessel_id"),
        db.CheckConstraint(
            "status IN ('ACTIVE', 'COMPLETED', 'CANCELLED')",
            name="ck_assignment_status",
        ),
    )

    @property
    def is_active(self):
        return self.status == STATUS_ACTIVE

    def to_dict(self):
        return {
            "id": self.id,
            "cadet_id": self.cadet_id,
            "vessel_id": self.vessel_id,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "status": self.status,
            "notes": self.notes,
            "catalog_revision": self.catalog_revision,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
        }

    def __repr__(self):
        return (
            f"<VesselAssignment {self.id}: cadet={self.cadet_id} "
            f"vessel={self.vessel_id} {self.status}>"
        )
