"""
Task completion records - append-only audit trail.

Models:
    - TaskCompletion:        one row per (assignment, task template) the cadet
                             has completed and had signed off
    - CompletionAttachment:  evidence file reference (name + stored URL); the
                             file itself lives in the attachment store
    - CompletionReview:      one row per sign-off review step (submit, CTO or
                             Master decision); the review audit trail

Business rules:
    - At most one TaskCompletion per (assignment_id, task_template_id),
      enforced by ``uq_completion_assignment_task``.
    - Rows are never deleted; ``completed_at`` and ``signed_by`` are never
      rewritten. Only ``remarks`` may be changed, through an explicit call.
    - ``review_status`` follows REVIEW_TRANSITIONS. MASTER_APPROVED is final:
      nothing about the completion changes after it.
"""

from datetime import datetime, timezone

from keel.models import db


# ── Review workflow ──────────────────────────────────────────────────────────

REVIEW_RECORDED = "RECORDED"
REVIEW_SUBMITTED = "SUBMITTED"
REVIEW_CTO_APPROVED = "CTO_APPROVED"
REVIEW_MASTER_APPROVED = "MASTER_APPROVED"
REVIEW_REJECTED = "REJECTED"

REVIEW_STATUSES = (
    REVIEW_RECORDED,
    REVIEW_SUBMITTED,
    REVIEW_CTO_APPROVED,
    REVIEW_MASTER_APPROVED,
    REVIEW_REJECTED,
)

ROLE_CADET = "CADET"
ROLE_CTO = "CTO"
ROLE_MASTER = "MASTER"

REVIEW_ROLES = (ROLE_CADET, ROLE_CTO, ROLE_MASTER)

# current status → {role: [statuses that role may move it to]}
REVIEW_TRANSITIONS = {
    REVIEW_RECORDED:        {ROLE_CADET: [REVIEW_SUBMITTED]},
    REVIEW_REJECTED:        {ROLE_CADET: [REVIEW_SUBMITTED]},
    REVIEW_SUBMITTED:       {ROLE_CTO: [REVIEW_CTO_APPROVED, REVIEW_REJECTED]},
    REVIEW_CTO_APPROVED:    {ROLE_MASTER: [REVIEW_MASTER_APPROVED, REVIEW_REJECTED]},
    REVIEW_MASTER_APPROVED: {},
}


def validate_review_transition(old_status, role, new_status):
    """Return True if ``role`` may move a completion from old_status to new_status."""
    return new_status in REVIEW_TRANSITIONS.get(old_status, {}).get(role, [])


def review_roles_for(status):
    """Roles that may act on a completion in ``status``."""
    return sorted(REVIEW_TRANSITIONS.get(status, {}))


class TaskCompletion(db.Model):
    """Sign-off of one familiarisation task within one assignment."""

    __tablename__ = "cadet_task_completions"

    id = db.Column(db.Integer, primary_key=True)
    assignment_id = db.Column(
        db.Integer,
        db.ForeignKey("cadet_vessel_assignments.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    task_template_id = db.Column(
        db.Integer,
        db.ForeignKey("fam_task_templates.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    completed_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    signed_by = db.Column(
        db.String(200),
        nullable=False,
        comment="Identity of the signing-off officer or cadet",
    )
    remarks = db.Column(db.Text, nullable=True)
    remarks_updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    review_status = db.Column(
        db.String(20),
        nullable=False,
        default=REVIEW_RECORDED,
        comment="RECORDED | SUBMITTED | CTO_APPROVED | MASTER_APPROVED | REJECTED",
    )
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    assignment = db.relationship("VesselAssignment", back_populates="completions")
    task = db.relationship("TaskTemplate", lazy="joined")
    attachments = db.relationship(
        "CompletionAttachment",
        back_populates="completion",
        lazy="selectin",
        order_by="CompletionAttachment.id",
    )
    reviews = db.relationship(
        "CompletionReview",
        back_populates="completion",
        lazy="dynamic",
        order_by="CompletionReview.id",
    )

    __table_args__ = (
        db.UniqueConstraint(
            "assignment_id", "task_template_id",
            name="uq_completion_assignment_task",
        ),
        db.Index("ix_completion_review_status", "review_status"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "assignment_id": self.assignment_id,
            "task_template_id": self.task_template_id,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "signed_by": self.signed_by,
            "remarks": self.remarks,
            "remarks_updated_at": (
                self.remarks_updated_at.isoformat() if self.remarks_updated_at else None
            ),
            "review_status": self.review_status,
            "attachments": [a.to_dict() for a in self.attachments],
        }

    def __repr__(self):
        return (
            f"<TaskCompletion {self.id}: assignment={self.assignment_id} "
            f"task={self.task_template_id}>"
        )


class CompletionAttachment(db.Model):
    """Reference to an evidence file uploaded for a completion."""

    __tablename__ = "cadet_task_completion_attachments"

    id = db.Column(db.Integer, primary_key=True)
    completion_id = db.Column(
        db.Integer,
        db.ForeignKey("cadet_task_completions.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    file_name = db.Column(db.String(255), nullable=False)
    file_url = db.Column(db.String(1000), nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    completion = db.relationship("TaskCompletion", back_populates="attachments")

    def to_dict(self):
        return {
            "id": self.id,
            "file_name": self.file_name,
            "file_url": self.file_url,
            "uploaded_at": self.created_at.isoformat() if self.created_at else None,
        }


class CompletionReview(db.Model):
    """One step of the sign-off review of a completion. Insert-only."""

    __tablename__ = "cadet_task_completion_reviews"

    id = db.Column(db.Integer, primary_key=True)
    completion_id = db.Column(
        db.Integer,
        db.ForeignKey("cadet_task_completions.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    from_status = db.Column(db.String(20), nullable=False)
    to_status = db.Column(db.String(20), nullable=False)
    actor_role = db.Column(db.String(20), nullable=False, comment="CADET | CTO | MASTER")
    actor_id = db.Column(db.String(200), nullable=True)
    comment = db.Column(db.Text, nullable=True, comment="Required when rejecting")
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    completion = db.relationship("TaskCompletion", back_populates="reviews")

    def to_dict(self):
        return {
            "id": self.id,
            "completion_id": self.completion_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "actor_role": self.actor_role,
            "actor_id": self.actor_id,
            "comment": self.comment,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return (
            f"<CompletionReview {self.id}: completion={self.completion_id} "
            f"{self.from_status}->{self.to_status} by {self.actor_role}>"
        )
