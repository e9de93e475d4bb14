"""
Assignment Lifecycle - Service Layer.

Business logic for:
    - Creation:    one ACTIVE assignment per cadet (index-backed, race-safe)
    - Closing:     ACTIVE → COMPLETED | CANCELLED via a conditional UPDATE,
                   end_date written once
    - History:     lazy, restartable iteration newest-first, per cadet or vessel
    - Resolution:  which assignment a (cadet, vessel) progress query targets

Reassigning a cadet is always an explicit close followed by a new
create_assignment; nothing here closes an assignment implicitly.
"""

import logging
from datetime import datetime, timezone

from flask import g, has_app_context
from sqlalchemy import case, func, select, update
from sqlalchemy.exc import SQLAlchemyError

from keel.core.exceptions import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from keel.models import db
from keel.models.assignment import (
    CLOSING_STATUSES,
    STATUS_ACTIVE,
    VesselAssignment,
    validate_assignment_transition,
)
from keel.models.reference import Cadet, Vessel
from keel.utils.helpers import commit_or_raise, parse_date_input

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _actor_id():
    return getattr(g, "actor_id", None) if has_app_context() else None


def _log_extra(assignment: VesselAssignment, **kwargs) -> dict:
    extra = {
        "assignment_id": assignment.id,
        "cadet_id": assignment.cadet_id,
        "vessel_id": assignment.vessel_id,
        "actor_id": _actor_id(),
    }
    extra.update(kwargs)
    return extra


# ── Lookups ──────────────────────────────────────────────────────────────────


def get_cadet(cadet_id: int) -> Cadet:
    cadet = db.session.get(Cadet, cadet_id)
    if cadet is None:
        raise NotFoundError(resource="Cadet", resource_id=cadet_id)
    return cadet


def get_vessel(vessel_id: int) -> Vessel:
    vessel = db.session.get(Vessel, vessel_id)
    if vessel is None:
        raise NotFoundError(resource="Vessel", resource_id=vessel_id)
    return vessel


def get_assignment(assignment_id: int) -> VesselAssignment:
    assignment = db.session.get(VesselAssignment, assignment_id)
    if assignment is None:
        raise NotFoundError(resource="VesselAssignment", resource_id=assignment_id)
    return assignment


def get_active_assignment(cadet_id: int) -> VesselAssignment | None:
    """Return the cadet's ACTIVE assignment, or None."""
    return db.session.execute(
        select(VesselAssignment).where(
            VesselAssignment.cadet_id == cadet_id,
            VesselAssignment.status == STATUS_ACTIVE,
        )
    ).scalar_one_or_none()


def resolve_assignment(cadet_id: int, vessel_id: int) -> VesselAssignment:
    """Pick the assignment a (cadet, vessel) progress or TRB query refers to.

    The ACTIVE assignment wins; otherwise the most recently closed one
    (latest end_date, then latest start_date).

    Raises:
        NotFoundError: no assignment links this cadet and vessel.
    """
    assignment = db.session.execute(
        select(VesselAssignment)
        .where(
            VesselAssignment.cadet_id == cadet_id,
            VesselAssignment.vessel_id == vessel_id,
        )
        .order_by(
            case((VesselAssignment.status == STATUS_ACTIVE, 0), else_=1),
            VesselAssignment.end_date.desc(),
            VesselAssignment.start_date.desc(),
            VesselAssignment.id.desc(),
        )
        .limit(1)
    ).scalar_one_or_none()
    if assignment is None:
        raise NotFoundError(
            resource="VesselAssignment", resource_id=f"cadet={cadet_id},vessel={vessel_id}"
        )
    return assignment


# ── Lifecycle ────────────────────────────────────────────────────────────────


def create_assignment(
    cadet_id: int,
    vessel_id: int,
    start_date,
    notes: str | None = None,
) -> VesselAssignment:
    """Post a cadet to a vessel. The new assignment is ACTIVE.

    Raises:
        ValidationError: start_date missing or malformed; vessel inactive.
        NotFoundError:   unknown cadet or vessel.
        ConflictError:   the cadet already has an ACTIVE assignment. Also
                         raised when a concurrent request wins the race and
                         the partial unique index rejects this insert.
    """
    start = parse_date_input(start_date, "start_date")
    cadet = get_cadet(cadet_id)
    vessel = get_vessel(vessel_id)
    if not vessel.is_active:
        raise ValidationError("Vessel is not active", details={"vessel_id": vessel.id})

    conflict = ConflictError("VesselAssignment", "ACTIVE assignment for cadet_id", str(cadet.id))
    if get_active_assignment(cadet.id) is not None:
        raise conflict

    assignment = VesselAssignment(
        cadet_id=cadet.id,
        vessel_id=vessel.id,
        start_date=start,
        status=STATUS_ACTIVE,
        notes=(notes or "").strip() or None,
    )
    db.session.add(assignment)
    commit_or_raise(conflict)

    logger.info(
        "Assignment created",
        extra=_log_extra(assignment, start_date=start.isoformat()),
    )
    return assignment


def _merge_notes(existing: str | None, closing: str | None) -> str | None:
    closing = (closing or "").strip()
    if not closing:
        return existing
    if existing:
        return f"{existing}\n{closing}"
    return closing


def close_assignment(
    assignment_id: int,
    end_date,
    status: str,
    closing_notes: str | None = None,
) -> VesselAssignment:
    """Close an ACTIVE assignment as COMPLETED or CANCELLED.

    The transition is a single ``UPDATE … WHERE status = 'ACTIVE'``: if a
    concurrent close got there first, no row matches and the call fails
    instead of overwriting end_date.

    Raises:
        NotFoundError:     unknown assignment.
        InvalidStateError: assignment is not ACTIVE.
        ValidationError:   status not COMPLETED/CANCELLED, end_date missing or
                           malformed, or end_date before start_date.
    """
    assignment = get_assignment(assignment_id)
    if assignment.status != STATUS_ACTIVE:
        raise InvalidStateError("VesselAssignment", assignment.status, "close")

    new_status = status if isinstance(status, str) else None
    if new_status not in CLOSING_STATUSES:
        raise ValidationError(
            f"status must be one of: {', '.join(sorted(CLOSING_STATUSES))}",
            details={"status": status},
        )
    if not validate_assignment_transition(assignment.status, new_status):
        raise InvalidStateError("VesselAssignment", assignment.status, f"move to {new_status}")

    end = parse_date_input(end_date, "end_date")
    if end < assignment.start_date:
        raise ValidationError(
            "end_date cannot be before start_date",
            details={"end_date": end.isoformat(), "start_date": assignment.start_date.isoformat()},
        )

    now = _utcnow()
    try:
        result = db.session.execute(
            update(VesselAssignment)
            .where(
                VesselAssignment.id == assignment.id,
                VesselAssignment.status == STATUS_ACTIVE,
            )
            .values(
                status=new_status,
                end_date=end,
                notes=_merge_notes(assignment.notes, closing_notes),
                closed_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Database error closing assignment id=%s", assignment.id)
        raise StorageError() from exc

    if result.rowcount == 0:
        db.session.rollback()
        current = db.session.get(VesselAssignment, assignment.id)
        raise InvalidStateError("VesselAssignment", current.status, "close")

    commit_or_raise()
    db.session.refresh(assignment)

    logger.info(
        "Assignment closed",
        extra=_log_extra(assignment, status=new_status, end_date=end.isoformat()),
    )
    return assignment


# ── History ──────────────────────────────────────────────────────────────────


class AssignmentHistory:
    """Lazy, finite, restartable sequence of assignments, newest start first.

    Every ``iter()`` issues fresh paged queries, so iterating twice reflects
    the current table and never holds a cursor open between batches.
    """

    def __init__(self, *, cadet_id: int | None = None, vessel_id: int | None = None,
                 batch_size: int = 100):
        if cadet_id is None and vessel_id is None:
            raise ValueError("AssignmentHistory requires cadet_id or vessel_id")
        self.cadet_id = cadet_id
        self.vessel_id = vessel_id
        self.batch_size = batch_size

    def _filters(self):
        filters = []
        if self.cadet_id is not None:
            filters.append(VesselAssignment.cadet_id == self.cadet_id)
        if self.vessel_id is not None:
            filters.append(VesselAssignment.vessel_id == self.vessel_id)
        return filters

    def _statement(self):
        return (
            select(VesselAssignment)
            .where(*self._filters())
            .order_by(VesselAssignment.start_date.desc(), VesselAssignment.id.desc())
        )

    def __iter__(self):
        offset = 0
        while True:
            batch = db.session.execute(
                self._statement().limit(self.batch_size).offset(offset)
            ).scalars().all()
            yield from batch
            if len(batch) < self.batch_size:
                return
            offset += self.batch_size

    def count(self) -> int:
        return db.session.execute(
            select(func.count(VesselAssignment.id)).where(*self._filters())
        ).scalar() or 0

    def page(self, limit: int, offset: int = 0) -> list[VesselAssignment]:
        return list(
            db.session.execute(
                self._statement().limit(limit).offset(offset)
            ).scalars().all()
        )


def get_assignment_history(cadet_id: int) -> AssignmentHistory:
    """Return the cadet's assignments, newest first, as a lazy iterable."""
    return AssignmentHistory(cadet_id=cadet_id)


def get_vessel_assignment_history(vessel_id: int) -> AssignmentHistory:
    """Return the vessel's assignments, newest first, as a lazy iterable."""
    return AssignmentHistory(vessel_id=vessel_id)
