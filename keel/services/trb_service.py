"""
Training Record Book (TRB) - Service Layer.

Composes assignment metadata and aggregated progress into reporting
documents. Holds no state; every call re-derives from current rows.

    generate_summary:   TRB familiarisation summary for one cadet on one vessel
    list_trb_overview:  one row per assignment with overall figures, for the
                        shore-side overview table
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import select

from keel.core.exceptions import ValidationError
from keel.models import db
from keel.models.assignment import ASSIGNMENT_STATUSES, VesselAssignment
from keel.services.assignment_service import get_cadet, get_vessel, resolve_assignment
from keel.services.completion_service import get_completions_for_assignment
from keel.services.progress_service import build_overall_progress, compute_overall_progress
from keel.services.template_service import list_applicable_tasks

logger = logging.getLogger(__name__)

OVERVIEW_NOT_STARTED = "Not Started"
OVERVIEW_IN_PROGRESS = "In Progress"
OVERVIEW_COMPLETED = "Completed"


def _assignment_window(assignment: VesselAssignment) -> dict:
    return {
        "id": assignment.id,
        "status": assignment.status,
        "start_date": assignment.start_date.isoformat() if assignment.start_date else None,
        "end_date": assignment.end_date.isoformat() if assignment.end_date else None,
        "notes": assignment.notes,
    }


def _outstanding(progress: dict) -> list[dict]:
    outstanding = []
    for section in progress["sections"]:
        for task in section["tasks"]:
            if task["is_mandatory"] and not task["completed"]:
                outstanding.append({
                    "section_id": section["section_id"],
                    "section_code": section["section_code"],
                    "task_template_id": task["task_template_id"],
                    "task_code": task["task_code"],
                    "task_description": task["task_description"],
                })
    return outstanding


def generate_summary(cadet_id: int, vessel_id: int) -> dict:
    """Build the TRB familiarisation summary for a cadet on a vessel.

    Targets the cadet's ACTIVE assignment on that vessel, or the most
    recently closed one.

    Raises:
        NotFoundError: unknown cadet or vessel, or no assignment links them.
    """
    cadet = get_cadet(cadet_id)
    vessel = get_vessel(vessel_id)
    assignment = resolve_assignment(cadet.id, vessel.id)
    progress = compute_overall_progress(assignment)
    outstanding = _outstanding(progress)

    logger.debug(
        "TRB summary generated assignment_id=%s percent=%s outstanding=%d",
        assignment.id, progress["percent"], len(outstanding),
    )
    return {
        "cadet": cadet.to_dict(),
        "vessel": vessel.to_dict(),
        "assignment": _assignment_window(assignment),
        "sections": progress["sections"],
        "completed_count": progress["completed_count"],
        "total_mandatory": progress["total_mandatory"],
        "overall_percent": progress["percent"],
        "outstanding_mandatory": outstanding,
        "generated_at": datetime.now(timezone.utc).isoformat(),
    }


def overview_status(completed: int, total: int) -> str:
    if completed >= total:
        return OVERVIEW_COMPLETED
    if completed == 0:
        return OVERVIEW_NOT_STARTED
    return OVERVIEW_IN_PROGRESS


def list_trb_overview(status: str | None = None) -> list[dict]:
    """One row per assignment with its overall progress figures.

    Args:
        status: optional assignment status filter (ACTIVE, COMPLETED, CANCELLED).

    Raises:
        ValidationError: unknown status filter.
    """
    stmt = select(VesselAssignment).order_by(
        VesselAssignment.start_date.desc(), VesselAssignment.id.desc()
    )
    if status:
        wanted = status.strip()
        if wanted not in ASSIGNMENT_STATUSES:
            raise ValidationError(
                f"status must be one of: {', '.join(sorted(ASSIGNMENT_STATUSES))}",
                details={"status": status},
            )
        stmt = stmt.where(VesselAssignment.status == wanted)

    # Template sets are shared by every assignment with the same category,
    # ship type and catalog revision; load each combination once per call.
    templates: dict[tuple, list] = {}
    rows = []
    for assignment in db.session.execute(stmt).scalars().all():
        key = (
            assignment.cadet.category,
            assignment.vessel.ship_type_id,
            assignment.catalog_revision,
        )
        if key not in templates:
            templates[key] = list_applicable_tasks(*key)
        progress = build_overall_progress(
            assignment.id, templates[key], get_completions_for_assignment(assignment.id)
        )
        rows.append({
            "assignment": _assignment_window(assignment),
            "cadet_id": assignment.cadet_id,
            "cadet_name": assignment.cadet.full_name,
            "vessel_id": assignment.vessel_id,
            "vessel_name": assignment.vessel.name,
            "completed_count": progress["completed_count"],
            "total_mandatory": progress["total_mandatory"],
            "overall_percent": progress["percent"],
            "overall_status": overview_status(
                progress["completed_count"], progress["total_mandatory"]
            ),
        })
    return rows
