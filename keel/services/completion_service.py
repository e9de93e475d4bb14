"""
Completion State - Service Layer.

Append-only sign-off of familiarisation tasks within an assignment.

Business rules enforced here (not in blueprints):
    - Completions attach only to ACTIVE assignments. A closed assignment is
      frozen: no backfilled completions, no remark edits.
    - The task must be applicable to the cadet's category and the vessel's
      ship type, in the catalog revision the assignment is pinned to.
    - One completion per (assignment, task). A second attempt is rejected,
      never merged; the unique constraint backs the application check so
      concurrent duplicates also fail.
    - Remarks change only through update_remarks; completed_at and signed_by
      are never rewritten.
    - A MASTER_APPROVED completion is locked; its remarks cannot change.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from flask import g, has_app_context
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from keel.core.exceptions import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from keel.models import db
from keel.models.assignment import STATUS_ACTIVE, VesselAssignment
from keel.models.completion import REVIEW_MASTER_APPROVED, CompletionAttachment, TaskCompletion
from keel.models.familiarisation import TaskTemplate
from keel.services.assignment_service import get_assignment
from keel.services.template_service import get_task, is_task_applicable
from keel.utils.helpers import commit_or_raise

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _actor_id():
    return getattr(g, "actor_id", None) if has_app_context() else None


def _lock_assignment(assignment_id: int) -> VesselAssignment:
    """Load the assignment with a row lock where the backend supports one.

    On PostgreSQL the FOR UPDATE lock serialises record_completion against
    close_assignment on the same row. SQLite ignores FOR UPDATE; there the
    ordering comes from ``_still_active``, which re-reads the status after
    this transaction has written and so holds the database write lock.
    """
    assignment = db.session.execute(
        select(VesselAssignment)
        .where(VesselAssignment.id == assignment_id)
        .with_for_update(of=VesselAssignment)
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if assignment is None:
        raise NotFoundError(resource="VesselAssignment", resource_id=assignment_id)
    return assignment


def _validate_attachments(attachments) -> list[dict]:
    if attachments is None:
        return []
    if not isinstance(attachments, list):
        raise ValidationError("attachments must be a list", details={"attachments": "list"})
    cleaned = []
    for index, item in enumerate(attachments):
        if not isinstance(item, dict):
            raise ValidationError(f"attachments[{index}] must be an object")
        file_name = (item.get("file_name") or "").strip()
        file_url = (item.get("file_url") or "").strip()
        if not file_name or not file_url:
            raise ValidationError(
                f"attachments[{index}] requires file_name and file_url",
                details={f"attachments[{index}]": "file_name and file_url are required"},
            )
        cleaned.append({"file_name": file_name, "file_url": file_url})
    return cleaned


def _find_completion(assignment_id: int, task_template_id: int) -> TaskCompletion | None:
    return db.session.execute(
        select(TaskCompletion).where(
            TaskCompletion.assignment_id == assignment_id,
            TaskCompletion.task_template_id == task_template_id,
        )
    ).scalar_one_or_none()


def _still_active(assignment_id: int) -> bool:
    status = db.session.execute(
        select(VesselAssignment.status).where(VesselAssignment.id == assignment_id)
    ).scalar_one()
    return status == STATUS_ACTIVE


# ── Public API ───────────────────────────────────────────────────────────────


def record_completion(
    assignment_id: int,
    task_template_id: int,
    signed_by: str,
    remarks: str | None = None,
    attachments: list[dict] | None = None,
) -> TaskCompletion:
    """Record that a task was completed and signed off within an assignment.

    Checks run in this order: assignment exists, assignment ACTIVE, task
    exists, task applicable, signer and attachments well formed, no earlier
    completion. The first failure is raised and nothing is written.

    Args:
        signed_by:   identity of the signing-off officer or cadet.
        attachments: [{"file_name": ..., "file_url": ...}] references to files
                     already held by the attachment store.

    Raises:
        NotFoundError:     unknown assignment or task template.
        InvalidStateError: assignment is not ACTIVE.
        ValidationError:   task not applicable to the cadet category / ship
                           type / catalog revision, signed_by missing, or
                           malformed attachments.
        ConflictError:     a completion already exists for this pair.
    """
    assignment = _lock_assignment(assignment_id)
    if assignment.status != STATUS_ACTIVE:
        db.session.rollback()
        raise InvalidStateError("VesselAssignment", assignment.status, "record completion")

    try:
        task = get_task(task_template_id)
    except NotFoundError:
        db.session.rollback()
        raise
    cadet_category = assignment.cadet.category
    ship_type_id = assignment.vessel.ship_type_id
    if not is_task_applicable(task, cadet_category, ship_type_id, assignment.catalog_revision):
        db.session.rollback()
        raise ValidationError(
            "Task is not applicable to this assignment",
            details={
                "task_template_id": task.id,
                "task_category": task.cadet_category,
                "cadet_category": cadet_category,
                "catalog_revision": assignment.catalog_revision,
            },
        )

    signer = signed_by.strip() if isinstance(signed_by, str) else ""
    if not signer:
        db.session.rollback()
        raise ValidationError("signed_by is required", details={"signed_by": "required"})
    try:
        files = _validate_attachments(attachments)
    except ValidationError:
        db.session.rollback()
        raise

    conflict = ConflictError(
        "TaskCompletion", "(assignment_id, task_template_id)", f"({assignment.id}, {task.id})"
    )
    if _find_completion(assignment.id, task.id) is not None:
        db.session.rollback()
        raise conflict

    completion = TaskCompletion(
        assignment_id=assignment.id,
        task_template_id=task.id,
        signed_by=signer,
        remarks=(remarks or "").strip() or None,
        completed_at=_utcnow(),
    )
    for f in files:
        completion.attachments.append(CompletionAttachment(**f))
    db.session.add(completion)
    try:
        db.session.flush()
    except IntegrityError as exc:
        db.session.rollback()
        raise conflict from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Database error recording completion assignment_id=%s", assignment.id)
        raise StorageError() from exc
    if not _still_active(assignment.id):
        db.session.rollback()
        raise InvalidStateError("VesselAssignment", "closed", "record completion")
    commit_or_raise(conflict)

    logger.info(
        "Task completion recorded",
        extra={
            "assignment_id": assignment.id,
            "task_template_id": task.id,
            "cadet_id": assignment.cadet_id,
            "vessel_id": assignment.vessel_id,
            "actor_id": _actor_id(),
        },
    )
    return completion


def get_completions_for_assignment(assignment_id: int) -> dict[int, TaskCompletion]:
    """Return {task_template_id: TaskCompletion} for every completed task.

    Raises:
        NotFoundError: unknown assignment.
    """
    get_assignment(assignment_id)
    completions = db.session.execute(
        select(TaskCompletion).where(TaskCompletion.assignment_id == assignment_id)
    ).scalars().all()
    return {c.task_template_id: c for c in completions}


def update_remarks(assignment_id: int, task_template_id: int, remarks: str | None) -> TaskCompletion:
    """Replace the remarks on an existing completion.

    This is the only mutation a completion allows, and only while the
    assignment is ACTIVE and the Master has not signed the task off.

    Raises:
        NotFoundError:     unknown assignment, or no completion for this task.
        InvalidStateError: assignment is not ACTIVE, or the completion is
                           MASTER_APPROVED.
    """
    assignment = _lock_assignment(assignment_id)
    if assignment.status != STATUS_ACTIVE:
        db.session.rollback()
        raise InvalidStateError("VesselAssignment", assignment.status, "edit remarks")

    completion = _find_completion(assignment.id, task_template_id)
    if completion is None:
        db.session.rollback()
        raise NotFoundError(resource="TaskCompletion", resource_id=task_template_id)
    if completion.review_status == REVIEW_MASTER_APPROVED:
        db.session.rollback()
        raise InvalidStateError("TaskCompletion", completion.review_status, "edit remarks")

    completion.remarks = (remarks or "").strip() or None
    completion.remarks_updated_at = _utcnow()
    commit_or_raise()

    logger.info(
        "Completion remarks updated",
        extra={
            "assignment_id": assignment.id,
            "task_template_id": task_template_id,
            "actor_id": _actor_id(),
        },
    )
    return completion


def list_evidence(assignment_id: int) -> list[dict]:
    """Return attachment metadata for an assignment, newest upload first.

    File contents are not touched; ``file_url`` is returned as stored.
    """
    get_assignment(assignment_id)
    rows = db.session.execute(
        select(CompletionAttachment, TaskCompletion, TaskTemplate)
        .join(TaskCompletion, CompletionAttachment.completion_id == TaskCompletion.id)
        .join(TaskTemplate, TaskCompletion.task_template_id == TaskTemplate.id)
        .where(TaskCompletion.assignment_id == assignment_id)
        .order_by(CompletionAttachment.created_at.desc(), CompletionAttachment.id.desc())
    ).all()
    return [
        {
            "attachment_id": attachment.id,
            "completion_id": completion.id,
            "task_template_id": task.id,
            "task_code": task.task_code,
            "section_id": task.section_id,
            "signed_by": completion.signed_by,
            "file_name": attachment.file_name,
            "file_url": attachment.file_url,
            "uploaded_at": attachment.created_at.isoformat() if attachment.created_at else None,
        }
        for attachment, completion, task in rows
    ]
