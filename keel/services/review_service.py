"""
Sign-off Review Workflow - Service Layer.

A recorded completion moves through the shipboard sign-off chain:

    RECORDED ─┐
              ├─ CADET ─▶ SUBMITTED ─ CTO ─▶ CTO_APPROVED ─ MASTER ─▶ MASTER_APPROVED
    REJECTED ─┘               │                    │
                              └─ CTO ─▶ REJECTED ◀─┴─ MASTER

Rules (REVIEW_TRANSITIONS in keel.models.completion):
    - Only the role listed for the current status may act; any other role
      gets PermissionDenied.
    - A rejection carries a comment.
    - MASTER_APPROVED is final.
    - Each step is a conditional UPDATE on ``review_status`` plus one
      CompletionReview row, committed together. A reviewer who loses a race
      gets InvalidStateError instead of overwriting the other decision.

Review never changes progress figures; a completion counts once recorded.
Reviews are accepted whatever the assignment status, since sign-off often
finishes after the cadet has left the vessel.

Also here:
    - get_review_history:  review rows of one completion
    - list_review_queue:   completions waiting on a role
    - get_audit_timeline:  chronological events of one assignment across
                           cadet, CTO and Master
"""

import logging
from datetime import timezone

from flask import g, has_app_context
from sqlalchemy import select, update

from keel.core.exceptions import InvalidStateError, NotFoundError, PermissionDenied, ValidationError
from keel.models import db
from keel.models.assignment import VesselAssignment
from keel.models.completion import (
    REVIEW_MASTER_APPROVED,
    REVIEW_REJECTED,
    REVIEW_ROLES,
    REVIEW_STATUSES,
    REVIEW_SUBMITTED,
    REVIEW_TRANSITIONS,
    CompletionReview,
    TaskCompletion,
    validate_review_transition,
)
from keel.models.familiarisation import SectionTemplate, TaskTemplate
from keel.services.assignment_service import get_assignment
from keel.services.template_service import get_section
from keel.utils.helpers import commit_or_raise

logger = logging.getLogger(__name__)

EVENT_ASSIGNMENT_CREATED = "ASSIGNMENT_CREATED"
EVENT_TASK_COMPLETED = "TASK_COMPLETED"
EVENT_REMARKS_UPDATED = "REMARKS_UPDATED"

# tie-break for events sharing a timestamp
_EVENT_RANK = {
    EVENT_ASSIGNMENT_CREATED: 0,
    EVENT_TASK_COMPLETED: 1,
    EVENT_REMARKS_UPDATED: 2,
}
_REVIEW_RANK = 3
_CLOSE_RANK = 4


def _actor_id():
    return getattr(g, "actor_id", None) if has_app_context() else None


def _require_completion(assignment_id: int, task_template_id: int) -> TaskCompletion:
    completion = db.session.execute(
        select(TaskCompletion).where(
            TaskCompletion.assignment_id == assignment_id,
            TaskCompletion.task_template_id == task_template_id,
        )
    ).scalar_one_or_none()
    if completion is None:
        raise NotFoundError(resource="TaskCompletion", resource_id=task_template_id)
    return completion


def _require_target(to_status) -> str:
    if to_status not in REVIEW_STATUSES:
        raise ValidationError(
            f"status must be one of: {', '.join(REVIEW_STATUSES)}",
            details={"status": to_status},
        )
    return to_status


def _check_transition(completion: TaskCompletion, role, to_status: str, comment) -> None:
    current = completion.review_status
    if current == REVIEW_MASTER_APPROVED:
        raise InvalidStateError("TaskCompletion", current, f"move to {to_status}")
    if role not in REVIEW_TRANSITIONS.get(current, {}):
        raise PermissionDenied(role, f"review a {current} completion")
    if not validate_review_transition(current, role, to_status):
        raise InvalidStateError("TaskCompletion", current, f"move to {to_status}")
    if to_status == REVIEW_REJECTED and not comment:
        raise ValidationError(
            "comment is required when rejecting", details={"comment": "required"}
        )


def _apply(completion: TaskCompletion, role: str, to_status: str, comment) -> CompletionReview:
    """Move one completion; caller commits."""
    current = completion.review_status
    result = db.session.execute(
        update(TaskCompletion)
        .where(
            TaskCompletion.id == completion.id,
            TaskCompletion.review_status == current,
        )
        .values(review_status=to_status)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.session.rollback()
        raise InvalidStateError("TaskCompletion", "reviewed concurrently", f"move to {to_status}")
    review = CompletionReview(
        completion_id=completion.id,
        from_status=current,
        to_status=to_status,
        actor_role=role,
        actor_id=_actor_id(),
        comment=comment,
    )
    db.session.add(review)
    return review


def _clean_comment(comment):
    if comment is None:
        return None
    if not isinstance(comment, str):
        raise ValidationError("comment must be a string", details={"comment": comment})
    return comment.strip() or None


# ── Transitions ──────────────────────────────────────────────────────────────


def review_completion(
    assignment_id: int,
    task_template_id: int,
    role: str | None,
    to_status: str,
    comment: str | None = None,
) -> TaskCompletion:
    """Apply one review step to a single completion.

    Raises:
        NotFoundError:     unknown assignment, or no completion for the task.
        ValidationError:   unknown target status, or a rejection without comment.
        PermissionDenied:  ``role`` may not act on the completion's status.
        InvalidStateError: the transition is not allowed from the current
                           status (including anything after MASTER_APPROVED).
    """
    to_status = _require_target(to_status)
    comment = _clean_comment(comment)
    assignment = get_assignment(assignment_id)
    completion = _require_completion(assignment.id, task_template_id)
    _check_transition(completion, role, to_status, comment)

    review = _apply(completion, role, to_status, comment)
    commit_or_raise()

    logger.info(
        "Completion review %s -> %s",
        review.from_status, review.to_status,
        extra={
            "assignment_id": assignment.id,
            "task_template_id": task_template_id,
            "actor_id": review.actor_id,
        },
    )
    return completion


def _section_completions(assignment_id: int, section_id: int) -> list[TaskCompletion]:
    return list(db.session.execute(
        select(TaskCompletion)
        .join(TaskTemplate, TaskCompletion.task_template_id == TaskTemplate.id)
        .where(
            TaskCompletion.assignment_id == assignment_id,
            TaskTemplate.section_id == section_id,
        )
        .order_by(TaskTemplate.order_number, TaskTemplate.id)
    ).scalars().all())


def review_section(
    assignment_id: int,
    section_id: int,
    role: str | None,
    to_status: str,
    comment: str | None = None,
) -> dict:
    """Apply one review step to every completion of a section that ``role``
    can move to ``to_status``; the others are left as they are.

    Returns:
        {"section_id", "review_status", "updated_count"}

    Raises:
        NotFoundError:     unknown assignment or section, or no completions
                           in the section.
        PermissionDenied:  ``role`` can never move a completion to ``to_status``.
        InvalidStateError: no completion in the section is waiting on ``role``.
        ValidationError:   unknown target status, or a rejection without comment.
    """
    to_status = _require_target(to_status)
    comment = _clean_comment(comment)
    assignment = get_assignment(assignment_id)
    section = get_section(section_id)

    sources = [s for s in REVIEW_TRANSITIONS if validate_review_transition(s, role, to_status)]
    if not sources:
        raise PermissionDenied(role, f"move completions to {to_status}")

    completions = _section_completions(assignment.id, section.id)
    if not completions:
        raise NotFoundError(resource="TaskCompletion", resource_id=section.id)
    eligible = [c for c in completions if c.review_status in sources]
    if not eligible:
        raise InvalidStateError(
            "SectionTemplate", f"nothing awaiting {role}", f"move to {to_status}"
        )

    for completion in eligible:
        _check_transition(completion, role, to_status, comment)
        _apply(completion, role, to_status, comment)
    commit_or_raise()

    logger.info(
        "Section review %s section=%s updated=%d",
        to_status, section.section_code, len(eligible),
        extra={"assignment_id": assignment.id, "actor_id": _actor_id()},
    )
    return {
        "section_id": section.id,
        "review_status": to_status,
        "updated_count": len(eligible),
    }


def submit_section(assignment_id: int, section_id: int, role: str | None) -> dict:
    """Cadet hands a section in for review: RECORDED/REJECTED → SUBMITTED."""
    return review_section(assignment_id, section_id, role, REVIEW_SUBMITTED)


# ── Queries ──────────────────────────────────────────────────────────────────


def get_review_history(assignment_id: int, task_template_id: int) -> list[CompletionReview]:
    """Review rows of one completion, oldest first."""
    get_assignment(assignment_id)
    completion = _require_completion(assignment_id, task_template_id)
    return list(completion.reviews.order_by(CompletionReview.id).all())


def list_review_queue(role) -> list[dict]:
    """Completions waiting on ``role``, oldest completion first.

    CTO sees SUBMITTED, MASTER sees CTO_APPROVED, CADET sees RECORDED and
    REJECTED work still to hand in.
    """
    if role not in REVIEW_ROLES:
        raise ValidationError(
            f"role must be one of: {', '.join(REVIEW_ROLES)}", details={"role": role}
        )
    statuses = [s for s, roles in REVIEW_TRANSITIONS.items() if role in roles]
    rows = db.session.execute(
        select(TaskCompletion, VesselAssignment, TaskTemplate, SectionTemplate)
        .join(VesselAssignment, TaskCompletion.assignment_id == VesselAssignment.id)
        .join(TaskTemplate, TaskCompletion.task_template_id == TaskTemplate.id)
        .join(SectionTemplate, TaskTemplate.section_id == SectionTemplate.id)
        .where(TaskCompletion.review_status.in_(statuses))
        .order_by(TaskCompletion.completed_at, TaskCompletion.id)
    ).all()
    items = []
    for completion, assignment, task, section in rows:
        item = completion.to_dict()
        item.update({
            "cadet_id": assignment.cadet_id,
            "cadet_name": assignment.cadet.full_name,
            "vessel_id": assignment.vessel_id,
            "vessel_name": assignment.vessel.name,
            "section_code": section.section_code,
            "task_code": task.task_code,
        })
        items.append(item)
    return items


def _sort_time(value):
    # SQLite hands back naive UTC; PostgreSQL aware datetimes
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _event(event_type, timestamp, rank, seq, *, actor_role=None, actor_id=None,
           task=None, section=None, comment=None):
    return {
        "event_type": event_type,
        "timestamp": timestamp,
        "actor_role": actor_role,
        "actor_id": actor_id,
        "task_template_id": task.id if task is not None else None,
        "task_code": task.task_code if task is not None else None,
        "section_code": section.section_code if section is not None else None,
        "comment": comment,
        "_key": (_sort_time(timestamp), rank, seq),
    }


def get_audit_timeline(assignment_id: int) -> list[dict]:
    """Every recorded event of an assignment in chronological order.

    Events: ASSIGNMENT_CREATED, TASK_COMPLETED, REMARKS_UPDATED (latest
    edit only), one per review step named after the status it reached, and
    ASSIGNMENT_COMPLETED / ASSIGNMENT_CANCELLED when closed.
    """
    assignment = get_assignment(assignment_id)
    events = [
        _event(EVENT_ASSIGNMENT_CREATED, assignment.created_at,
               _EVENT_RANK[EVENT_ASSIGNMENT_CREATED], assignment.id),
    ]

    completions = db.session.execute(
        select(TaskCompletion, TaskTemplate, SectionTemplate)
        .join(TaskTemplate, TaskCompletion.task_template_id == TaskTemplate.id)
        .join(SectionTemplate, TaskTemplate.section_id == SectionTemplate.id)
        .where(TaskCompletion.assignment_id == assignment.id)
    ).all()
    for completion, task, section in completions:
        events.append(_event(
            EVENT_TASK_COMPLETED, completion.completed_at,
            _EVENT_RANK[EVENT_TASK_COMPLETED], completion.id,
            actor_id=completion.signed_by, task=task, section=section,
        ))
        if completion.remarks_updated_at is not None:
            events.append(_event(
                EVENT_REMARKS_UPDATED, completion.remarks_updated_at,
                _EVENT_RANK[EVENT_REMARKS_UPDATED], completion.id,
                task=task, section=section, comment=completion.remarks,
            ))

    reviews = db.session.execute(
        select(CompletionReview, TaskTemplate, SectionTemplate)
        .join(TaskCompletion, CompletionReview.completion_id == TaskCompletion.id)
        .join(TaskTemplate, TaskCompletion.task_template_id == TaskTemplate.id)
        .join(SectionTemplate, TaskTemplate.section_id == SectionTemplate.id)
        .where(TaskCompletion.assignment_id == assignment.id)
    ).all()
    for review, task, section in reviews:
        events.append(_event(
            review.to_status, review.created_at, _REVIEW_RANK, review.id,
            actor_role=review.actor_role, actor_id=review.actor_id,
            task=task, section=section, comment=review.comment,
        ))

    if assignment.closed_at is not None:
        events.append(_event(
            f"ASSIGNMENT_{assignment.status}", assignment.closed_at, _CLOSE_RANK, assignment.id,
        ))

    events.sort(key=lambda e: e["_key"])
    for e in events:
        del e["_key"]
        e["timestamp"] = e["timestamp"].isoformat() if e["timestamp"] else None
    return events
