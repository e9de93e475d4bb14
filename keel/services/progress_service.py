"""
Progress Aggregation - Service Layer.

Figures are always derived from the template rows and completion rows at
read time; nothing here writes or caches.
The template rows are read as of the assignment's ``catalog_revision``.

Two layers:
    build_section_progress / build_overall_progress
        pure functions over (sections, tasks, completion map); deterministic
        for identical input
    compute_section_progress / compute_overall_progress
        load the applicable templates and completions for an assignment and
        delegate to the pure layer

Only mandatory tasks count towards ``percent``. Optional tasks are listed
with their completion detail and counted separately. Overall percent is
total completed-mandatory over total mandatory across all sections, not an
average of section percents.
"""

from keel.core.exceptions import NotFoundError
from keel.models.assignment import VesselAssignment
from keel.models.completion import TaskCompletion
from keel.models.familiarisation import SectionTemplate, TaskTemplate
from keel.services.completion_service import get_completions_for_assignment
from keel.services.template_service import get_section, list_applicable_tasks


def percent_of(completed: int, total: int) -> int:
    """Whole-number percentage, rounding halves up; an empty set counts as done."""
    if total == 0:
        return 100
    # integer form of floor(100 * completed / total + 0.5)
    return (200 * completed + total) // (2 * total)


def _task_detail(task: TaskTemplate, completion: TaskCompletion | None) -> dict:
    return {
        "task_template_id": task.id,
        "task_code": task.task_code,
        "task_description": task.task_description,
        "order_number": task.order_number,
        "is_mandatory": task.is_mandatory,
        "completed": completion is not None,
        "completed_at": (
            completion.completed_at.isoformat()
            if completion is not None and completion.completed_at else None
        ),
        "signed_by": completion.signed_by if completion is not None else None,
        "remarks": completion.remarks if completion is not None else None,
        "attachments": (
            [a.to_dict() for a in completion.attachments] if completion is not None else []
        ),
    }


def build_section_progress(
    section: SectionTemplate,
    tasks: list[TaskTemplate],
    completions: dict[int, TaskCompletion],
) -> dict:
    """Aggregate one section. ``tasks`` must already be in template order."""
    mandatory = [t for t in tasks if t.is_mandatory]
    optional = [t for t in tasks if not t.is_mandatory]
    completed_mandatory = sum(1 for t in mandatory if t.id in completions)
    completed_optional = sum(1 for t in optional if t.id in completions)

    return {
        "section_id": section.id,
        "section_code": section.section_code,
        "title": section.title,
        "order_number": section.order_number,
        "completed_count": completed_mandatory,
        "total_mandatory": len(mandatory),
        "percent": percent_of(completed_mandatory, len(mandatory)),
        "optional_completed": completed_optional,
        "optional_total": len(optional),
        "tasks": [_task_detail(t, completions.get(t.id)) for t in tasks],
    }


def group_by_section(
    pairs: list[tuple[SectionTemplate, TaskTemplate]],
) -> list[tuple[SectionTemplate, list[TaskTemplate]]]:
    """Fold ordered (section, task) pairs into [(section, [tasks])], keeping order."""
    grouped: list[tuple[SectionTemplate, list[TaskTemplate]]] = []
    index: dict[int, list[TaskTemplate]] = {}
    for section, task in pairs:
        bucket = index.get(section.id)
        if bucket is None:
            bucket = []
            index[section.id] = bucket
            grouped.append((section, bucket))
        bucket.append(task)
    return grouped


def build_overall_progress(
    assignment_id: int,
    pairs: list[tuple[SectionTemplate, TaskTemplate]],
    completions: dict[int, TaskCompletion],
) -> dict:
    """Aggregate every applicable section of an assignment."""
    sections = [
        build_section_progress(section, tasks, completions)
        for section, tasks in group_by_section(pairs)
    ]
    completed = sum(s["completed_count"] for s in sections)
    total = sum(s["total_mandatory"] for s in sections)
    return {
        "assignment_id": assignment_id,
        "completed_count": completed,
        "total_mandatory": total,
        "percent": percent_of(completed, total),
        "sections": sections,
    }


# ── Assignment-scoped entry points ───────────────────────────────────────────


def _applicable_pairs(assignment: VesselAssignment):
    return list_applicable_tasks(
        assignment.cadet.category,
        assignment.vessel.ship_type_id,
        revision=assignment.catalog_revision,
    )


def compute_section_progress(assignment: VesselAssignment, section_id: int) -> dict:
    """Progress of one section for the assignment's cadet category and ship type.

    Raises:
        NotFoundError: unknown section, or a section restricted to another
                       ship type.
    """
    section = get_section(section_id)
    ship_type_id = assignment.vessel.ship_type_id
    if section.ship_type_id is not None and section.ship_type_id != ship_type_id:
        raise NotFoundError(resource="SectionTemplate", resource_id=section_id)

    tasks = [task for sec, task in _applicable_pairs(assignment) if sec.id == section.id]
    completions = get_completions_for_assignment(assignment.id)
    return build_section_progress(section, tasks, completions)


def compute_overall_progress(assignment: VesselAssignment) -> dict:
    """Progress across all sections applicable to the assignment."""
    pairs = _applicable_pairs(assignment)
    completions = get_completions_for_assignment(assignment.id)
    return build_overall_progress(assignment.id, pairs, completions)
