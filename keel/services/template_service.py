"""
Template Hierarchy - Service Layer.

Read contract (request-time, read-only):
    - list_applicable_tasks:  ordered (section, task) pairs for a cadet
                              category on a ship type, optionally as of a
                              catalog revision
    - get_section / get_task: single lookups raising NotFoundError

Authoring (infrequent admin operations):
    - create_section_template / create_task_template
    - update_task_template:   retires the row and inserts a successor;
                              refused once completions reference the task
    - import_structure:       bulk import of flat section/task rows with a
                              SKIP or UPDATE conflict strategy

Every task write opens a CatalogRevision. Assignments are pinned to the
revision current when they were created and read the catalog as of that
revision, so authoring never changes the figures of an existing assignment.
"""

import logging
import re

from flask import g, has_app_context
from sqlalchemy import and_, func, or_, select

from keel.core.exceptions import ConflictError, InvalidStateError, NotFoundError, ValidationError
from keel.models import db
from keel.models.completion import TaskCompletion
from keel.models.familiarisation import (
    BASELINE_REVISION,
    CADET_CATEGORIES,
    CatalogRevision,
    SectionTemplate,
    TaskTemplate,
    is_valid_category,
    normalise_category,
)
from keel.models.reference import ShipType
from keel.utils.helpers import commit_or_raise

logger = logging.getLogger(__name__)

CONFLICT_STRATEGIES = ("SKIP", "UPDATE")

_TASK_EDITABLE_FIELDS = ("task_description", "order_number", "is_mandatory", "cadet_category")

_INTEGER_TEXT = re.compile(r"-?\d+")


# ── Read contract ────────────────────────────────────────────────────────────


def require_category(cadet_category) -> str:
    """Return the normalised category or raise NotFoundError."""
    category = normalise_category(cadet_category)
    if category not in CADET_CATEGORIES:
        raise NotFoundError(resource="CadetCategory", resource_id=cadet_category)
    return category


def current_revision() -> int:
    """Id of the latest catalog revision (0 before any authoring)."""
    return db.session.execute(
        select(func.coalesce(func.max(CatalogRevision.id), BASELINE_REVISION))
    ).scalar()


def _visible_at(revision: int | None):
    if revision is None:
        return TaskTemplate.retired_in.is_(None)
    return and_(
        TaskTemplate.introduced_in <= revision,
        or_(TaskTemplate.retired_in.is_(None), TaskTemplate.retired_in > revision),
    )


def _applicable_statement(category: str, ship_type_id: int | None, revision: int | None):
    ship_filter = SectionTemplate.ship_type_id.is_(None)
    if ship_type_id is not None:
        ship_filter = or_(ship_filter, SectionTemplate.ship_type_id == ship_type_id)
    return (
        select(SectionTemplate, TaskTemplate)
        .join(TaskTemplate, TaskTemplate.section_id == SectionTemplate.id)
        .where(TaskTemplate.cadet_category == category, ship_filter, _visible_at(revision))
        .order_by(
            SectionTemplate.order_number,
            SectionTemplate.id,
            TaskTemplate.order_number,
            TaskTemplate.id,
        )
    )


def list_applicable_tasks(
    cadet_category: str, ship_type_id: int | None, revision: int | None = None
) -> list[tuple[SectionTemplate, TaskTemplate]]:
    """Return the (section, task) pairs a cadet of this category must work through.

    Ordered by section order, then task order within the section. Sections
    restricted to another ship type are excluded. ``revision`` selects the
    catalog as it stood at that revision; ``None`` means the current catalog.

    Raises:
        NotFoundError: ``cadet_category`` is not a recognised category.
    """
    category = require_category(cadet_category)
    rows = db.session.execute(_applicable_statement(category, ship_type_id, revision)).all()
    return [(section, task) for section, task in rows]


def is_task_applicable(
    task: TaskTemplate,
    cadet_category: str,
    ship_type_id: int | None,
    revision: int | None = None,
) -> bool:
    """Apply the applicability rule to a single task template."""
    if task.cadet_category != normalise_category(cadet_category):
        return False
    if not task.visible_at(revision):
        return False
    restriction = task.section.ship_type_id
    return restriction is None or restriction == ship_type_id


def get_section(section_id: int) -> SectionTemplate:
    section = db.session.get(SectionTemplate, section_id)
    if section is None:
        raise NotFoundError(resource="SectionTemplate", resource_id=section_id)
    return section


def get_task(task_id: int) -> TaskTemplate:
    task = db.session.get(TaskTemplate, task_id)
    if task is None:
        raise NotFoundError(resource="TaskTemplate", resource_id=task_id)
    return task


# ── Input coercion ───────────────────────────────────────────────────────────


def _require_text(data: dict, field: str) -> str:
    value = data.get(field)
    if isinstance(value, str):
        value = value.strip()
    if value is None or value == "":
        raise ValidationError(f"{field} is required", details={field: "required"})
    return str(value)


def _to_int(value, field: str, default: int = 0) -> int:
    """Accept an int or a string of digits; anything else is a ValidationError."""
    if value is None or value == "":
        return default
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str) and _INTEGER_TEXT.fullmatch(value.strip()):
        return int(value.strip())
    raise ValidationError(f"{field} must be an integer", details={field: value})


def _to_bool(value, field: str, default: bool) -> bool:
    """Accept only JSON booleans; ``"false"`` and ``0`` are rejected, not guessed."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    raise ValidationError(f"{field} must be true or false", details={field: value})


def _require_ship_type(value, field: str = "ship_type_id") -> int | None:
    """Resolve an optional ship type reference; an unknown id is NotFoundError."""
    if value is None or value == "":
        return None
    ship_type_id = _to_int(value, field)
    if db.session.get(ShipType, ship_type_id) is None:
        raise NotFoundError(resource="ShipType", resource_id=ship_type_id)
    return ship_type_id


def _require_valid_category(value, field: str = "cadet_category") -> str:
    category = normalise_category(value)
    if not is_valid_category(category):
        raise ValidationError(
            f"{field} must be one of: {', '.join(CADET_CATEGORIES)}",
            details={field: value},
        )
    return category


# ── Authoring ────────────────────────────────────────────────────────────────


def _actor_id():
    return getattr(g, "actor_id", None) if has_app_context() else None


def _open_revision(summary: str) -> CatalogRevision:
    revision = CatalogRevision(summary=summary[:200], actor_id=_actor_id())
    db.session.add(revision)
    db.session.flush()
    return revision


def _find_section(ship_type_id, section_code):
    stmt = select(SectionTemplate).where(SectionTemplate.section_code == section_code)
    if ship_type_id is None:
        stmt = stmt.where(SectionTemplate.ship_type_id.is_(None))
    else:
        stmt = stmt.where(SectionTemplate.ship_type_id == ship_type_id)
    return db.session.execute(stmt).scalar_one_or_none()


def _find_task(section_id, task_code):
    """The current (unretired) task with this code in the section."""
    return db.session.execute(
        select(TaskTemplate).where(
            TaskTemplate.section_id == section_id,
            TaskTemplate.task_code == task_code,
            TaskTemplate.retired_in.is_(None),
        )
    ).scalar_one_or_none()


def _has_completions(task_id: int) -> bool:
    count = db.session.execute(
        select(func.count(TaskCompletion.id)).where(TaskCompletion.task_template_id == task_id)
    ).scalar()
    return bool(count)


def _section_has_completions(section_id: int) -> bool:
    count = db.session.execute(
        select(func.count(TaskCompletion.id))
        .join(TaskTemplate, TaskCompletion.task_template_id == TaskTemplate.id)
        .where(TaskTemplate.section_id == section_id)
    ).scalar()
    return bool(count)


def _task_changes(task: TaskTemplate, values: dict) -> dict:
    return {
        field: value
        for field, value in values.items()
        if getattr(task, field) != value
    }


def _supersede(task: TaskTemplate, changes: dict, revision: CatalogRevision) -> TaskTemplate:
    """Retire ``task`` at ``revision`` and insert its edited successor."""
    task.retired_in = revision.id
    db.session.flush()
    successor = TaskTemplate(
        section_id=task.section_id,
        cadet_category=changes.get("cadet_category", task.cadet_category),
        task_code=task.task_code,
        task_description=changes.get("task_description", task.task_description),
        order_number=changes.get("order_number", task.order_number),
        is_mandatory=changes.get("is_mandatory", task.is_mandatory),
        introduced_in=revision.id,
    )
    db.session.add(successor)
    db.session.flush()
    return successor


def create_section_template(data: dict) -> SectionTemplate:
    """Create a section. ``(ship_type_id, section_code)`` must be unique.

    Raises:
        NotFoundError:   ``ship_type_id`` names no ship type.
        ConflictError:   the code is taken for that ship type.
    """
    section_code = _require_text(data, "section_code").upper()
    title = _require_text(data, "title")
    ship_type_id = _require_ship_type(data.get("ship_type_id"))
    order_number = _to_int(data.get("order_number"), "order_number")

    if _find_section(ship_type_id, section_code) is not None:
        raise ConflictError("SectionTemplate", "section_code", section_code)

    section = SectionTemplate(
        ship_type_id=ship_type_id,
        section_code=section_code,
        title=title,
        order_number=order_number,
    )
    db.session.add(section)
    commit_or_raise(ConflictError("SectionTemplate", "section_code", section_code))
    logger.info("Section template created id=%s code=%s", section.id, section_code)
    return section


def create_task_template(section_id: int, data: dict) -> TaskTemplate:
    """Create a task in a section. ``task_code`` must be unique within the section.

    The task joins the catalog at a new revision; assignments created
    earlier do not see it.
    """
    section = get_section(section_id)
    task_code = _require_text(data, "task_code").upper()
    description = _require_text(data, "task_description")
    category = _require_valid_category(data.get("cadet_category"))
    order_number = _to_int(data.get("order_number"), "order_number")
    is_mandatory = _to_bool(data.get("is_mandatory"), "is_mandatory", True)

    if _find_task(section.id, task_code) is not None:
        raise ConflictError("TaskTemplate", "task_code", task_code)

    revision = _open_revision(f"create task {section.section_code}/{task_code}")
    task = TaskTemplate(
        section_id=section.id,
        cadet_category=category,
        task_code=task_code,
        task_description=description,
        order_number=order_number,
        is_mandatory=is_mandatory,
        introduced_in=revision.id,
    )
    db.session.add(task)
    commit_or_raise(ConflictError("TaskTemplate", "task_code", task_code))
    logger.info(
        "Task template created id=%s section=%s code=%s revision=%s",
        task.id, section.id, task_code, revision.id,
    )
    return task


def update_task_template(task_id: int, data: dict) -> TaskTemplate:
    """Edit a task template that nobody has completed yet.

    The row itself is never rewritten: it is retired at a new revision and a
    successor carrying the edits is returned (a new id). A call that changes
    nothing returns the task unchanged.

    Raises:
        InvalidStateError: the task is already retired, or completions
                           reference it.
        ValidationError:   a field value is malformed.
    """
    task = get_task(task_id)
    if not task.is_current:
        raise InvalidStateError("TaskTemplate", "retired", "edit")
    if _has_completions(task.id):
        raise InvalidStateError("TaskTemplate", "referenced by completions", "edit")

    values = {}
    for field in _TASK_EDITABLE_FIELDS:
        if field not in data:
            continue
        value = data[field]
        if field == "cadet_category":
            value = _require_valid_category(value)
        elif field == "order_number":
            value = _to_int(value, field, task.order_number)
        elif field == "is_mandatory":
            value = _to_bool(value, field, task.is_mandatory)
        elif field == "task_description":
            value = _require_text(data, field)
        values[field] = value

    changes = _task_changes(task, values)
    if not changes:
        return task

    revision = _open_revision(f"edit task {task.task_code}")
    successor = _supersede(task, changes, revision)
    commit_or_raise()
    logger.info(
        "Task template superseded old_id=%s new_id=%s revision=%s fields=%s",
        task.id, successor.id, revision.id, sorted(changes),
    )
    return successor


def import_structure(rows: list[dict], conflict_strategy: str = "SKIP") -> dict:
    """Bulk-import sections and tasks from flat rows.

    Each row: ship_type_id?, cadet_category, section_code, section_title,
    section_order, task_code, task_description, task_order, is_mandatory?

    conflict_strategy:
        SKIP   - existing sections/tasks are left untouched
        UPDATE - existing sections/tasks are updated; a changed task is
                 superseded like update_task_template, and a section or task
                 already referenced by completions is refused with
                 InvalidStateError

    The whole import is one transaction and at most one catalog revision.

    Returns:
        {"sections_created", "sections_updated", "tasks_created",
         "tasks_updated", "tasks_skipped", "revision"}
    """
    if not isinstance(rows, list) or not rows:
        raise ValidationError("rows[] is required and must not be empty")
    strategy = conflict_strategy or "SKIP"
    if strategy not in CONFLICT_STRATEGIES:
        raise ValidationError(
            f"conflict_strategy must be one of: {', '.join(CONFLICT_STRATEGIES)}",
            details={"conflict_strategy": conflict_strategy},
        )

    counts = {
        "sections_created": 0,
        "sections_updated": 0,
        "tasks_created": 0,
        "tasks_updated": 0,
        "tasks_skipped": 0,
    }
    seen_sections: dict[tuple, SectionTemplate] = {}
    revision = None

    try:
        for index, row in enumerate(rows):
            if not isinstance(row, dict):
                raise ValidationError(f"rows[{index}] must be an object")
            category = normalise_category(row.get("cadet_category"))
            if not is_valid_category(category):
                raise ValidationError(
                    f"rows[{index}].cadet_category is invalid",
                    details={"cadet_category": row.get("cadet_category")},
                )
            section_code = _require_text(row, "section_code").upper()
            task_code = _require_text(row, "task_code").upper()
            ship_type_id = _require_ship_type(row.get("ship_type_id"))

            key = (ship_type_id, section_code)
            section = seen_sections.get(key)
            if section is None:
                section = _find_section(ship_type_id, section_code)
                if section is None:
                    section = SectionTemplate(
                        ship_type_id=ship_type_id,
                        section_code=section_code,
                        title=_require_text(row, "section_title"),
                        order_number=_to_int(row.get("section_order"), "section_order"),
                    )
                    db.session.add(section)
                    db.session.flush()
                    counts["sections_created"] += 1
                elif strategy == "UPDATE":
                    if _section_has_completions(section.id):
                        raise InvalidStateError(
                            "SectionTemplate", "referenced by completions", f"update {section_code}"
                        )
                    section.title = row.get("section_title") or section.title
                    section.order_number = _to_int(row.get("section_order"), "section_order", section.order_number)
                    counts["sections_updated"] += 1
                seen_sections[key] = section

            task = _find_task(section.id, task_code)
            if task is None:
                description = _require_text(row, "task_description")
                order_number = _to_int(row.get("task_order"), "task_order")
                is_mandatory = _to_bool(row.get("is_mandatory"), "is_mandatory", True)
                if revision is None:
                    revision = _open_revision(f"import ({strategy})")
                db.session.add(TaskTemplate(
                    section_id=section.id,
                    cadet_category=category,
                    task_code=task_code,
                    task_description=description,
                    order_number=order_number,
                    is_mandatory=is_mandatory,
                    introduced_in=revision.id,
                ))
                db.session.flush()
                counts["tasks_created"] += 1
            elif strategy == "UPDATE":
                if _has_completions(task.id):
                    raise InvalidStateError(
                        "TaskTemplate", "referenced by completions", f"update {task_code}"
                    )
                changes = _task_changes(task, {
                    "cadet_category": category,
                    "task_description": row.get("task_description") or task.task_description,
                    "order_number": _to_int(row.get("task_order"), "task_order", task.order_number),
                    "is_mandatory": _to_bool(row.get("is_mandatory"), "is_mandatory", task.is_mandatory),
                })
                if not changes:
                    counts["tasks_skipped"] += 1
                    continue
                if revision is None:
                    revision = _open_revision(f"import ({strategy})")
                if task.introduced_in == revision.id:
                    # added earlier in this same import; nobody can be pinned to it yet
                    for field, value in changes.items():
                        setattr(task, field, value)
                else:
                    _supersede(task, changes, revision)
                counts["tasks_updated"] += 1
            else:
                counts["tasks_skipped"] += 1
    except (ValidationError, InvalidStateError, NotFoundError):
        db.session.rollback()
        raise

    commit_or_raise()
    counts["revision"] = revision.id if revision is not None else None
    logger.info("Familiarisation structure imported strategy=%s counts=%s", strategy, counts)
    return counts
