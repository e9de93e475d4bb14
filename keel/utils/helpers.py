"""Shared service helpers.

parse_date_input:  strict date parsing, raises ValidationError
commit_or_raise:   commit the session, translating SQLAlchemy failures into
                   ConflictError / StorageError
"""
import logging
from datetime import date, datetime

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from keel.core.exceptions import ConflictError, StorageError, ValidationError
from keel.models import db

logger = logging.getLogger(__name__)


def parse_date_input(value, field="date"):
    """Parse a date string, raising ValidationError on missing or bad input.

    Supports: YYYY-MM-DD, YYYY-MM-DDTHH:MM:SS (date part), DD.MM.YYYY,
    date objects.
    """
    if value is None or value == "":
        raise ValidationError(f"{field} is required", details={field: "required"})
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        pass
    try:
        return datetime.strptime(text, "%d.%m.%Y").date()
    except ValueError as exc:
        raise ValidationError(
            f"Invalid {field}. Use YYYY-MM-DD or DD.MM.YYYY.",
            details={field: text},
        ) from exc


def commit_or_raise(conflict: ConflictError | None = None):
    """Commit the current session or roll back and raise.

    IntegrityError → ``conflict`` when given (the caller knows which unique
    constraint guards the write), else ConflictError on an unknown constraint.
    Other SQLAlchemyError → StorageError.
    """
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on commit: %s", exc.orig)
        if conflict is not None:
            raise conflict from exc
        raise ConflictError("Record", "unique constraint") from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Database error on commit")
        raise StorageError() from exc
