"""
KEEL Familiarisation Service
Blueprint registry and shared request helpers.
"""

import logging

from flask import request

from keel.core.exceptions import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    PermissionDenied,
    StorageError,
    ValidationError,
)
from keel.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def paginate_params(default_limit=50, max_limit=500):
    """Read limit/offset pagination from the query string.

    Query params:
        limit  - max items (default 50, capped at max_limit)
        offset - starting position (default 0)

    Returns:
        (limit, offset)
    """
    try:
        limit = min(max(int(request.args.get("limit", default_limit)), 1), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    return limit, offset


def json_body() -> dict:
    """Return the JSON request body as a dict (empty when absent or not an object)."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def register_error_handlers(app):
    """Map service exceptions to the standard JSON error body, once for all blueprints."""

    @app.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_INVALID, str(error), details=error.details)

    @app.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        logger.info("Not found: %s", error)
        return api_error(E.NOT_FOUND, error.public_message)

    @app.errorhandler(PermissionDenied)
    def _handle_permission(error: PermissionDenied):
        logger.info("Permission denied: %s", error)
        return api_error(E.FORBIDDEN, str(error))

    @app.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(E.CONFLICT_DUPLICATE, f"{error.resource} already exists")

    @app.errorhandler(InvalidStateError)
    def _handle_invalid_state(error: InvalidStateError):
        return api_error(
            E.CONFLICT_STATE,
            str(error),
            details={"current": error.current},
        )

    @app.errorhandler(StorageError)
    def _handle_storage(error: StorageError):
        return api_error(E.DATABASE, "Storage unavailable, retry later")
