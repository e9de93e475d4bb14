"""
Assignment lifecycle blueprint.

Endpoints:
    POST /api/v1/assignments                     - post a cadet to a vessel
    GET  /api/v1/assignments/<id>                - single assignment
    POST /api/v1/assignments/<id>/close          - close as COMPLETED / CANCELLED
    GET  /api/v1/cadets/<cadet_id>/assignments   - cadet history, newest first
    GET  /api/v1/vessels/<vessel_id>/assignments - vessel history, newest first

Service layer owns all business rules and commits; errors are mapped by
keel.blueprints.register_error_handlers.
"""

import logging

from flask import Blueprint, jsonify

from keel.blueprints import json_body, paginate_params
from keel.core.exceptions import ValidationError
from keel.services import assignment_service as svc

logger = logging.getLogger(__name__)

assignment_bp = Blueprint("assignment", __name__, url_prefix="/api/v1")


def _require_int(data: dict, field: str) -> int:
    value = data.get(field)
    if value is None or value == "":
        raise ValidationError(f"{field} is required", details={field: "required"})
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().isdecimal():
        return int(value.strip())
    raise ValidationError(f"{field} must be an integer", details={field: value})


def _history_response(history):
    limit, offset = paginate_params()
    items = history.page(limit, offset)
    return jsonify({
        "items": [a.to_dict() for a in items],
        "total": history.count(),
        "limit": limit,
        "offset": offset,
    })


@assignment_bp.route("/assignments", methods=["POST"])
def create_assignment():
    """Body: {cadet_id, vessel_id, start_date, notes?}"""
    data = json_body()
    assignment = svc.create_assignment(
        cadet_id=_require_int(data, "cadet_id"),
        vessel_id=_require_int(data, "vessel_id"),
        start_date=data.get("start_date"),
        notes=data.get("notes"),
    )
    return jsonify(assignment.to_dict()), 201


@assignment_bp.route("/assignments/<int:assignment_id>", methods=["GET"])
def get_assignment(assignment_id):
    return jsonify(svc.get_assignment(assignment_id).to_dict())


@assignment_bp.route("/assignments/<int:assignment_id>/close", methods=["POST"])
def close_assignment(assignment_id):
    """Body: {end_date, status: COMPLETED|CANCELLED, notes?}"""
    data = json_body()
    assignment = svc.close_assignment(
        assignment_id,
        end_date=data.get("end_date"),
        status=data.get("status"),
        closing_notes=data.get("notes"),
    )
    return jsonify(assignment.to_dict())


@assignment_bp.route("/cadets/<int:cadet_id>/assignments", methods=["GET"])
def cadet_history(cadet_id):
    return _history_response(svc.get_assignment_history(cadet_id))


@assignment_bp.route("/vessels/<int:vessel_id>/assignments", methods=["GET"])
def vessel_history(vessel_id):
    return _history_response(svc.get_vessel_assignment_history(vessel_id))
