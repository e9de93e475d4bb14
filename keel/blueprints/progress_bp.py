"""
Progress blueprint.

Endpoints:
    GET /api/v1/progress/<cadet_id>/<vessel_id>                        - overall
    GET /api/v1/progress/<cadet_id>/<vessel_id>/sections/<section_id>  - one section

Both resolve the target assignment as the cadet's ACTIVE assignment on the
vessel, else the most recently closed one.
"""

from flask import Blueprint, jsonify

from keel.services import progress_service
from keel.services.assignment_service import get_cadet, get_vessel, resolve_assignment

progress_bp = Blueprint("progress", __name__, url_prefix="/api/v1/progress")


def _resolve(cadet_id, vessel_id):
    get_cadet(cadet_id)
    get_vessel(vessel_id)
    return resolve_assignment(cadet_id, vessel_id)


@progress_bp.route("/<int:cadet_id>/<int:vessel_id>", methods=["GET"])
def overall_progress(cadet_id, vessel_id):
    assignment = _resolve(cadet_id, vessel_id)
    return jsonify(progress_service.compute_overall_progress(assignment))


@progress_bp.route("/<int:cadet_id>/<int:vessel_id>/sections/<int:section_id>", methods=["GET"])
def section_progress(cadet_id, vessel_id, section_id):
    assignment = _resolve(cadet_id, vessel_id)
    return jsonify(progress_service.compute_section_progress(assignment, section_id))
