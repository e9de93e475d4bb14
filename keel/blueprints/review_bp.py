"""
Sign-off review blueprint.

The caller's role comes from ``X-Actor-Role`` (see actor_context).

Endpoints:
    POST /api/v1/assignments/<id>/sections/<sid>/submit          - cadet hands a section in
    POST /api/v1/assignments/<id>/sections/<sid>/review          - CTO / Master decide a section
    POST /api/v1/assignments/<id>/completions/<tid>/review       - decide a single completion
    GET  /api/v1/assignments/<id>/completions/<tid>/reviews      - review history of a completion
    GET  /api/v1/assignments/<id>/timeline                       - audit timeline
    GET  /api/v1/reviews/pending                                 - queue for the caller's role
"""

import logging

from flask import Blueprint, g, jsonify, request

from keel.blueprints import json_body
from keel.services import review_service as svc

logger = logging.getLogger(__name__)

review_bp = Blueprint("review", __name__, url_prefix="/api/v1")


def _role():
    return getattr(g, "actor_role", None)


@review_bp.route("/assignments/<int:assignment_id>/sections/<int:section_id>/submit", methods=["POST"])
def submit_section(assignment_id, section_id):
    result = svc.submit_section(assignment_id, section_id, _role())
    return jsonify(result)


@review_bp.route("/assignments/<int:assignment_id>/sections/<int:section_id>/review", methods=["POST"])
def review_section(assignment_id, section_id):
    """Body: {status: CTO_APPROVED|MASTER_APPROVED|REJECTED, comment?}"""
    data = json_body()
    result = svc.review_section(
        assignment_id, section_id, _role(), data.get("status"), comment=data.get("comment")
    )
    return jsonify(result)


@review_bp.route(
    "/assignments/<int:assignment_id>/completions/<int:task_template_id>/review",
    methods=["POST"],
)
def review_completion(assignment_id, task_template_id):
    """Body: {status, comment?}"""
    data = json_body()
    completion = svc.review_completion(
        assignment_id, task_template_id, _role(), data.get("status"), comment=data.get("comment")
    )
    return jsonify(completion.to_dict())


@review_bp.route(
    "/assignments/<int:assignment_id>/completions/<int:task_template_id>/reviews",
    methods=["GET"],
)
def review_history(assignment_id, task_template_id):
    items = [r.to_dict() for r in svc.get_review_history(assignment_id, task_template_id)]
    return jsonify({"items": items, "total": len(items)})


@review_bp.route("/assignments/<int:assignment_id>/timeline", methods=["GET"])
def audit_timeline(assignment_id):
    items = svc.get_audit_timeline(assignment_id)
    return jsonify({"assignment_id": assignment_id, "items": items, "total": len(items)})


@review_bp.route("/reviews/pending", methods=["GET"])
def pending_reviews():
    """Query params: role (defaults to the caller's X-Actor-Role)."""
    role = request.args.get("role") or _role()
    items = svc.list_review_queue(role)
    return jsonify({"role": role, "items": items, "total": len(items)})
