"""
Task completion blueprint.

Endpoints:
    POST  /api/v1/assignments/<id>/completions        - sign off a task
    GET   /api/v1/assignments/<id>/completions        - completions of an assignment
    PATCH /api/v1/assignments/<id>/completions/<tid>  - replace remarks
    GET   /api/v1/assignments/<id>/evidence           - attachment metadata
"""

import logging

from flask import Blueprint, jsonify

from keel.blueprints import json_body
from keel.core.exceptions import ValidationError
from keel.services import completion_service as svc

logger = logging.getLogger(__name__)

completion_bp = Blueprint("completion", __name__, url_prefix="/api/v1/assignments")


@completion_bp.route("/<int:assignment_id>/completions", methods=["POST"])
def record_completion(assignment_id):
    """Body: {task_template_id, signed_by, remarks?, attachments?: [{file_name, file_url}]}"""
    data = json_body()
    task_id = data.get("task_template_id")
    if not isinstance(task_id, int) or isinstance(task_id, bool):
        raise ValidationError(
            "task_template_id is required and must be an integer",
            details={"task_template_id": task_id},
        )
    completion = svc.record_completion(
        assignment_id,
        task_id,
        signed_by=data.get("signed_by"),
        remarks=data.get("remarks"),
        attachments=data.get("attachments"),
    )
    return jsonify(completion.to_dict()), 201


@completion_bp.route("/<int:assignment_id>/completions", methods=["GET"])
def list_completions(assignment_id):
    completions = svc.get_completions_for_assignment(assignment_id)
    items = [c.to_dict() for _, c in sorted(completions.items())]
    return jsonify({"items": items, "total": len(items)})


@completion_bp.route("/<int:assignment_id>/completions/<int:task_template_id>", methods=["PATCH"])
def update_remarks(assignment_id, task_template_id):
    """Body: {remarks}"""
    data = json_body()
    if "remarks" not in data:
        raise ValidationError("remarks is required", details={"remarks": "required"})
    completion = svc.update_remarks(assignment_id, task_template_id, data.get("remarks"))
    return jsonify(completion.to_dict())


@completion_bp.route("/<int:assignment_id>/evidence", methods=["GET"])
def list_evidence(assignment_id):
    items = svc.list_evidence(assignment_id)
    return jsonify({"items": items, "total": len(items)})
