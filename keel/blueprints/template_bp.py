"""
Familiarisation template blueprint.

Endpoints:
    GET  /api/v1/templates/applicable?category=&ship_type_id=  - ordered tasks
    POST /api/v1/templates/import                              - bulk structure import
"""

import logging

from flask import Blueprint, jsonify, request

from keel.blueprints import json_body
from keel.core.exceptions import ValidationError
from keel.services import template_service as svc

logger = logging.getLogger(__name__)

template_bp = Blueprint("template", __name__, url_prefix="/api/v1/templates")


@template_bp.route("/applicable", methods=["GET"])
def applicable_tasks():
    """Query params: category (required), ship_type_id (optional)."""
    category = request.args.get("category")
    if not category:
        raise ValidationError("category is required", details={"category": "required"})
    raw_ship_type = request.args.get("ship_type_id")
    ship_type_id = None
    if raw_ship_type:
        try:
            ship_type_id = int(raw_ship_type)
        except ValueError as exc:
            raise ValidationError(
                "ship_type_id must be an integer", details={"ship_type_id": raw_ship_type}
            ) from exc

    grouped = {}
    order = []
    for section, task in svc.list_applicable_tasks(category, ship_type_id):
        if section.id not in grouped:
            entry = section.to_dict()
            entry["tasks"] = []
            grouped[section.id] = entry
            order.append(section.id)
        grouped[section.id]["tasks"].append(task.to_dict())
    sections = [grouped[sid] for sid in order]
    return jsonify({
        "category": category.strip().upper(),
        "ship_type_id": ship_type_id,
        "sections": sections,
        "total": sum(len(s["tasks"]) for s in sections),
    })


@template_bp.route("/import", methods=["POST"])
def import_structure():
    """Body: {rows: [...], conflict_strategy?: SKIP|UPDATE}"""
    data = json_body()
    counts = svc.import_structure(
        data.get("rows"), conflict_strategy=data.get("conflict_strategy") or "SKIP"
    )
    return jsonify(counts)
