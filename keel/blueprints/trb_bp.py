"""
Training Record Book blueprint.

Endpoints:
    GET /api/v1/trb/overview?status=             - one row per assignment
    GET /api/v1/trb/<cadet_id>/<vessel_id>       - familiarisation summary
"""

from flask import Blueprint, jsonify, request

from keel.services import trb_service

trb_bp = Blueprint("trb", __name__, url_prefix="/api/v1/trb")


@trb_bp.route("/overview", methods=["GET"])
def overview():
    rows = trb_service.list_trb_overview(status=request.args.get("status"))
    return jsonify({"items": rows, "total": len(rows)})


@trb_bp.route("/<int:cadet_id>/<int:vessel_id>", methods=["GET"])
def summary(cadet_id, vessel_id):
    return jsonify(trb_service.generate_summary(cadet_id, vessel_id))
