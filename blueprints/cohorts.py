"""Cohort routes."""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import login_required

from audit import log_event
from db_stores import CohortStoreDB
from helpers import BadRequest, current_admin_id, json_body

bp = Blueprint("cohorts", __name__)


@bp.route("/api/cohorts")
@login_required
def api_list_cohorts():
    order_by = "name" if request.args.get("order") == "name" else "created_at"
    return jsonify({"cohorts": CohortStoreDB.list(order_by=order_by)})


@bp.route("/api/cohorts", methods=["POST"])
@login_required
def api_create_cohort():
    data = json_body()
    name = (data.get("name") or "").strip()
    if not name:
        raise BadRequest("Cohort name is required.")
    cohort = CohortStoreDB.create(
        name=name,
        description=data.get("description", ""),
        start_date=data.get("start_date", ""),
        end_date=data.get("end_date", ""),
    )
    log_event("cohort_created", current_admin_id(), f"cohort={cohort['id']}")
    return jsonify({"success": True, "cohort": cohort}), 201
