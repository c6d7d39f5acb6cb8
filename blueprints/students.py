"""Student roster routes: list/search, create, edit, delete, import and CSV export."""

from __future__ import annotations

from flask import Blueprint, Response, abort, jsonify, render_template, request
from flask_login import login_required

from audit import log_event
from db_stores import CohortStoreDB, StudentStoreDB
from export import students_to_csv
from helpers import BadRequest, current_admin_id, json_body, parse_wpm, require_choice
from models import FINAL_STATUSES, TYPING_STYLES
from student_import import RosterParseError, parse_roster

bp = Blueprint("students", __name__)

_BOOL_FIELDS = ("curriculum_completed", "admin_approved")


def _list_from_args() -> list:
    return StudentStoreDB.list(
        cohort_id=request.args.get("cohort") or None,
        status=request.args.get("status") or None,
        search=request.args.get("q") or None,
        sort=request.args.get("sort", "name"),
        direction=request.args.get("direction", "asc"),
    )


def _clean_fields(data: dict) -> dict:
    """Validate the editable subset of a student payload."""
    fields = {}
    for key in ("name", "email"):
        if key in data:
            value = data[key]
            if not isinstance(value, str) or not value.strip():
                raise BadRequest(f"{key} must be a non-empty string.")
            fields[key] = value.strip()
    if data.get("typing_style") not in (None, ""):
        fields["typing_style"] = require_choice(data["typing_style"], TYPING_STYLES, "typing_style")
    if "final_status" in data:
        fields["final_status"] = require_choice(data["final_status"], FINAL_STATUSES, "final_status")
    if data.get("wpm_score") not in (None, ""):
        fields["wpm_score"] = parse_wpm(data["wpm_score"])
    for key in _BOOL_FIELDS:
        if key in data:
            fields[key] = 1 if data[key] else 0
    if "cohort_id" in data:
        cohort_id = data["cohort_id"] or None
        if cohort_id and not CohortStoreDB.get(cohort_id):
            raise BadRequest("Unknown cohort.")
        fields["cohort_id"] = cohort_id
    if "notes" in data:
        fields["notes"] = data["notes"] or None
    return fields


@bp.route("/students")
@login_required
def students_page():
    return render_template(
        "students.html",
        students=_list_from_args(),
        cohorts=CohortStoreDB.list(order_by="name"),
        typing_styles=TYPING_STYLES,
        final_statuses=FINAL_STATUSES,
    )


@bp.route("/api/students")
@login_required
def api_list_students():
    return jsonify({"students": [s.to_dict() for s in _list_from_args()]})


@bp.route("/api/students", methods=["POST"])
@login_required
def api_create_student():
    data = json_body()
    if not data.get("name") or not data.get("email"):
        raise BadRequest("Name and email are required.")
    fields = _clean_fields(data)
    student = StudentStoreDB.create(
        fields.pop("name"), fields.pop("email"), fields.pop("cohort_id", None), **fields,
    )
    log_event("student_created", current_admin_id(), f"student={student.id}")
    return jsonify({"success": True, "student": student.to_dict()}), 201


@bp.route("/api/students/<student_id>", methods=["PATCH"])
@login_required
def api_update_student(student_id):
    fields = _clean_fields(json_body())
    if not fields:
        raise BadRequest("Nothing to update.")
    student = StudentStoreDB.update(student_id, **fields)
    if student is None:
        abort(404)
    log_event("student_updated", current_admin_id(), f"student={student_id} fields={','.join(fields)}")
    return jsonify({"success": True, "student": student.to_dict()})


@bp.route("/api/students/<student_id>", methods=["DELETE"])
@login_required
def api_delete_student(student_id):
    if not StudentStoreDB.delete(student_id):
        abort(404)
    log_event("student_deleted", current_admin_id(), f"student={student_id}")
    return jsonify({"success": True})


@bp.route("/api/students/import", methods=["POST"])
@login_required
def api_import_students():
    """Import pasted rows. With "preview": true nothing is written."""
    data = json_body()
    try:
        entries = parse_roster(data.get("text", ""))
    except RosterParseError as e:
        raise BadRequest(str(e))

    if data.get("preview"):
        return jsonify({"preview": entries, "count": len(entries)})

    cohort_id = data.get("cohort_id") or None
    if cohort_id and not CohortStoreDB.get(cohort_id):
        raise BadRequest("Unknown cohort.")
    students = StudentStoreDB.bulk_create(entries, cohort_id=cohort_id)
    log_event("students_imported", current_admin_id(), f"count={len(students)}")
    return jsonify({"success": True, "count": len(students),
                    "students": [s.to_dict() for s in students]}), 201


@bp.route("/api/students/export.csv")
@login_required
def api_export_csv():
    cohort_names = {c["id"]: c["name"] for c in CohortStoreDB.list()}
    csv_text = students_to_csv(_list_from_args(), cohort_names)
    return Response(
        csv_text,
        mimetype="text/csv",
        headers={"Content-Disposition": "attachment; filename=students.csv"},
    )
