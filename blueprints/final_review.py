"""Final review routes: filter students, suggest and set final statuses, edit WPM."""

from __future__ import annotations

from flask import Blueprint, abort, current_app, jsonify, render_template, request
from flask_login import login_required

from audit import log_event
from db_stores import CohortStoreDB, StudentStoreDB
from grading import REVIEW_FILTERS, filter_for_review, status_counts, suggest_status
from helpers import current_admin_id, json_body, parse_wpm, require_choice
from models import FINAL_STATUSES

bp = Blueprint("final_review", __name__)


def _review_rows():
    review_filter = request.args.get("filter", "all")
    if review_filter not in REVIEW_FILTERS:
        review_filter = "all"
    cohort_id = request.args.get("cohort") or None
    everyone = StudentStoreDB.list(cohort_id=cohort_id)
    pass_wpm = current_app.config.get("PASS_WPM", 40)
    rows = [
        {**s.to_dict(), "suggested_status": suggest_status(s, pass_wpm)}
        for s in filter_for_review(everyone, review_filter)
    ]
    return review_filter, cohort_id, rows, status_counts(everyone)


def _get_student_or_404(student_id):
    student = StudentStoreDB.get(student_id)
    if student is None:
        abort(404)
    return student


@bp.route("/final-review")
@login_required
def final_review_page():
    review_filter, cohort_id, rows, counts = _review_rows()
    return render_template(
        "final_review.html",
        review_filter=review_filter,
        filters=REVIEW_FILTERS,
        cohort_id=cohort_id,
        cohorts=CohortStoreDB.list(order_by="name"),
        students=rows,
        counts=counts,
        final_statuses=FINAL_STATUSES,
    )


@bp.route("/api/final-review")
@login_required
def api_final_review():
    review_filter, cohort_id, rows, counts = _review_rows()
    return jsonify({"filter": review_filter, "students": rows, "counts": counts})


@bp.route("/api/final-review/<student_id>/status", methods=["POST"])
@login_required
def api_set_status(student_id):
    _get_student_or_404(student_id)
    status = require_choice(json_body().get("final_status"), FINAL_STATUSES, "final_status")
    student = StudentStoreDB.update(student_id, final_status=status)
    log_event("final_status_set", current_admin_id(), f"student={student_id} status={status}")
    return jsonify({"success": True, "student": student.to_dict()})


@bp.route("/api/final-review/<student_id>/apply-suggestion", methods=["POST"])
@login_required
def api_apply_suggestion(student_id):
    student = _get_student_or_404(student_id)
    status = suggest_status(student, current_app.config.get("PASS_WPM", 40))
    student = StudentStoreDB.update(student_id, final_status=status)
    log_event("final_status_suggested", current_admin_id(), f"student={student_id} status={status}")
    return jsonify({"success": True, "student": student.to_dict()})


@bp.route("/api/final-review/<student_id>/wpm", methods=["POST"])
@login_required
def api_set_wpm(student_id):
    _get_student_or_404(student_id)
    wpm = parse_wpm(json_body().get("wpm_score"))
    student = StudentStoreDB.update(student_id, wpm_score=wpm)
    return jsonify({
        "success": True,
        "student": student.to_dict(),
        "suggested_status": suggest_status(student, current_app.config.get("PASS_WPM", 40)),
    })
