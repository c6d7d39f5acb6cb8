"""Weekly attendance routes: week grid, Save Week, notes and per-student summaries.

Single-field edits on the week grid go through the autosave API
(blueprints/autosave_api.py); this module owns the bulk and read paths.
"""

from __future__ import annotations

from flask import Blueprint, abort, current_app, jsonify, render_template, request
from flask_login import login_required

from audit import log_event
from autosave import get_registry
from db_stores import AttendanceStoreDB, CohortStoreDB, StudentStoreDB, WeekDataStoreDB
from grading import attendance_summaries, week_summary
from helpers import BadRequest, current_admin_id, json_body, parse_week, require_choice
from models import ATTENDANCE_STATUSES, DEFAULT_ATTENDANCE, TYPING_STYLES, WEEK_GRADES

bp = Blueprint("attendance", __name__)


def _cohort_students(cohort_id: str | None):
    return StudentStoreDB.list(cohort_id=cohort_id or None)


def _week_data_map(week: int) -> dict[str, dict]:
    return {
        r["student_id"]: {"typing_style": r["typing_style"], "grade": r["grade"], "notes": r["notes"]}
        for r in WeekDataStoreDB.for_week(week)
    }


@bp.route("/attendance")
@login_required
def attendance_page():
    week = parse_week(request.args.get("week", 1))
    cohort_id = request.args.get("cohort") or None
    students = _cohort_students(cohort_id)
    week_map = AttendanceStoreDB.week_map(week)
    return render_template(
        "attendance.html",
        week=week,
        cohort_id=cohort_id,
        cohorts=CohortStoreDB.list(order_by="name"),
        students=students,
        attendance=week_map,
        week_data=_week_data_map(week),
        summary=week_summary(students, week_map),
        statuses=ATTENDANCE_STATUSES,
        typing_styles=TYPING_STYLES,
        grades=WEEK_GRADES,
        view_id=get_registry().open(),
    )


@bp.route("/api/attendance/week/<week>")
@login_required
def api_week(week):
    week = parse_week(week)
    students = _cohort_students(request.args.get("cohort"))
    week_map = AttendanceStoreDB.week_map(week)
    return jsonify({
        "week_number": week,
        "attendance": week_map,
        "week_data": _week_data_map(week),
        "summary": week_summary(students, week_map).to_dict(),
    })


@bp.route("/api/attendance/week/<week>/save", methods=["POST"])
@login_required
def api_save_week(week):
    """Save Week: write a status for every listed student.

    Pending autosave edits of the caller's view are flushed first. Students
    with no status in the payload or the database are saved as Present.
    """
    week = parse_week(week)
    data = json_body()
    statuses = data.get("statuses") or {}
    if not isinstance(statuses, dict):
        raise BadRequest("statuses must be an object of student_id -> status.")
    for status in statuses.values():
        require_choice(status, ATTENDANCE_STATUSES, "status")

    view_id = data.get("view_id")
    if view_id:
        saver = get_registry().get(view_id)
        if saver is not None:
            saver.flush()

    students = _cohort_students(data.get("cohort_id"))
    existing = AttendanceStoreDB.week_map(week)
    saved = {}
    for student in students:
        status = statuses.get(student.id) or existing.get(student.id) or DEFAULT_ATTENDANCE
        AttendanceStoreDB.upsert(student.id, week, status=status)
        saved[student.id] = status

    log_event("attendance_saved", current_admin_id(), f"week={week} count={len(saved)}")
    return jsonify({
        "success": True,
        "week_number": week,
        "attendance": saved,
        "summary": week_summary(students, saved).to_dict(),
    })


@bp.route("/api/attendance/week/<week>/notes", methods=["POST"])
@login_required
def api_save_notes(week):
    week = parse_week(week)
    data = json_body()
    student_id = data.get("student_id", "")
    if not StudentStoreDB.get(student_id):
        abort(404)
    record = WeekDataStoreDB.upsert(student_id, week, notes=(data.get("notes") or "").strip() or None)
    return jsonify({"success": True, "week_data": record})


@bp.route("/api/attendance/summary")
@login_required
def api_attendance_summary():
    students = _cohort_students(request.args.get("cohort"))
    records = AttendanceStoreDB.for_students([s.id for s in students])
    total_weeks = current_app.config.get("TOTAL_WEEKS", 11)
    summaries = attendance_summaries(students, records, total_weeks)
    return jsonify({"summaries": [s.to_dict() for s in summaries]})
