"""Autosave API: one debounced saver per open attendance page.

The page opens a view, posts every field change to it, polls the view for
the sync indicator and deletes it on unload. A request returns as soon as
the edit is queued; the write happens on the saver's timer.

Views live in this process only. A view that was closed, pruned or opened
by another worker answers 410 and the page opens a new one.
"""

from __future__ import annotations

from flask import Blueprint, abort, jsonify, make_response
from flask_login import login_required

from autosave import EditTarget, get_registry
from db_stores import StudentStoreDB
from extensions import limiter
from helpers import BadRequest, json_body, parse_week, require_choice
from models import ATTENDANCE_STATUSES, TYPING_STYLES, WEEK_GRADES

bp = Blueprint("autosave", __name__)

# Every keystroke-level change hits this API
limiter.exempt(bp)

FIELD_CHOICES = {
    "status": ATTENDANCE_STATUSES,
    "typing_style": TYPING_STYLES,
    "grade": WEEK_GRADES,
}


def _view_gone():
    """410 with a JSON body the page script uses to open a fresh view."""
    abort(make_response(jsonify({"error": "view expired", "expired": True}), 410))


def _saver(view_id: str):
    saver = get_registry().get(view_id)
    if saver is None:
        _view_gone()
    return saver


@bp.route("/api/autosave/views", methods=["POST"])
@login_required
def api_open_view():
    return jsonify({"view_id": get_registry().open()}), 201


@bp.route("/api/autosave/<view_id>", methods=["POST"])
@login_required
def api_request_save(view_id):
    saver = _saver(view_id)
    data = json_body()
    field = data.get("field")
    if field not in FIELD_CHOICES:
        raise BadRequest(f"field must be one of: {', '.join(FIELD_CHOICES)}")
    value = require_choice(data.get("value"), FIELD_CHOICES[field], field)
    week = parse_week(data.get("week_number"))
    student_id = data.get("student_id") or ""
    if not StudentStoreDB.get(student_id):
        raise BadRequest("Unknown student.")

    target = EditTarget(student_id, week, field)
    saver.request_save(target, value)
    return jsonify({"queued": True, "target": target.key, "state": saver.state(target).value}), 202


@bp.route("/api/autosave/<view_id>")
@login_required
def api_view_state(view_id):
    return jsonify(_saver(view_id).snapshot())


@bp.route("/api/autosave/<view_id>/flush", methods=["POST"])
@login_required
def api_flush_view(view_id):
    saver = _saver(view_id)
    results = saver.flush()
    return jsonify({
        "written": sum(1 for ok in results.values() if ok),
        "failed": sorted(t.key for t, ok in results.items() if not ok),
        **saver.snapshot(),
    })


@bp.route("/api/autosave/<view_id>", methods=["DELETE"])
@login_required
def api_close_view(view_id):
    if not get_registry().close(view_id):
        _view_gone()
    return jsonify({"closed": True})
