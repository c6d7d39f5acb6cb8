"""Core routes — index redirect, dashboard, stats API, settings, health checks."""

from __future__ import annotations

import logging
import time

from flask import Blueprint, current_app, jsonify, redirect, render_template, url_for
from flask_login import login_required

from db_stores import StudentStoreDB
from grading import dashboard_stats

logger = logging.getLogger(__name__)

bp = Blueprint("core", __name__)

_start_time = time.time()


@bp.route("/")
@login_required
def index():
    return redirect(url_for("core.dashboard"))


@bp.route("/dashboard")
@login_required
def dashboard():
    students = StudentStoreDB.list()
    return render_template(
        "dashboard.html",
        stats=dashboard_stats(students),
        recent=StudentStoreDB.recent(5),
    )


@bp.route("/settings")
@login_required
def settings():
    """Read-only view of the class settings; they are changed through the environment."""
    cfg = current_app.config
    return render_template(
        "settings.html",
        settings={
            "Course name": cfg.get("COURSE_NAME"),
            "Total weeks": cfg.get("TOTAL_WEEKS"),
            "Pass WPM": cfg.get("PASS_WPM"),
            "Invite expiry (days)": cfg.get("INVITE_EXPIRY_DAYS"),
            "Autosave delay (ms)": cfg.get("AUTOSAVE_DELAY_MS"),
            "Email backend": cfg.get("EMAIL_BACKEND"),
            "Allowed domains": ", ".join(cfg.get("ALLOWED_DOMAINS", [])),
            "Allowed emails": ", ".join(cfg.get("ALLOWED_EMAILS", [])),
        },
    )


@bp.route("/api/dashboard/stats")
@login_required
def api_dashboard_stats():
    stats = dashboard_stats(StudentStoreDB.list())
    stats["recent_students"] = [s.to_dict() for s in StudentStoreDB.recent(5)]
    return jsonify(stats)


# ── Health checks ──────────────────────────────────────────

@bp.route("/health")
def health():
    uptime = int(time.time() - _start_time)
    return jsonify({"status": "ok", "uptime_seconds": uptime})


@bp.route("/ready")
def ready():
    try:
        from database import get_db
        db = get_db()
        db.execute("SELECT 1").fetchone()
        return jsonify({"status": "ready"}), 200
    except Exception as exc:
        logger.error("Readiness check failed: %s", exc, exc_info=True)
        return jsonify({"status": "not_ready"}), 503
