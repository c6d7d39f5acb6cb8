"""Invite routes: list invites and invite someone outside the allowed domains."""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, render_template
from flask_login import login_required

from audit import log_event
from db_stores import EmailLogStoreDB, InviteStoreDB
from email_service import EmailError, EmailService
from helpers import BadRequest, current_admin_email, current_admin_id, json_body

bp = Blueprint("invites", __name__)


def invite_link(token: str) -> str:
    return f"{current_app.config.get('BASE_URL', '').rstrip('/')}/login?invite={token}"


@bp.route("/invites")
@login_required
def invites_page():
    return render_template("invites.html", invites=InviteStoreDB.list())


@bp.route("/api/invites")
@login_required
def api_list_invites():
    return jsonify({"invites": InviteStoreDB.list()})


@bp.route("/api/invites", methods=["POST"])
@login_required
def api_create_invite():
    email = (json_body().get("email") or "").strip().lower()
    if "@" not in email:
        raise BadRequest("A valid email is required.")
    if InviteStoreDB.pending_for_email(email):
        raise BadRequest("An invite has already been sent to this email")

    invite = InviteStoreDB.create(
        email,
        expiry_days=current_app.config.get("INVITE_EXPIRY_DAYS", 7),
        invited_by=current_admin_email(),
    )
    link = invite_link(invite["token"])
    app_name = current_app.config.get("APP_NAME", "Typetech")
    subject = f"You're invited to {app_name}"
    error = None
    try:
        email_status = EmailService.send_later(
            email,
            subject,
            f"<p>You have been invited to the {app_name} admin dashboard.</p>"
            f"<p><a href=\"{link}\">Accept the invite</a> (expires {invite['expires_at'][:10]}).</p>",
        )
    except EmailError as e:
        # The invite stands; the admin can share the link by hand
        email_status, error = "failed", str(e)
    EmailLogStoreDB.log(None, "invite", email, email_status, subject=subject,
                        error_message=error, metadata={"invite_id": invite["id"]})
    log_event("invite_created", current_admin_id(), f"email={email} delivery={email_status}")
    return jsonify({
        "success": True,
        "invite": invite,
        "link": link,
        "email_status": email_status,
        "email_error": error,
    }), 201
