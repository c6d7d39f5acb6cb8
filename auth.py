"""
Admin authentication — Flask-Login blueprint.

Google (see oauth.py) is the only sign-in method. Access is limited to the
configured domains and addresses, plus anyone holding a valid invite.
This module owns the login page, logout and the allow-list checks.
"""

from __future__ import annotations

from datetime import datetime

from flask import Blueprint, current_app, redirect, render_template, request, session, url_for
from flask_login import LoginManager, UserMixin, current_user, login_required, logout_user

from audit import log_event
from db_stores import AdminStoreDB, InviteStoreDB

auth_bp = Blueprint("auth", __name__)
login_manager = LoginManager()
login_manager.login_view = "auth.login"

NOT_AUTHORIZED = "This email is not authorized to access this application"


class Admin(UserMixin):
    """Wraps an admins row for Flask-Login."""

    def __init__(self, id: int, email: str, name: str = ""):
        self.id = id
        self.email = email
        self.name = name

    @staticmethod
    def get(admin_id: int):
        row = AdminStoreDB.get(admin_id)
        if row:
            return Admin(row["id"], row["email"], row["name"])
        return None


@login_manager.user_loader
def load_user(admin_id):
    return Admin.get(int(admin_id))


def is_email_allowed(email: str, allowed_domains=None, allowed_emails=None) -> bool:
    """Domain allow-list or exact-address allow-list."""
    email = (email or "").strip().lower()
    if "@" not in email:
        return False
    if allowed_domains is None:
        allowed_domains = current_app.config.get("ALLOWED_DOMAINS", [])
    if allowed_emails is None:
        allowed_emails = current_app.config.get("ALLOWED_EMAILS", [])
    domain = email.rsplit("@", 1)[1]
    return domain in allowed_domains or email in allowed_emails


def check_invite(token: str, now: datetime | None = None) -> tuple[dict | None, str | None]:
    """Return (invite, None) for a usable invite, else (None, error message)."""
    invite = InviteStoreDB.get_by_token(token) if token else None
    if not invite:
        return None, "Invalid or expired invite link"
    if invite["status"] != "pending":
        return None, "This invite has already been used"
    try:
        expired = datetime.fromisoformat(invite["expires_at"]) < (now or datetime.now())
    except (TypeError, ValueError):
        expired = True
    if expired:
        return None, "This invite link has expired"
    return invite, None


@auth_bp.route("/login")
def login():
    if current_user.is_authenticated:
        return redirect(url_for("core.dashboard"))

    error = request.args.get("error")
    invite_email = None
    token = request.args.get("invite", "")
    if token:
        invite, invite_error = check_invite(token)
        if invite:
            session["invite_token"] = token
            invite_email = invite["email"]
        else:
            session.pop("invite_token", None)
            error = invite_error

    return render_template("login.html", error=error, invite_email=invite_email)


@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    log_event("logout", current_user.id)
    logout_user()
    return redirect(url_for("auth.login"))
