"""Google OAuth sign-in with domain allow-listing and invite acceptance."""

from __future__ import annotations

import logging

from authlib.integrations.base_client.errors import OAuthError
from authlib.integrations.flask_client import OAuth
from flask import Blueprint, current_app, redirect, session, url_for
from flask_login import login_user

from audit import log_event
from auth import NOT_AUTHORIZED, Admin, check_invite, is_email_allowed
from db_stores import AdminStoreDB, InviteStoreDB

logger = logging.getLogger(__name__)

oauth_bp = Blueprint("oauth", __name__)

oauth = OAuth()


def init_oauth(app):
    """Initialize OAuth with the Flask app. Call from create_app()."""
    oauth.init_app(app)
    client_id = app.config.get("GOOGLE_OAUTH_CLIENT_ID", "")
    if not client_id:
        logger.info("GOOGLE_OAUTH_CLIENT_ID not set — Google sign-in disabled")
        return

    oauth.register(
        name="google",
        client_id=client_id,
        client_secret=app.config.get("GOOGLE_OAUTH_CLIENT_SECRET", ""),
        server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
        client_kwargs={"scope": "openid email profile"},
        overwrite=True,
    )


def is_oauth_available() -> bool:
    """Check if Google OAuth is configured."""
    return bool(current_app.config.get("GOOGLE_OAUTH_CLIENT_ID", "")) and oauth.create_client("google") is not None


def _refuse(message: str, email: str = ""):
    log_event("login_refused", None, f"email={email} reason={message}")
    return redirect(url_for("auth.login", error=message))


def complete_sign_in(email: str, name: str = "", google_id: str = ""):
    """Admit an authenticated Google identity if allowed, else refuse it.

    Invited addresses outside the allow-list are admitted once and the
    invite is marked accepted.
    """
    email = (email or "").strip().lower()
    if not email:
        return _refuse("Could not get email from Google. Please try again.")

    token = session.pop("invite_token", "")
    allowed = is_email_allowed(email)
    if token:
        invite, error = check_invite(token)
        if invite and invite["email"] == email:
            InviteStoreDB.accept(token)
            log_event("invite_accepted", None, f"email={email}")
            allowed = True
        elif not allowed:
            return _refuse(error or NOT_AUTHORIZED, email)

    if not allowed:
        return _refuse(NOT_AUTHORIZED, email)

    row = AdminStoreDB.record_login(email, name=name, google_id=google_id)
    login_user(Admin(row["id"], row["email"], row["name"]), remember=True)
    log_event("login_google", row["id"])
    return redirect(url_for("core.dashboard"))


@oauth_bp.route("/login/google")
def google_login():
    """Redirect to Google OAuth consent screen."""
    if not is_oauth_available():
        return redirect(url_for("auth.login", error="Google login is not configured."))

    redirect_uri = url_for("oauth.google_callback", _external=True)
    return oauth.google.authorize_redirect(redirect_uri)


@oauth_bp.route("/callback/google")
def google_callback():
    """Handle Google OAuth callback."""
    if not is_oauth_available():
        return redirect(url_for("auth.login", error="Google login is not configured."))

    try:
        token = oauth.google.authorize_access_token()
        user_info = token.get("userinfo") or oauth.google.userinfo()
    except OAuthError as e:
        logger.error("Google OAuth error: %s", e)
        return redirect(url_for("auth.login", error="Google login failed. Please try again."))

    return complete_sign_in(
        email=user_info.get("email", ""),
        name=user_info.get("name", ""),
        google_id=user_info.get("sub", ""),
    )
