"""Sign-in tests: allow-list, invites and the Google OAuth flow."""

from __future__ import annotations

from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest
from flask import session
from flask_login import current_user

from auth import NOT_AUTHORIZED, check_invite, is_email_allowed
from db_stores import AdminStoreDB, InviteStoreDB


class TestAllowList:
    def test_domain_match(self):
        assert is_email_allowed("kim@alueducation.com", ["alueducation.com"], [])
        assert is_email_allowed(" Kim@ALUEducation.com ", ["alueducation.com"], [])

    def test_subdomain_is_not_the_domain(self):
        assert not is_email_allowed("kim@mail.alueducation.com", ["alueducation.com"], [])

    def test_exact_email(self):
        assert is_email_allowed("tutor@gmail.com", ["alueducation.com"], ["tutor@gmail.com"])
        assert not is_email_allowed("other@gmail.com", ["alueducation.com"], ["tutor@gmail.com"])

    def test_garbage(self):
        assert not is_email_allowed("", ["alueducation.com"], [])
        assert not is_email_allowed("no-at-sign", ["alueducation.com"], [])

    def test_reads_app_config(self, app):
        with app.app_context():
            assert is_email_allowed("kim@alueducation.com")
            assert not is_email_allowed("kim@gmail.com")


class TestCheckInvite:
    def test_unknown_token(self, app):
        with app.app_context():
            assert check_invite("nope") == (None, "Invalid or expired invite link")
            assert check_invite("") == (None, "Invalid or expired invite link")

    def test_used_invite(self, app):
        with app.app_context():
            invite = InviteStoreDB.create("guest@example.com")
            InviteStoreDB.accept(invite["token"])
            assert check_invite(invite["token"]) == (None, "This invite has already been used")

    def test_expired_invite(self, app):
        with app.app_context():
            invite = InviteStoreDB.create("guest@example.com")
            later = datetime.now() + timedelta(days=8)
            assert check_invite(invite["token"], now=later) == (None, "This invite link has expired")

    def test_valid_invite(self, app):
        with app.app_context():
            invite = InviteStoreDB.create("guest@example.com")
            found, error = check_invite(invite["token"])
            assert error is None and found["email"] == "guest@example.com"


class TestLoginPage:
    def test_renders(self, client):
        resp = client.get("/login")
        assert resp.status_code == 200
        assert b"not configured" in resp.data

    def test_shows_error(self, client):
        resp = client.get("/login?error=" + NOT_AUTHORIZED.replace(" ", "+"))
        assert NOT_AUTHORIZED.encode() in resp.data

    def test_invite_link_remembers_token(self, app, client):
        with app.app_context():
            invite = InviteStoreDB.create("guest@example.com")
        resp = client.get(f"/login?invite={invite['token']}")
        assert b"guest@example.com" in resp.data
        with client.session_transaction() as sess:
            assert sess["invite_token"] == invite["token"]

    def test_bad_invite_shows_error(self, client):
        resp = client.get("/login?invite=bogus")
        assert b"Invalid or expired invite link" in resp.data

    def test_dashboard_requires_login(self, client):
        resp = client.get("/dashboard")
        assert resp.status_code == 302
        assert "/login" in resp.headers["Location"]

    def test_logout(self, auth_client):
        resp = auth_client.post("/logout")
        assert resp.status_code == 302
        assert auth_client.get("/dashboard").status_code == 302


class TestCompleteSignIn:
    def _sign_in(self, app, email, token=None):
        from oauth import complete_sign_in

        with app.app_context(), app.test_request_context("/callback/google"):
            if token:
                session["invite_token"] = token
            resp = complete_sign_in(email, name="Someone", google_id="g-42")
            return resp, current_user.is_authenticated

    def test_allowed_domain_creates_admin(self, app):
        resp, signed_in = self._sign_in(app, "Kim@alueducation.com")
        assert signed_in
        assert resp.headers["Location"].endswith("/dashboard")
        with app.app_context():
            admin = AdminStoreDB.get_by_email("kim@alueducation.com")
        assert admin["google_id"] == "g-42"

    def test_outsider_refused(self, app):
        resp, signed_in = self._sign_in(app, "kim@gmail.com")
        assert not signed_in
        assert "/login?error=" in resp.headers["Location"]
        with app.app_context():
            assert AdminStoreDB.get_by_email("kim@gmail.com") is None

    def test_missing_email_refused(self, app):
        resp, signed_in = self._sign_in(app, "")
        assert not signed_in

    def test_invited_outsider_admitted_once(self, app):
        with app.app_context():
            token = InviteStoreDB.create("guest@gmail.com")["token"]
        resp, signed_in = self._sign_in(app, "guest@gmail.com", token)
        assert signed_in
        with app.app_context():
            assert InviteStoreDB.get_by_token(token)["status"] == "accepted"

        resp, signed_in = self._sign_in(app, "guest@gmail.com", token)
        assert not signed_in
        assert "already+been+used" in resp.headers["Location"] or "already%20been%20used" in resp.headers["Location"]

    def test_invite_for_other_address_refused(self, app):
        with app.app_context():
            token = InviteStoreDB.create("guest@gmail.com")["token"]
        resp, signed_in = self._sign_in(app, "intruder@gmail.com", token)
        assert not signed_in
        with app.app_context():
            assert InviteStoreDB.get_by_token(token)["status"] == "pending"

    def test_audit_rows_written(self, app):
        self._sign_in(app, "kim@alueducation.com")
        self._sign_in(app, "kim@gmail.com")
        with app.app_context():
            from database import get_db
            actions = [r["action"] for r in get_db().execute("SELECT action FROM audit_log ORDER BY id")]
        assert actions == ["login_google", "login_refused"]


class TestGoogleRoutes:
    def test_login_redirects_when_not_configured(self, client):
        resp = client.get("/login/google", follow_redirects=True)
        assert b"Google login is not configured" in resp.data

    def test_routes_registered(self, app):
        rules = {rule.rule for rule in app.url_map.iter_rules()}
        assert {"/login/google", "/callback/google"} <= rules

    def test_callback_signs_in(self, app, client):
        google = MagicMock()
        google.authorize_access_token.return_value = {
            "userinfo": {"email": "kim@alueducation.com", "name": "Kim", "sub": "g-1"},
        }
        with patch("oauth.is_oauth_available", return_value=True), \
             patch("oauth.oauth") as oauth:
            oauth.google = google
            resp = client.get("/callback/google")
        assert resp.status_code == 302
        assert resp.headers["Location"].endswith("/dashboard")
        assert client.get("/dashboard").status_code == 200

    def test_callback_oauth_error(self, client):
        from authlib.integrations.base_client.errors import OAuthError

        google = MagicMock()
        google.authorize_access_token.side_effect = OAuthError(error="access_denied")
        with patch("oauth.is_oauth_available", return_value=True), \
             patch("oauth.oauth") as oauth:
            oauth.google = google
            resp = client.get("/callback/google", follow_redirects=True)
        assert b"Google login failed" in resp.data
