"""
Typetech Admin — Flask Web Application

Admin dashboard for a typing class: students, weekly attendance with
autosave, final review, certificates and sign-in invites.
"""

from __future__ import annotations

import atexit
import os
from typing import Any

from flask import Flask, Response

import database
from auth import auth_bp, login_manager
from autosave import init_autosave
from blueprints import register_blueprints
from extensions import compress, csrf, limiter
from helpers import register_error_handlers
from logging_config import init_logging
from oauth import init_oauth, is_oauth_available, oauth_bp
from tasks import init_tasks


def create_app(test_config: dict[str, Any] | None = None) -> Flask:
    app = Flask(__name__)

    # Load config
    from config import config_by_name
    env = "testing" if test_config and test_config.get("TESTING") else os.environ.get("FLASK_ENV", "development")
    cfg = config_by_name.get(env, config_by_name["development"])
    app.config.from_object(cfg)
    if test_config is not None:
        app.config.update(test_config)
    elif hasattr(cfg, "validate"):
        cfg.validate()

    init_logging(app)

    # CSRF: forms post csrf_token, fetch() calls send it as X-CSRFToken
    csrf.init_app(app)
    compress.init_app(app)

    limiter.init_app(app)
    if app.config.get("TESTING"):
        limiter.enabled = False

    database.init_app(app)
    init_tasks(app)

    registry = init_autosave(app)
    atexit.register(registry.close_all)

    app.register_blueprint(auth_bp)
    login_manager.init_app(app)
    init_oauth(app)
    app.register_blueprint(oauth_bp)

    register_blueprints(app)
    register_error_handlers(app)

    @app.context_processor
    def template_globals() -> dict[str, Any]:
        return {
            "app_name": app.config.get("APP_NAME", "Typetech"),
            "google_oauth_available": is_oauth_available(),
            "total_weeks": app.config.get("TOTAL_WEEKS", 11),
        }

    # Security headers
    @app.after_request
    def set_security_headers(response: Response) -> Response:
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "SAMEORIGIN"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Content-Security-Policy"] = (
            "default-src 'self'; "
            "script-src 'self' 'unsafe-inline'; "
            "style-src 'self' 'unsafe-inline'; "
            "img-src 'self' data:; "
            "connect-src 'self'"
        )
        if not app.debug:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response

    if not app.config.get("TESTING"):
        from scheduler import init_scheduler
        init_scheduler(app)

    return app


if __name__ == "__main__":
    create_app().run(debug=True, port=5001)
