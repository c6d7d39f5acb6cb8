"""
Shared helpers used across blueprints: request parsing and small
validators that turn bad input into a 400 instead of a stack trace.
"""

from __future__ import annotations

from typing import Any

from flask import current_app, jsonify, request
from flask_login import current_user


class BadRequest(ValueError):
    """Client input rejected; message is returned as {"error": ...}."""


def current_admin_id() -> int | None:
    return current_user.id if current_user.is_authenticated else None


def current_admin_email() -> str:
    return current_user.email if current_user.is_authenticated else ""


def json_body() -> dict[str, Any]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise BadRequest("Expected a JSON object body.")
    return data


def require_choice(value: Any, choices: tuple[str, ...], label: str) -> str:
    if value not in choices:
        raise BadRequest(f"{label} must be one of: {', '.join(choices)}")
    return value


def parse_week(value: Any) -> int:
    """Week number within 1..TOTAL_WEEKS."""
    total = current_app.config.get("TOTAL_WEEKS", 11)
    try:
        week = int(value)
    except (TypeError, ValueError):
        raise BadRequest("week_number must be an integer.")
    if not 1 <= week <= total:
        raise BadRequest(f"week_number must be between 1 and {total}.")
    return week


def parse_wpm(value: Any) -> int:
    try:
        wpm = int(value)
    except (TypeError, ValueError):
        raise BadRequest("wpm_score must be an integer.")
    if wpm <= 0:
        raise BadRequest("wpm_score must be positive.")
    return wpm


def error_response(message: str, status: int = 400):
    return jsonify({"error": message}), status


def register_error_handlers(app) -> None:
    @app.errorhandler(BadRequest)
    def _bad_request(e: BadRequest):
        return error_response(str(e), 400)
