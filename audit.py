"""
Audit logging — records sign-ins and admin changes.

Events are written to both the audit_log table and structured logging.
"""

from __future__ import annotations

import logging
from datetime import datetime

from flask import has_request_context, request

from database import get_db

logger = logging.getLogger(__name__)


def log_event(action: str, admin_id: int | None = None, detail: str = "") -> None:
    """Insert an audit log entry and emit a structured log line."""
    ip, ua = "", ""
    if has_request_context():
        ip = request.remote_addr or ""
        ua = request.headers.get("User-Agent", "")

    try:
        db = get_db()
        db.execute(
            "INSERT INTO audit_log (admin_id, action, detail, ip_address, user_agent, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (admin_id, action, detail, ip, ua, datetime.now().isoformat()),
        )
        db.commit()
    except Exception as e:
        # Audit failures never break the request
        logger.warning("audit insert failed (%s): %s", action, e)

    logger.info("audit: %s admin_id=%s detail=%s ip=%s", action, admin_id, detail, ip)
