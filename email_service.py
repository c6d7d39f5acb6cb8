"""
Email service — sends email via SMTP or logs to console.

Uses EMAIL_BACKEND config to choose transport:
  - "log" (default): writes the email to the log
  - "smtp": sends via SMTP using MAIL_* settings

Certificate emails are sent inline so the caller can record the outcome;
invite emails go through the task queue.
"""

from __future__ import annotations

import logging
import smtplib
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from flask import current_app
from rq.job import Job

logger = logging.getLogger(__name__)


class EmailError(Exception):
    """Delivery failed; the message is safe to show and to store."""


def _smtp_config() -> dict:
    """Extract config for context-free background execution."""
    cfg = current_app.config
    return {
        "backend": cfg.get("EMAIL_BACKEND", "log"),
        "mail_from": cfg.get("MAIL_FROM", "typing@example.com"),
        "mail_server": cfg.get("MAIL_SERVER", "localhost"),
        "mail_port": cfg.get("MAIL_PORT", 587),
        "mail_username": cfg.get("MAIL_USERNAME", ""),
        "mail_password": cfg.get("MAIL_PASSWORD", ""),
    }


class EmailService:
    @staticmethod
    def send(to: str, subject: str, body_html: str,
             attachments: list[tuple[str, bytes]] | None = None) -> None:
        """Send now. Raises EmailError on failure."""
        EmailService._do_send(to, subject, body_html, _smtp_config(), attachments)

    @staticmethod
    def send_later(to: str, subject: str, body_html: str) -> str:
        """Hand the email to the task queue (inline when no queue is configured).

        Returns "queued" when an RQ job took it, "sent" when it went out
        inline. An inline failure raises EmailError.
        """
        from tasks import enqueue
        result = enqueue(EmailService._do_send, to, subject, body_html, _smtp_config())
        return "queued" if isinstance(result, Job) else "sent"

    @staticmethod
    def _do_send(to: str, subject: str, body_html: str, config: dict,
                 attachments: list[tuple[str, bytes]] | None = None) -> None:
        """Actual send — no Flask context required."""
        attachments = attachments or []
        if config.get("backend", "log") == "log":
            logger.info(
                "EMAIL [to=%s] subject=%s attachments=%s\n%s",
                to, subject, [name for name, _ in attachments], body_html,
            )
            return

        msg = MIMEMultipart("mixed")
        msg["Subject"] = subject
        msg["From"] = config.get("mail_from", "typing@example.com")
        msg["To"] = to
        msg.attach(MIMEText(body_html, "html"))
        for filename, payload in attachments:
            part = MIMEApplication(payload, Name=filename)
            part["Content-Disposition"] = f'attachment; filename="{filename}"'
            msg.attach(part)

        username = config.get("mail_username", "")
        password = config.get("mail_password", "")
        try:
            with smtplib.SMTP(config.get("mail_server", "localhost"), config.get("mail_port", 587)) as smtp:
                smtp.starttls()
                if username and password:
                    smtp.login(username, password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("SMTP send to %s failed: %s", to, e)
            raise EmailError(str(e)) from e
