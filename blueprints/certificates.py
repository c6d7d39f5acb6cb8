"""Certificate routes: eligible list, PDF generation, download and email delivery."""

from __future__ import annotations

import logging
from pathlib import Path

from flask import Blueprint, abort, current_app, jsonify, render_template, request, send_file, url_for
from flask_login import login_required

from audit import log_event
from db_stores import CertificateStoreDB, CohortStoreDB, EmailLogStoreDB, StudentStoreDB
from email_service import EmailError, EmailService
from export import certificate_filename, write_certificate
from helpers import BadRequest, current_admin_id, json_body
from models import CERTIFICATE_ELIGIBLE, Student, now_iso

logger = logging.getLogger(__name__)

bp = Blueprint("certificates", __name__)

CERTIFICATE_FILTERS = ("all", "complete", "pass")


def _certificate_status(student: Student, cert: dict | None) -> str:
    if cert and (cert["email_sent"] or student.certificate_emailed):
        return "Emailed"
    if cert:
        return "Generated"
    return "Not Generated"


def _eligible(cert_filter: str = "all", cohort_id: str | None = None) -> list[Student]:
    students = StudentStoreDB.list(cohort_id=cohort_id)
    wanted = CERTIFICATE_ELIGIBLE
    if cert_filter in ("complete", "pass"):
        wanted = (cert_filter.capitalize(),)
    return [s for s in students if s.final_status in wanted]


def _rows(students: list[Student]) -> list[dict]:
    certs = CertificateStoreDB.for_students([s.id for s in students])
    rows = []
    for s in students:
        cert = certs.get(s.id)
        rows.append({
            **s.to_dict(),
            "certificate_status": _certificate_status(s, cert),
            "certificate_url": cert["certificate_url"] if cert else None,
            "generated_at": cert["generated_at"] if cert else None,
            "email_error": cert["email_error"] if cert else None,
        })
    return rows


def _student_ids(data: dict) -> list[str]:
    ids = data.get("student_ids")
    if not isinstance(ids, list) or not ids:
        raise BadRequest("student_ids must be a non-empty list.")
    return [str(i) for i in ids]


def _generate(student: Student) -> dict:
    path = write_certificate(
        current_app.config["CERTIFICATE_DIR"],
        student.id,
        student.name,
        current_app.config.get("COURSE_NAME", "Typing Class"),
    )
    url = url_for("certificates.download_certificate", student_id=student.id)
    cert = CertificateStoreDB.save_generated(student.id, url, str(path))
    logger.info("Certificate generated for %s at %s", student.id, path)
    return cert


def _certificate_file(student: Student) -> Path:
    """Path of the student's PDF, generating it when missing."""
    cert = CertificateStoreDB.get(student.id)
    if cert and cert.get("file_path") and Path(cert["file_path"]).exists():
        return Path(cert["file_path"])
    return Path(_generate(student)["file_path"])


def _certificate_email(student: Student) -> tuple[str, str]:
    course = current_app.config.get("COURSE_NAME", "Typing Class")
    subject = f"Your {course} Certificate of Completion"
    body = (
        f"<p>Hi {student.name},</p>"
        f"<p>Congratulations on completing the {course}! "
        f"Your certificate is attached to this email.</p>"
        f"<p>Keep practising.</p>"
    )
    return subject, body


@bp.route("/certificates")
@login_required
def certificates_page():
    cert_filter = request.args.get("filter", "all")
    cohort_id = request.args.get("cohort") or None
    return render_template(
        "certificates.html",
        cert_filter=cert_filter,
        filters=CERTIFICATE_FILTERS,
        cohort_id=cohort_id,
        cohorts=CohortStoreDB.list(order_by="name"),
        students=_rows(_eligible(cert_filter, cohort_id)),
    )


@bp.route("/api/certificates")
@login_required
def api_certificates():
    students = _eligible(request.args.get("filter", "all"), request.args.get("cohort") or None)
    return jsonify({"students": _rows(students)})


@bp.route("/api/certificates/generate", methods=["POST"])
@login_required
def api_generate():
    students = StudentStoreDB.get_many(_student_ids(json_body()))
    generated, skipped = [], []
    for student in students:
        if student.final_status not in CERTIFICATE_ELIGIBLE:
            skipped.append(student.id)
            continue
        _generate(student)
        generated.append(student.id)
    log_event("certificates_generated", current_admin_id(), f"count={len(generated)}")
    return jsonify({"success": True, "generated": generated, "skipped": skipped})


@bp.route("/api/certificates/send", methods=["POST"])
@login_required
def api_send():
    """Email generated certificates. Each outcome lands in email_logs."""
    students = StudentStoreDB.get_many(_student_ids(json_body()))
    results = {"success": 0, "failed": 0, "errors": []}

    for student in students:
        cert = CertificateStoreDB.get(student.id)
        subject, body = _certificate_email(student)
        if not cert:
            results["failed"] += 1
            results["errors"].append({"student_id": student.id, "error": "Certificate not generated"})
            continue

        try:
            path = _certificate_file(student)
            EmailService.send(
                student.email, subject, body,
                attachments=[(certificate_filename(student.name), path.read_bytes())],
            )
        except (EmailError, OSError) as e:
            error = str(e) or e.__class__.__name__
            EmailLogStoreDB.log(student.id, "certificate", student.email, "failed",
                                subject=subject, error_message=error)
            CertificateStoreDB.record_email_error(student.id, error)
            results["failed"] += 1
            results["errors"].append({"student_id": student.id, "error": error})
            continue

        EmailLogStoreDB.log(student.id, "certificate", student.email, "sent", subject=subject,
                            metadata={"certificate_url": cert["certificate_url"]})
        CertificateStoreDB.mark_emailed(student.id)
        StudentStoreDB.update(student.id, certificate_emailed=1, certificate_emailed_at=now_iso())
        results["success"] += 1

    log_event("certificates_emailed", current_admin_id(),
              f"success={results['success']} failed={results['failed']}")
    return jsonify(results)


@bp.route("/certificates/<student_id>/download")
@login_required
def download_certificate(student_id):
    student = StudentStoreDB.get(student_id)
    if student is None:
        abort(404)
    if student.final_status not in CERTIFICATE_ELIGIBLE:
        abort(403)
    path = _certificate_file(student)
    return send_file(
        path,
        mimetype="application/pdf",
        as_attachment=True,
        download_name=certificate_filename(student.name),
    )
