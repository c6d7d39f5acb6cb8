"""
DB-backed store classes for the Typetech admin dashboard.

One class per table. Each is a bag of static methods that take plain values
and return dicts or dataclasses; all of them run inside a Flask app context
(get_db() is per-context).
"""

from __future__ import annotations

import json
import secrets
import uuid
from datetime import datetime, timedelta
from typing import Any, Optional

from database import get_db
from models import Student, now_iso


def _new_id() -> str:
    return str(uuid.uuid4())


def _like_escape(text: str) -> str:
    """Make % and _ match literally in a LIKE ... ESCAPE '\\' pattern."""
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _update_columns(table: str, allowed: tuple[str, ...], row_id: str,
                    fields: dict[str, Any], touch: bool = True) -> int:
    """UPDATE only whitelisted columns of one row. Returns rowcount."""
    sets, vals = [], []
    for col, val in fields.items():
        if col not in allowed:
            raise ValueError(f"Unknown {table} column: {col}")
        sets.append(f"{col}=?")
        vals.append(val)
    if not sets:
        return 0
    if touch:
        sets.append("updated_at=?")
        vals.append(now_iso())
    vals.append(row_id)
    db = get_db()
    cur = db.execute(f"UPDATE {table} SET {', '.join(sets)} WHERE id=?", vals)
    db.commit()
    return cur.rowcount


# ── Students ─────────────────────────────────────────────────────────


class StudentStoreDB:
    """CRUD, search and import for the students table."""

    EDITABLE = (
        "name", "email", "typing_style", "wpm_score", "curriculum_completed",
        "admin_approved", "final_status", "cohort_id", "notes",
        "certificate_emailed", "certificate_emailed_at",
    )
    SORTABLE = ("name", "email", "typing_style", "wpm_score", "final_status", "created_at")

    @staticmethod
    def list(cohort_id: str | None = None, status: str | None = None,
             search: str | None = None, sort: str = "name",
             direction: str = "asc") -> list[Student]:
        if sort not in StudentStoreDB.SORTABLE:
            sort = "name"
        order = "DESC" if direction == "desc" else "ASC"
        where, params = [], []
        if cohort_id:
            where.append("cohort_id = ?")
            params.append(cohort_id)
        if status and status != "all":
            where.append("final_status = ?")
            params.append(status)
        if search:
            where.append("(LOWER(name) LIKE ? ESCAPE '\\' OR LOWER(email) LIKE ? ESCAPE '\\')")
            pattern = f"%{_like_escape(search.strip().lower())}%"
            params.extend([pattern, pattern])
        sql = "SELECT * FROM students"
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += f" ORDER BY {sort} {order}, name ASC"
        rows = get_db().execute(sql, params).fetchall()
        return [Student.from_row(r) for r in rows]

    @staticmethod
    def get(student_id: str) -> Optional[Student]:
        row = get_db().execute("SELECT * FROM students WHERE id = ?", (student_id,)).fetchone()
        return Student.from_row(row) if row else None

    @staticmethod
    def get_many(student_ids: list[str]) -> list[Student]:
        if not student_ids:
            return []
        marks = ", ".join("?" for _ in student_ids)
        rows = get_db().execute(
            f"SELECT * FROM students WHERE id IN ({marks}) ORDER BY name", list(student_ids),
        ).fetchall()
        return [Student.from_row(r) for r in rows]

    @staticmethod
    def create(name: str, email: str, cohort_id: str | None = None, **extra: Any) -> Student:
        unknown = set(extra) - set(StudentStoreDB.EDITABLE)
        if unknown:
            raise ValueError(f"Unknown student columns: {', '.join(sorted(unknown))}")
        now = now_iso()
        data = {
            "id": _new_id(),
            "name": name,
            "email": email,
            "final_status": "Pending",
            "cohort_id": cohort_id or None,
            "created_at": now,
            "updated_at": now,
            **extra,
        }
        cols = ", ".join(data)
        marks = ", ".join("?" for _ in data)
        db = get_db()
        db.execute(f"INSERT INTO students ({cols}) VALUES ({marks})", list(data.values()))
        db.commit()
        return StudentStoreDB.get(data["id"])

    @staticmethod
    def bulk_create(entries: list[dict], cohort_id: str | None = None) -> list[Student]:
        """Insert many {name, email} entries in one transaction."""
        db = get_db()
        now = now_iso()
        ids = []
        for entry in entries:
            sid = _new_id()
            ids.append(sid)
            db.execute(
                "INSERT INTO students (id, name, email, final_status, cohort_id, created_at, updated_at) "
                "VALUES (?, ?, ?, 'Pending', ?, ?, ?)",
                (sid, entry["name"], entry["email"], cohort_id or None, now, now),
            )
        db.commit()
        return StudentStoreDB.get_many(ids)

    @staticmethod
    def update(student_id: str, **fields: Any) -> Optional[Student]:
        updated = _update_columns("students", StudentStoreDB.EDITABLE, student_id, fields)
        if not updated:
            return None
        return StudentStoreDB.get(student_id)

    @staticmethod
    def delete(student_id: str) -> bool:
        db = get_db()
        cur = db.execute("DELETE FROM students WHERE id = ?", (student_id,))
        db.commit()
        return cur.rowcount > 0

    @staticmethod
    def recent(n: int = 5) -> list[Student]:
        rows = get_db().execute(
            "SELECT * FROM students ORDER BY created_at DESC LIMIT ?", (n,),
        ).fetchall()
        return [Student.from_row(r) for r in rows]


# ── Cohorts ──────────────────────────────────────────────────────────


class CohortStoreDB:
    """Cohorts group students into one intake of the class."""

    @staticmethod
    def list(order_by: str = "created_at") -> list[dict]:
        order = "name ASC" if order_by == "name" else "created_at DESC"
        rows = get_db().execute(f"SELECT * FROM cohorts ORDER BY {order}").fetchall()
        return [dict(r) for r in rows]

    @staticmethod
    def get(cohort_id: str) -> dict | None:
        row = get_db().execute("SELECT * FROM cohorts WHERE id = ?", (cohort_id,)).fetchone()
        return dict(row) if row else None

    @staticmethod
    def create(name: str, description: str = "", start_date: str = "", end_date: str = "") -> dict:
        cohort_id = _new_id()
        db = get_db()
        db.execute(
            "INSERT INTO cohorts (id, name, description, start_date, end_date, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (cohort_id, name, description, start_date, end_date, now_iso()),
        )
        db.commit()
        return CohortStoreDB.get(cohort_id)


# ── Per-week tables (attendance, week_data) ──────────────────────────


class _WeeklyStore:
    """Shared find/insert/update/upsert for tables keyed by (student, week).

    find/insert/update are the persistence contract the autosave component
    writes through.
    """

    TABLE = ""
    COLUMNS: tuple[str, ...] = ()
    ENTITY_COLUMN = "student_id"
    PERIOD_COLUMN = "week_number"

    @classmethod
    def find(cls, student_id: str, week_number: int) -> dict | None:
        row = get_db().execute(
            f"SELECT * FROM {cls.TABLE} WHERE student_id = ? AND week_number = ?",
            (student_id, week_number),
        ).fetchone()
        return dict(row) if row else None

    @classmethod
    def insert(cls, record: dict) -> dict:
        unknown = set(record) - set(cls.COLUMNS) - {"student_id", "week_number"}
        if unknown:
            raise ValueError(f"Unknown {cls.TABLE} columns: {', '.join(sorted(unknown))}")
        now = now_iso()
        data = {"id": _new_id(), **record, "created_at": now, "updated_at": now}
        cols = ", ".join(data)
        marks = ", ".join("?" for _ in data)
        db = get_db()
        db.execute(f"INSERT INTO {cls.TABLE} ({cols}) VALUES ({marks})", list(data.values()))
        db.commit()
        return cls._get(data["id"])

    @classmethod
    def update(cls, record_id: str, fields: dict) -> dict | None:
        if not _update_columns(cls.TABLE, cls.COLUMNS, record_id, fields):
            return None
        return cls._get(record_id)

    @classmethod
    def upsert(cls, student_id: str, week_number: int, **fields: Any) -> dict:
        """Single-statement insert-or-update keyed on (student_id, week_number)."""
        unknown = set(fields) - set(cls.COLUMNS)
        if unknown or not fields:
            raise ValueError(f"Invalid {cls.TABLE} columns: {', '.join(sorted(unknown)) or '(none)'}")
        now = now_iso()
        cols = list(fields)
        db = get_db()
        db.execute(
            f"INSERT INTO {cls.TABLE} (id, student_id, week_number, {', '.join(cols)}, created_at, updated_at) "
            f"VALUES (?, ?, ?, {', '.join('?' for _ in cols)}, ?, ?) "
            f"ON CONFLICT(student_id, week_number) DO UPDATE SET "
            + ", ".join(f"{c}=excluded.{c}" for c in cols)
            + ", updated_at=excluded.updated_at",
            [_new_id(), student_id, week_number, *fields.values(), now, now],
        )
        db.commit()
        return cls.find(student_id, week_number)

    @classmethod
    def for_week(cls, week_number: int) -> list[dict]:
        rows = get_db().execute(
            f"SELECT * FROM {cls.TABLE} WHERE week_number = ?", (week_number,),
        ).fetchall()
        return [dict(r) for r in rows]

    @classmethod
    def for_students(cls, student_ids: list[str]) -> list[dict]:
        if not student_ids:
            return []
        marks = ", ".join("?" for _ in student_ids)
        rows = get_db().execute(
            f"SELECT * FROM {cls.TABLE} WHERE student_id IN ({marks}) ORDER BY week_number",
            list(student_ids),
        ).fetchall()
        return [dict(r) for r in rows]

    @classmethod
    def _get(cls, record_id: str) -> dict | None:
        row = get_db().execute(f"SELECT * FROM {cls.TABLE} WHERE id = ?", (record_id,)).fetchone()
        return dict(row) if row else None


class AttendanceStoreDB(_WeeklyStore):
    TABLE = "attendance"
    COLUMNS = ("status",)

    @staticmethod
    def week_map(week_number: int) -> dict[str, str]:
        """student_id -> status for one week."""
        return {r["student_id"]: r["status"] for r in AttendanceStoreDB.for_week(week_number)}


class WeekDataStoreDB(_WeeklyStore):
    TABLE = "week_data"
    COLUMNS = ("typing_style", "grade", "notes")


# ── Invites ──────────────────────────────────────────────────────────


class InviteStoreDB:
    """Sign-in invites for people outside the allowed domains."""

    @staticmethod
    def list() -> list[dict]:
        rows = get_db().execute("SELECT * FROM invites ORDER BY created_at DESC").fetchall()
        return [dict(r) for r in rows]

    @staticmethod
    def pending_for_email(email: str) -> dict | None:
        row = get_db().execute(
            "SELECT * FROM invites WHERE email = ? AND status = 'pending' AND expires_at >= ?",
            (email.lower(), now_iso()),
        ).fetchone()
        return dict(row) if row else None

    @staticmethod
    def create(email: str, expiry_days: int = 7, invited_by: str = "") -> dict:
        now = datetime.now()
        invite = {
            "id": _new_id(),
            "email": email.lower(),
            "token": secrets.token_urlsafe(16),
            "status": "pending",
            "invited_by": invited_by,
            "created_at": now.isoformat(),
            "expires_at": (now + timedelta(days=expiry_days)).isoformat(),
        }
        db = get_db()
        db.execute(
            "INSERT INTO invites (id, email, token, status, invited_by, created_at, expires_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            tuple(invite.values()),
        )
        db.commit()
        return invite

    @staticmethod
    def get_by_token(token: str) -> dict | None:
        row = get_db().execute("SELECT * FROM invites WHERE token = ?", (token,)).fetchone()
        return dict(row) if row else None

    @staticmethod
    def accept(token: str) -> bool:
        db = get_db()
        cur = db.execute(
            "UPDATE invites SET status = 'accepted', accepted_at = ? WHERE token = ? AND status = 'pending'",
            (now_iso(), token),
        )
        db.commit()
        return cur.rowcount > 0

    @staticmethod
    def expire_overdue(now: datetime | None = None) -> int:
        """Mark pending invites past their expiry as expired. Returns count."""
        cutoff = (now or datetime.now()).isoformat()
        db = get_db()
        cur = db.execute(
            "UPDATE invites SET status = 'expired' WHERE status = 'pending' AND expires_at < ?",
            (cutoff,),
        )
        db.commit()
        return cur.rowcount


# ── Certificates ─────────────────────────────────────────────────────


class CertificateStoreDB:
    """One certificate row per student."""

    @staticmethod
    def get(student_id: str) -> dict | None:
        row = get_db().execute(
            "SELECT * FROM certificates WHERE student_id = ?", (student_id,),
        ).fetchone()
        return dict(row) if row else None

    @staticmethod
    def for_students(student_ids: list[str]) -> dict[str, dict]:
        if not student_ids:
            return {}
        marks = ", ".join("?" for _ in student_ids)
        rows = get_db().execute(
            f"SELECT * FROM certificates WHERE student_id IN ({marks})", list(student_ids),
        ).fetchall()
        return {r["student_id"]: dict(r) for r in rows}

    @staticmethod
    def save_generated(student_id: str, certificate_url: str, file_path: str) -> dict:
        """Record a freshly generated certificate, resetting its email state."""
        db = get_db()
        db.execute(
            "INSERT INTO certificates (id, student_id, certificate_url, file_path, generated_at, "
            "email_sent, email_sent_at, email_error, email_attempts) "
            "VALUES (?, ?, ?, ?, ?, 0, NULL, NULL, 0) "
            "ON CONFLICT(student_id) DO UPDATE SET certificate_url=excluded.certificate_url, "
            "file_path=excluded.file_path, generated_at=excluded.generated_at, "
            "email_sent=0, email_sent_at=NULL, email_error=NULL, email_attempts=0",
            (_new_id(), student_id, certificate_url, file_path, now_iso()),
        )
        db.commit()
        return CertificateStoreDB.get(student_id)

    @staticmethod
    def mark_emailed(student_id: str) -> None:
        db = get_db()
        db.execute(
            "UPDATE certificates SET email_sent = 1, email_sent_at = ?, email_error = NULL, "
            "email_attempts = email_attempts + 1 WHERE student_id = ?",
            (now_iso(), student_id),
        )
        db.commit()

    @staticmethod
    def record_email_error(student_id: str, error: str) -> None:
        db = get_db()
        db.execute(
            "UPDATE certificates SET email_error = ?, email_attempts = email_attempts + 1 "
            "WHERE student_id = ?",
            (error, student_id),
        )
        db.commit()


# ── Email logs ───────────────────────────────────────────────────────


class EmailLogStoreDB:
    """Append-only history of outbound email."""

    @staticmethod
    def log(student_id: str | None, email_type: str, recipient_email: str,
            status: str, subject: str | None = None, error_message: str | None = None,
            metadata: dict | None = None) -> str:
        log_id = _new_id()
        db = get_db()
        db.execute(
            "INSERT INTO email_logs (id, student_id, email_type, recipient_email, subject, "
            "status, error_message, sent_at, metadata) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (log_id, student_id, email_type, recipient_email, subject, status,
             error_message, now_iso(), json.dumps(metadata or {})),
        )
        db.commit()
        return log_id

    @staticmethod
    def for_student(student_id: str) -> list[dict]:
        rows = get_db().execute(
            "SELECT * FROM email_logs WHERE student_id = ? ORDER BY sent_at DESC", (student_id,),
        ).fetchall()
        out = []
        for r in rows:
            entry = dict(r)
            entry["metadata"] = json.loads(entry.get("metadata") or "{}")
            out.append(entry)
        return out


# ── Admins ───────────────────────────────────────────────────────────


class AdminStoreDB:
    """Dashboard administrators, created on first Google sign-in."""

    @staticmethod
    def get(admin_id: int) -> dict | None:
        row = get_db().execute("SELECT * FROM admins WHERE id = ?", (admin_id,)).fetchone()
        return dict(row) if row else None

    @staticmethod
    def get_by_email(email: str) -> dict | None:
        row = get_db().execute("SELECT * FROM admins WHERE email = ?", (email.lower(),)).fetchone()
        return dict(row) if row else None

    @staticmethod
    def record_login(email: str, name: str = "", google_id: str = "") -> dict:
        """Create the admin on first sign-in, else refresh name and last login."""
        email = email.lower()
        now = now_iso()
        db = get_db()
        existing = AdminStoreDB.get_by_email(email)
        if existing:
            db.execute(
                "UPDATE admins SET name = ?, google_id = ?, last_login_at = ? WHERE id = ?",
                (name or existing["name"], google_id or existing["google_id"], now, existing["id"]),
            )
        else:
            db.execute(
                "INSERT INTO admins (email, name, google_id, created_at, last_login_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (email, name, google_id, now, now),
            )
        db.commit()
        return AdminStoreDB.get_by_email(email)
