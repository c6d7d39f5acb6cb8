"""
Domain vocabulary for the typing class: enumerations, row dataclasses and
the small conversions between database rows and Python values.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Optional

TYPING_STYLES = ("Hunting", "Homerow")
ATTENDANCE_STATUSES = ("Present", "Late", "Absent")
FINAL_STATUSES = ("Complete", "Pass", "Fail", "Pending")
WEEK_GRADES = FINAL_STATUSES
INVITE_STATUSES = ("pending", "accepted", "expired")
EMAIL_TYPES = ("certificate", "invite", "notification")
EMAIL_STATUSES = ("sent", "failed", "bounced")

# Statuses that earn a certificate
CERTIFICATE_ELIGIBLE = ("Complete", "Pass")

DEFAULT_ATTENDANCE = "Present"

# Integer columns that hold 0/1 flags in SQLite
_STUDENT_BOOL_COLUMNS = ("curriculum_completed", "admin_approved", "certificate_emailed")


def now_iso() -> str:
    return datetime.now().isoformat()


@dataclass
class Student:
    id: str
    name: str
    email: str
    typing_style: Optional[str] = None
    wpm_score: Optional[int] = None
    curriculum_completed: bool = False
    admin_approved: bool = False
    final_status: str = "Pending"
    cohort_id: Optional[str] = None
    certificate_emailed: bool = False
    certificate_emailed_at: Optional[str] = None
    notes: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_row(cls, row: Any) -> Student:
        data = {key: row[key] for key in row.keys()}
        for col in _STUDENT_BOOL_COLUMNS:
            data[col] = bool(data.get(col))
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class AttendanceSummary:
    student_id: str
    student_name: str
    total_present: int = 0
    total_late: int = 0
    total_absent: int = 0
    attendance_rate: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class WeekSummary:
    present: int = 0
    late: int = 0
    absent: int = 0
    total: int = 0

    def to_dict(self) -> dict:
        return asdict(self)
