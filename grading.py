"""
Final-review heuristics and the summaries shown on the dashboard, attendance
and final review pages. Pure functions over Student dataclasses and
attendance rows; nothing here touches the database.
"""

from __future__ import annotations

from collections import Counter

from models import (
    ATTENDANCE_STATUSES,
    DEFAULT_ATTENDANCE,
    FINAL_STATUSES,
    AttendanceSummary,
    Student,
    WeekSummary,
)

DEFAULT_PASS_WPM = 40
DEFAULT_TOTAL_WEEKS = 11

# Late counts as half a present week
LATE_WEIGHT = 0.5

REVIEW_FILTERS = ("all", "homerow", "hunting", "pending", "complete", "pass", "fail")


def suggest_status(student: Student, pass_wpm: int = DEFAULT_PASS_WPM) -> str:
    """Suggest a final status from typing style, WPM and curriculum completion."""
    if student.typing_style != "Homerow":
        return "Fail"
    if not student.wpm_score or student.wpm_score < pass_wpm:
        return "Fail"
    if student.curriculum_completed:
        return "Complete"
    return "Pass"


def filter_for_review(students: list[Student], review_filter: str = "all") -> list[Student]:
    """Apply one of the final-review page filters."""
    if review_filter == "homerow":
        return [s for s in students if s.typing_style == "Homerow"]
    if review_filter == "hunting":
        return [s for s in students if s.typing_style == "Hunting"]
    by_status = {status.lower(): status for status in FINAL_STATUSES}
    if review_filter in by_status:
        return [s for s in students if s.final_status == by_status[review_filter]]
    return list(students)


def status_counts(students: list[Student]) -> dict[str, int]:
    """Number of students per final status, every status present."""
    counts = Counter(s.final_status for s in students)
    return {status: counts.get(status, 0) for status in FINAL_STATUSES}


def week_summary(students: list[Student], week_map: dict[str, str]) -> WeekSummary:
    """Present/late/absent counts for one week. Unrecorded students count as Present."""
    summary = WeekSummary(total=len(students))
    for student in students:
        status = week_map.get(student.id) or DEFAULT_ATTENDANCE
        if status == "Present":
            summary.present += 1
        elif status == "Late":
            summary.late += 1
        elif status == "Absent":
            summary.absent += 1
    return summary


def attendance_summaries(students: list[Student], records: list[dict],
                         total_weeks: int = DEFAULT_TOTAL_WEEKS) -> list[AttendanceSummary]:
    """Per-student totals across all weeks plus the weighted attendance rate."""
    by_student: dict[str, Counter] = {}
    for rec in records:
        if rec["status"] in ATTENDANCE_STATUSES:
            by_student.setdefault(rec["student_id"], Counter())[rec["status"]] += 1

    out = []
    for student in students:
        counts = by_student.get(student.id, Counter())
        present, late = counts["Present"], counts["Late"]
        rate = (present + late * LATE_WEIGHT) / total_weeks * 100 if total_weeks else 0.0
        out.append(AttendanceSummary(
            student_id=student.id,
            student_name=student.name,
            total_present=present,
            total_late=late,
            total_absent=counts["Absent"],
            attendance_rate=round(rate, 1),
        ))
    return out


def dashboard_stats(students: list[Student]) -> dict:
    """Headline numbers and chart series for the dashboard."""
    counts = status_counts(students)
    homerow = sum(1 for s in students if s.typing_style == "Homerow")
    return {
        "total_students": len(students),
        "complete": counts["Complete"],
        "pass": counts["Pass"],
        "fail": counts["Fail"],
        "pending": counts["Pending"],
        "status_distribution": [
            {"name": status, "value": n} for status, n in counts.items() if n > 0
        ],
        "style_distribution": [
            {"name": "Homerow", "value": homerow},
            {"name": "Hunting", "value": len(students) - homerow},
        ],
    }
