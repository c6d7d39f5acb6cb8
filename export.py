"""Certificate PDFs (fpdf2) and the student roster CSV export."""

from __future__ import annotations

import csv
import io
import re
from datetime import date
from pathlib import Path

from fpdf import FPDF

from models import Student

CSV_HEADER = ["Name", "Email", "Typing Style", "WPM", "Curriculum", "Status", "Cohort", "Notes"]


def _safe(text: str) -> str:
    """Replace unicode chars that latin-1 Helvetica can't handle."""
    return (
        text
        .replace("—", "-")
        .replace("–", "-")
        .replace("‘", "'")
        .replace("’", "'")
        .replace("“", '"')
        .replace("”", '"')
        .encode("latin-1", "replace")
        .decode("latin-1")
    )


def certificate_filename(student_name: str) -> str:
    """'Ada  Lovelace' -> 'Ada_Lovelace_Certificate.pdf'."""
    stem = re.sub(r"\s+", "_", student_name.strip())
    stem = re.sub(r"[^\w\-]", "", stem) or "Student"
    return f"{stem}_Certificate.pdf"


def generate_certificate_pdf(student_name: str, course_name: str = "Typing Class",
                             issued_on: date | None = None) -> bytes:
    """Render a one-page landscape certificate and return it as bytes."""
    issued_on = issued_on or date.today()

    pdf = FPDF(orientation="L", unit="pt", format=(400, 600))
    pdf.set_auto_page_break(auto=False)
    pdf.add_page()

    # Border
    pdf.set_draw_color(51, 102, 204)
    pdf.set_line_width(2)
    pdf.rect(20, 20, 560, 360)

    pdf.set_text_color(0, 0, 128)
    pdf.set_font("Helvetica", "B", 24)
    pdf.set_xy(20, 80)
    pdf.cell(560, 30, "Certificate of Completion", align="C")

    pdf.set_text_color(0, 0, 0)
    pdf.set_font("Helvetica", "B", 20)
    pdf.set_xy(20, 170)
    pdf.cell(560, 30, _safe(student_name), align="C")

    pdf.set_text_color(77, 77, 77)
    pdf.set_font("Helvetica", "", 16)
    pdf.set_xy(20, 215)
    pdf.cell(560, 24, _safe(course_name), align="C")

    pdf.set_text_color(128, 128, 128)
    pdf.set_font("Helvetica", "", 12)
    pdf.set_xy(20, 285)
    pdf.cell(560, 20, f"Date: {issued_on.strftime('%d %B %Y')}", align="C")

    return bytes(pdf.output())


def write_certificate(base_dir: str | Path, student_id: str, student_name: str,
                      course_name: str = "Typing Class") -> Path:
    """Generate a certificate under base_dir/<student_id>/ and return its path."""
    folder = Path(base_dir) / student_id
    folder.mkdir(parents=True, exist_ok=True)
    path = folder / certificate_filename(student_name)
    path.write_bytes(generate_certificate_pdf(student_name, course_name))
    return path


def students_to_csv(students: list[Student], cohort_names: dict[str, str] | None = None) -> str:
    """Roster CSV as shown on the students page."""
    cohort_names = cohort_names or {}
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(CSV_HEADER)
    for s in students:
        writer.writerow([
            s.name,
            s.email,
            s.typing_style or "",
            s.wpm_score if s.wpm_score is not None else "",
            "Yes" if s.curriculum_completed else "No",
            s.final_status,
            cohort_names.get(s.cohort_id or "", s.cohort_id or ""),
            s.notes or "",
        ])
    return output.getvalue()
