"""Parse student rosters pasted from a spreadsheet (name and email columns)."""

from __future__ import annotations


class RosterParseError(ValueError):
    """Raised when pasted text yields no usable rows."""


def parse_roster(text: str) -> list[dict[str, str]]:
    """Turn pasted rows into [{"name", "email"}].

    A line is split on tabs when it contains one (spreadsheet copy), else on
    commas. Lines with fewer than two columns are skipped; extra columns are
    ignored.
    """
    entries = []
    for line in (text or "").strip().splitlines():
        parts = line.split("\t") if "\t" in line else line.split(",")
        if len(parts) < 2:
            continue
        name, email = parts[0].strip(), parts[1].strip()
        if not name or not email:
            continue
        entries.append({"name": name, "email": email})

    if not entries:
        raise RosterParseError("No valid data found. Make sure each line has name and email.")
    return entries
