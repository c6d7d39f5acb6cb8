"""Tests for student_import.py — pasted roster parsing."""

from __future__ import annotations

import pytest

from student_import import RosterParseError, parse_roster


class TestParseRoster:
    def test_comma_separated(self):
        assert parse_roster("Ada Lovelace, ada@example.com\nAlan Turing,alan@example.com") == [
            {"name": "Ada Lovelace", "email": "ada@example.com"},
            {"name": "Alan Turing", "email": "alan@example.com"},
        ]

    def test_tab_separated_from_spreadsheet(self):
        rows = parse_roster("Grace Hopper\tgrace@example.com\tignored extra")
        assert rows == [{"name": "Grace Hopper", "email": "grace@example.com"}]

    def test_tab_wins_over_comma(self):
        rows = parse_roster("Hopper, Grace\tgrace@example.com")
        assert rows == [{"name": "Hopper, Grace", "email": "grace@example.com"}]

    def test_short_and_blank_lines_skipped(self):
        rows = parse_roster("\nonly-a-name\nAda, ada@example.com\n , \n")
        assert rows == [{"name": "Ada", "email": "ada@example.com"}]

    @pytest.mark.parametrize("text", ["", "   ", "just words\nmore words"])
    def test_nothing_valid_raises(self, text):
        with pytest.raises(RosterParseError, match="No valid data found"):
            parse_roster(text)
