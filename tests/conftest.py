"""
Test fixtures for the Typetech admin dashboard.

Provides app, client, auth_client, db and seeded_students fixtures with a
file-based SQLite database per test.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))


@pytest.fixture
def app(tmp_path):
    """Create app with file-based SQLite for testing."""
    from app import create_app
    from autosave import get_registry

    app = create_app({
        "TESTING": True,
        "DATABASE": str(tmp_path / "test.db"),
        "SECRET_KEY": "test-secret-key",
        "WTF_CSRF_ENABLED": False,
        "CERTIFICATE_DIR": str(tmp_path / "certificates"),
        "ALLOWED_DOMAINS": ["alueducation.com"],
        "ALLOWED_EMAILS": [],
        "GOOGLE_OAUTH_CLIENT_ID": "",
        "EMAIL_BACKEND": "log",
        "REDIS_URL": "",
        "BASE_URL": "http://localhost:5001",
        "AUTOSAVE_DELAY_MS": 50,
    })

    with app.app_context():
        from database import init_db, run_migrations

        init_db()
        run_migrations()

        yield app

    get_registry(app).close_all()


@pytest.fixture
def client(app):
    """Unauthenticated test client."""
    return app.test_client()


@pytest.fixture
def admin_id(app):
    """Seeded admin account (id returned)."""
    from db_stores import AdminStoreDB

    with app.app_context():
        return AdminStoreDB.record_login("admin@alueducation.com", name="Test Admin")["id"]


@pytest.fixture
def auth_client(app, admin_id):
    """Authenticated test client (session logged in as the seeded admin)."""
    client = app.test_client()
    with client.session_transaction() as sess:
        sess["_user_id"] = str(admin_id)
        sess["_fresh"] = True
    return client


@pytest.fixture
def db(app):
    """Direct database access for store tests."""
    with app.app_context():
        from database import get_db
        yield get_db()


@pytest.fixture
def cohort(app):
    from db_stores import CohortStoreDB

    with app.app_context():
        return CohortStoreDB.create("Cohort A", start_date="2026-01-05")


@pytest.fixture
def seeded_students(app, cohort):
    """Four students covering every suggestion branch, keyed by name."""
    from db_stores import StudentStoreDB

    rows = [
        ("Ada Lovelace", "ada@example.com",
         dict(typing_style="Homerow", wpm_score=55, curriculum_completed=1)),
        ("Grace Hopper", "grace@example.com",
         dict(typing_style="Homerow", wpm_score=42)),
        ("Alan Turing", "alan@example.com",
         dict(typing_style="Hunting", wpm_score=70, curriculum_completed=1)),
        ("Linus Slow", "linus@example.com",
         dict(typing_style="Homerow", wpm_score=25)),
    ]
    with app.app_context():
        students = {}
        for name, email, extra in rows:
            students[name] = StudentStoreDB.create(name, email, cohort["id"], **extra)
        return students
