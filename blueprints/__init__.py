"""
Blueprint registration for the Typetech admin dashboard.

All blueprints are registered without URL prefixes; page routes and their
/api/ JSON routes live side by side in the same module.
"""

from __future__ import annotations


def register_blueprints(app):
    from blueprints.core import bp as core_bp
    from blueprints.students import bp as students_bp
    from blueprints.cohorts import bp as cohorts_bp
    from blueprints.attendance import bp as attendance_bp
    from blueprints.autosave_api import bp as autosave_bp
    from blueprints.final_review import bp as final_review_bp
    from blueprints.certificates import bp as certificates_bp
    from blueprints.invites import bp as invites_bp

    app.register_blueprint(core_bp)
    app.register_blueprint(students_bp)
    app.register_blueprint(cohorts_bp)
    app.register_blueprint(attendance_bp)
    app.register_blueprint(autosave_bp)
    app.register_blueprint(final_review_bp)
    app.register_blueprint(certificates_bp)
    app.register_blueprint(invites_bp)
