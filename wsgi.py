"""
WSGI / Flask-Migrate entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db upgrade
    flask --app wsgi run-job rfi_overdue_digest
"""

from app import create_app

app = create_app()
