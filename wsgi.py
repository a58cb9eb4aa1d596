"""
WSGI / Flask-Migrate entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi seed-roles
    flask --app wsgi db upgrade
"""

from coopflow import create_app

app = create_app()
