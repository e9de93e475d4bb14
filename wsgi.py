"""
WSGI and Flask-Migrate / Alembic entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi import-familiarisation rows.json
    gunicorn wsgi:app
"""

from keel import create_app

app = create_app()
