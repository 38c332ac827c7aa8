"""
WSGI entry point and Flask CLI target.

Usage:
    flask --app wsgi run
    flask --app wsgi seed-demo
    flask --app wsgi db migrate -m "description"
    gunicorn wsgi:app
"""

from auditpack import create_app

app = create_app()
