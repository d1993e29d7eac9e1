"""WSGI entry point for Gunicorn: ``gunicorn directory_hub.wsgi:app``."""
from directory_hub.flask_app import create_app

app = create_app()
