"""HTTP blueprints for the directory hub."""
from flask import current_app


def get_services():
    """Service container attached by the app factory."""
    return current_app.extensions["directory_hub"]
