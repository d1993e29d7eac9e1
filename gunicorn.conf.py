"""Gunicorn configuration.

Run with:
    gunicorn -c gunicorn.conf.py directory_hub.wsgi:app

Secrets (FLASK_SECRET_KEY, ENCRYPTION_KEY, AUDIT_LOG_SIGNING_KEY) are read
from /run/secrets when mounted, else from the environment. Workers fail to
boot when ENCRYPTION_KEY is missing outside demo mode.
"""
import os
from pathlib import Path

bind = os.environ.get("GUNICORN_BIND", "0.0.0.0:8000")
workers = int(os.environ.get("GUNICORN_WORKERS", "2"))
threads = int(os.environ.get("GUNICORN_THREADS", "4"))
# A full sync runs inside the request
timeout = int(os.environ.get("GUNICORN_TIMEOUT", "300"))

SECRET_FILES = {
    "FLASK_SECRET_KEY": "flask_secret_key",
    "ENCRYPTION_KEY": "encryption_key",
    "AUDIT_LOG_SIGNING_KEY": "audit_log_signing_key",
}


def post_fork(server, worker):
    """
    Called just after a worker has been forked.

    Copies mounted Docker secrets into the worker environment so settings
    loaded later in the worker see them. Values are never logged.
    """
    secrets_dir = Path("/run/secrets")
    if not (secrets_dir.exists() and secrets_dir.is_dir()):
        worker.log.info("No /run/secrets mount; using environment variables")
        return

    loaded = 0
    for env_name, file_name in SECRET_FILES.items():
        if os.environ.get(env_name):  # Skip if already set
            continue
        secret_file = secrets_dir / file_name
        if not secret_file.is_file():
            continue
        try:
            value = secret_file.read_text(encoding="utf-8").strip()
        except OSError as exc:
            worker.log.error(f"Failed to read secret '{file_name}': {exc}")
            continue
        if value:
            os.environ[env_name] = value
            loaded += 1
    worker.log.info(f"Loaded {loaded} secret(s) from /run/secrets")
