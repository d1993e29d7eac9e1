"""Flask application factory.

Creates the app with its blueprints, error handlers and the service
container stored on ``app.extensions["directory_hub"]``.
"""
from __future__ import annotations
from pathlib import Path
from typing import Any, Optional

from flask import Flask
from sqlalchemy.orm import Session, sessionmaker
from werkzeug.middleware.proxy_fix import ProxyFix

from directory_hub.config import AppConfig, load_settings
from directory_hub.services import build_services


# ─────────────────────────────────────────────────────────────────────────────
# Application Factory
# ─────────────────────────────────────────────────────────────────────────────
def create_app(
    config: Optional[AppConfig] = None,
    session_factory: Optional[sessionmaker[Session]] = None,
    http: Any = None,
) -> Flask:
    """Create and configure the Flask application.

    Args:
        config: Settings; loaded from the environment when omitted
        session_factory: Database sessions; built from config.database_url when omitted
        http: Outbound HTTP transport for sync and scans (tests inject a stub)

    Raises:
        VaultConfigError: ENCRYPTION_KEY missing or malformed
    """
    cfg = config or load_settings()

    app = Flask(__name__)
    app.config.setdefault(
        "OPENAPI_SPEC_PATH",
        str(Path(app.root_path).parent / "openapi" / "directory_openapi.yaml"),
    )
    app.config["APP_CONFIG"] = cfg
    app.config["SECRET_KEY"] = cfg.secret_key
    app.config["DEMO_MODE"] = cfg.demo_mode
    app.json.sort_keys = False

    # Trust X-Forwarded-* headers from the reverse proxy
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)  # type: ignore

    app.extensions["directory_hub"] = build_services(cfg, session_factory=session_factory, http=http)

    from directory_hub.api import docs as docs_routes
    from directory_hub.api import errors, health, integrations, share

    app.register_blueprint(health.bp)
    app.register_blueprint(docs_routes.bp)
    app.register_blueprint(share.bp)
    app.register_blueprint(integrations.bp, url_prefix="/integrations")

    errors.register_error_handlers(app)

    mode_label = "DEMO" if cfg.demo_mode else "PRODUCTION"
    print(f"[flask_app] Mode={mode_label}")
    print("[flask_app] Share links at /public/contacts, integrations at /integrations")
    if cfg.demo_mode:
        print("[flask_app] WARNING: Demo mode active - generated keys do not survive a restart")

    return app


if __name__ == "__main__":
    create_app().run(host="0.0.0.0", port=5000, debug=True)
