"""Documentation blueprint exposing the OpenAPI description and a ReDoc page."""
from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from flask import Blueprint, Response, current_app, jsonify, url_for

bp = Blueprint("docs", __name__)

REDOC_CDN = "https://cdn.redoc.ly/redoc/latest/bundles/redoc.standalone.js"


def _spec_path() -> Path:
    """Resolve the OpenAPI document path."""
    override = current_app.config.get("OPENAPI_SPEC_PATH")
    if override:
        return Path(override)
    return Path(current_app.root_path).parent / "openapi" / "directory_openapi.yaml"


def _load_spec() -> dict[str, Any]:
    path = _spec_path()
    if not path.exists():
        raise FileNotFoundError(f"OpenAPI spec not found: {path}")
    with path.open("r", encoding="utf-8") as handle:
        return yaml.safe_load(handle)


@bp.route("/openapi.json", methods=["GET"])
def openapi_document() -> Response:
    """Serve the OpenAPI document as JSON."""
    return jsonify(_load_spec())


@bp.route("/docs", methods=["GET"])
def api_docs() -> Response:
    """Read-only ReDoc page for the API."""
    spec_url = url_for("docs.openapi_document", _external=False)
    html = f"""<!DOCTYPE html>
<html lang="en">
  <head>
    <meta charset="utf-8"/>
    <title>Directory Hub – API Reference</title>
    <meta name="robots" content="noindex,nofollow"/>
    <meta name="referrer" content="no-referrer"/>
    <style>
      body {{ margin: 0; font-family: "Segoe UI", Roboto, sans-serif; }}
      .banner {{ background: #0f172a; color: #f8fafc; padding: 12px 24px; font-size: 14px; }}
      .banner a {{ color: #38bdf8; text-decoration: none; }}
    </style>
  </head>
  <body>
    <div class="banner">
      <strong>Directory Hub</strong> – sharing and directory sync API.
      Bearer tokens required except for public share links.
      <a href="{spec_url}">OpenAPI JSON</a>
    </div>
    <redoc spec-url="{spec_url}" expand-responses="200"></redoc>
    <script src="{REDOC_CDN}"></script>
  </body>
</html>"""
    return Response(html, status=200, mimetype="text/html")
