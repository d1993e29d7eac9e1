"""Integration settings, sync trigger and sync status endpoints (admin only)."""
from __future__ import annotations
import logging

from flask import Blueprint, jsonify, request

from directory_hub.api import get_services
from directory_hub.api.decorators import ADMIN, get_bearer_claims, require_bearer
from directory_hub.core.audit import actor_from_claims
from directory_hub.core.exceptions import ValidationError
from directory_hub.core.integrations import DEFAULT_CONFIG
from directory_hub.models import INTEGRATION_TYPES, RUN_KINDS

logger = logging.getLogger(__name__)

bp = Blueprint("integrations", __name__)


def _check_type(integration_type: str) -> None:
    if integration_type not in INTEGRATION_TYPES:
        raise ValidationError(f"Invalid integration type: {integration_type}")


@bp.route("", methods=["GET"])
@require_bearer(groups=[ADMIN])
def list_integrations():
    return jsonify(get_services().integrations.list_settings())


@bp.route("/sync-status", methods=["GET"])
@require_bearer(groups=[ADMIN])
def sync_status():
    """Most recent sync run, optionally filtered by ?type=; null when none."""
    kind = request.args.get("type") or None
    if kind is not None and kind not in RUN_KINDS:
        raise ValidationError(f"Invalid sync type: {kind}")
    run = get_services().ledger.last_run(kind)
    return jsonify(run.to_dict() if run else None)


@bp.route("/<integration_type>", methods=["GET"])
@require_bearer(groups=[ADMIN])
def get_integration(integration_type: str):
    _check_type(integration_type)
    settings = get_services().integrations.get_settings(integration_type)
    if settings is None:
        settings = {
            "type": integration_type,
            "enabled": False,
            "config": dict(DEFAULT_CONFIG.get(integration_type, {})),
            "updatedAt": None,
        }
    return jsonify(settings)


@bp.route("/<integration_type>", methods=["PUT"])
@require_bearer(groups=[ADMIN])
def update_integration(integration_type: str):
    _check_type(integration_type)
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    settings = get_services().integrations.update_settings(
        integration_type, payload, actor=actor_from_claims(get_bearer_claims())
    )
    return jsonify(settings)


@bp.route("/<integration_type>/sync", methods=["POST"])
@require_bearer(groups=[ADMIN])
def trigger_sync(integration_type: str):
    """Run a full sync synchronously and report its counts."""
    _check_type(integration_type)
    engine = get_services().sync_engine(integration_type)
    run = engine.sync_all(actor=actor_from_claims(get_bearer_claims()))
    return jsonify(
        {
            "syncRunId": str(run.id),
            "status": run.status,
            "recordsProcessed": run.records_processed,
            "recordsSucceeded": run.records_succeeded,
            "recordsFailed": run.records_failed,
        }
    )


@bp.route("/<integration_type>/test", methods=["POST"])
@require_bearer(groups=[ADMIN])
def test_integration(integration_type: str):
    _check_type(integration_type)
    result = get_services().sync_engine(integration_type).test_connection()
    return jsonify(result.to_dict())
