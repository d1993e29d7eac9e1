"""Share link endpoints: public consumption and admin issuance."""
from __future__ import annotations
import logging

from flask import Blueprint, jsonify, request

from directory_hub.api import get_services
from directory_hub.api.decorators import ADMIN, get_bearer_claims, require_bearer
from directory_hub.core.audit import actor_from_claims
from directory_hub.core.exceptions import ResourceNotFoundError, ShareLinkGoneError, ValidationError
from directory_hub.core.scans import client_ip
from directory_hub.core.share_links import UNSET
from directory_hub.db import session_scope
from directory_hub.models import Contact

logger = logging.getLogger(__name__)

bp = Blueprint("share", __name__)


def _contact_pk(contact_id: str):
    try:
        return int(contact_id)
    except (TypeError, ValueError):
        return None


@bp.route("/public/contacts/<contact_id>", methods=["GET"])
def public_contact(contact_id: str):
    """Consume a share token and return the shared contact."""
    services = get_services()
    token = request.args.get("token", "")
    if not token:
        raise ValidationError("Share link token is required")

    grant = services.share_links.consume(contact_id, token)

    pk = _contact_pk(contact_id)
    with session_scope(services.session_factory) as session:
        contact = session.get(Contact, pk) if pk is not None else None
        if contact is None:
            # The link was valid but its contact is gone; same opaque answer
            raise ShareLinkGoneError()
        body = contact.to_dict()

    services.audit.append(
        "share-consume",
        "contact",
        contact_id,
        {"usesCount": grant.uses_count, "maxUses": grant.max_uses},
        None,
    )

    try:
        services.scans.record_scan(
            contact_id,
            client_ip(request.headers, request.remote_addr),
            request.headers.get("User-Agent"),
        )
    except RuntimeError as exc:
        # Executor already shut down; the response is unaffected
        logger.warning("Could not schedule scan for contact %s: %s", contact_id, exc)

    return jsonify(body), 200


@bp.route("/contacts/<contact_id>/share", methods=["POST"])
@require_bearer(groups=[ADMIN])
def issue_share_link(contact_id: str):
    """Issue a share link. Body keys: ttlSeconds, maxUses (null = unlimited)."""
    services = get_services()
    payload = request.get_json(silent=True)
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")

    pk = _contact_pk(contact_id)
    with session_scope(services.session_factory) as session:
        if pk is None or session.get(Contact, pk) is None:
            raise ResourceNotFoundError(f"Contact {contact_id} not found")

    issued = services.share_links.issue(
        contact_id,
        actor=actor_from_claims(get_bearer_claims()),
        ttl_seconds=payload["ttlSeconds"] if "ttlSeconds" in payload else UNSET,
        max_uses=payload["maxUses"] if "maxUses" in payload else UNSET,
    )
    return jsonify(issued.to_dict()), 201
