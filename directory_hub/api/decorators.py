"""
Flask decorators for bearer-token authentication and group authorization.

Validates JWT access tokens issued by the configured OIDC provider:
- RSA signature verification via JWKS (RFC 7517)
- Expiration, issuer and (optional) audience validation (RFC 7519)
- JWKS caching (1-hour refresh)

The identity provider itself is out of scope: a bearer token goes in,
validated claims come out on ``g.bearer_claims``.
"""

import hashlib
import logging
from functools import wraps
from typing import Any, Dict, List, Optional

import jwt
from jwt import PyJWKClient
from jwt.exceptions import (
    DecodeError,
    ExpiredSignatureError,
    InvalidAudienceError,
    InvalidIssuerError,
    InvalidSignatureError,
    InvalidTokenError,
    PyJWKClientError,
)
from flask import current_app, g, jsonify, request

logger = logging.getLogger(__name__)

# JWKS clients cached per URL
_jwks_clients: Dict[str, PyJWKClient] = {}

ADMIN = "__admin_group__"


class TokenValidationError(Exception):
    """Raised when a bearer token fails validation."""


def get_jwks_client(jwks_url: str) -> PyJWKClient:
    """Cached JWKS client for the provider's signing keys."""
    client = _jwks_clients.get(jwks_url)
    if client is None:
        logger.info("Initializing JWKS client for: %s", jwks_url)
        client = PyJWKClient(
            jwks_url,
            cache_keys=True,
            max_cached_keys=16,
            lifespan=3600,
            headers={"User-Agent": "Directory-Hub/1.0"},
        )
        _jwks_clients[jwks_url] = client
    return client


def _token_digest(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()[:12]


def validate_jwt_token(token: str) -> Dict[str, Any]:
    """
    Validate a JWT bearer token.

    Args:
        token: JWT string (without "Bearer " prefix)

    Returns:
        dict: Validated token claims

    Raises:
        TokenValidationError: If any validation fails
    """
    # Guard: unit tests mock authentication
    if current_app.config.get("TESTING") and current_app.config.get("SKIP_AUTH_FOR_TESTS", False):
        logger.warning("JWT validation SKIPPED (TESTING + SKIP_AUTH_FOR_TESTS)")
        cfg = current_app.config["APP_CONFIG"]
        return current_app.config.get("TEST_CLAIMS") or {
            "sub": "test-user",
            "email": "tester@example.com",
            "groups": [cfg.admin_group],
            "iss": "test-issuer",
        }

    cfg = current_app.config["APP_CONFIG"]
    if not cfg.oidc_jwks_url:
        raise TokenValidationError("Bearer authentication is not configured")

    try:
        signing_key = get_jwks_client(cfg.oidc_jwks_url).get_signing_key_from_jwt(token)
        options = {
            "verify_signature": True,
            "verify_exp": True,
            "verify_nbf": True,
            "verify_iss": bool(cfg.oidc_issuer),
            "verify_aud": bool(cfg.oidc_audience),
            "require": ["exp", "iat"],
        }
        claims = jwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256"],
            issuer=cfg.oidc_issuer or None,
            audience=cfg.oidc_audience or None,
            options=options,
            leeway=5,
        )
    except ExpiredSignatureError:
        raise TokenValidationError("Token expired")
    except InvalidIssuerError:
        raise TokenValidationError("Invalid issuer")
    except InvalidAudienceError:
        raise TokenValidationError("Invalid audience")
    except InvalidSignatureError:
        raise TokenValidationError("Invalid signature")
    except DecodeError:
        raise TokenValidationError("Malformed token")
    except (InvalidTokenError, PyJWKClientError) as exc:
        raise TokenValidationError(f"Token validation failed: {exc.__class__.__name__}")

    logger.debug("JWT validated for subject %s", claims.get("sub"))
    return claims


def claim_groups(claims: Dict[str, Any]) -> List[str]:
    """Group names from ``groups`` (leading "/" stripped) plus realm roles."""
    groups = [str(name).lstrip("/") for name in claims.get("groups") or []]
    realm_access = claims.get("realm_access") or {}
    groups.extend(str(role) for role in realm_access.get("roles") or [])
    return groups


def _unauthorized(message: str):
    response = jsonify({"error": "Unauthorized", "message": message})
    response.headers["WWW-Authenticate"] = 'Bearer realm="directory-hub"'
    return response, 401


def require_bearer(groups: Optional[List[str]] = None):
    """
    Decorator requiring a valid bearer token, optionally with group membership.

    Args:
        groups: Accepted groups; ADMIN stands for the configured admin group.
            The caller needs at least one of them.

    Example:
        @bp.route("/contacts/<contact_id>/share", methods=["POST"])
        @require_bearer(groups=[ADMIN])
        def issue_share_link(contact_id): ...
    """
    required = list(groups or [])

    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            auth_header = request.headers.get("Authorization", "")
            if not auth_header.startswith("Bearer "):
                logger.warning("Request to %s without bearer token", request.path)
                return _unauthorized("Authorization header required. Use 'Authorization: Bearer <token>'")

            token = auth_header[7:].strip()
            if not token:
                return _unauthorized("Bearer token is empty")

            try:
                claims = validate_jwt_token(token)
            except TokenValidationError as exc:
                logger.warning("Bearer validation failed (token_hash=%s): %s", _token_digest(token), exc)
                return _unauthorized(str(exc))

            if required:
                admin_group = current_app.config["APP_CONFIG"].admin_group
                accepted = {admin_group if name == ADMIN else name for name in required}
                if not accepted.intersection(claim_groups(claims)):
                    logger.warning("Subject %s lacks required group for %s", claims.get("sub"), request.path)
                    return jsonify({"error": "Forbidden", "message": "Insufficient permissions"}), 403

            g.bearer_claims = claims
            return fn(*args, **kwargs)

        return wrapper

    return decorator


def get_bearer_claims() -> Optional[dict]:
    """Claims of the validated token. Must be called after @require_bearer."""
    return getattr(g, "bearer_claims", None)
