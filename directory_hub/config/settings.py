"""Settings loader with environment variable and Docker secrets integration."""
from __future__ import annotations
import os
import secrets
import string
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from directory_hub.core.exceptions import VaultConfigError

ENCRYPTION_KEY_HEX_LENGTH = 64
DEFAULT_DATABASE_URL = "sqlite:///.runtime/directory_hub.db"


def _load_secret_from_file(secret_name: str, env_var: str | None = None) -> str | None:
    """
    Load secret from /run/secrets (Docker secrets pattern).

    Priority:
    1. /run/secrets/{secret_name} (Docker secrets mount)
    2. Environment variable (fallback)

    Args:
        secret_name: Name of the secret file in /run/secrets
        env_var: Optional environment variable name to check as fallback

    Returns:
        Secret value or None if not found
    """
    secret_file = Path("/run/secrets") / secret_name

    if secret_file.exists() and secret_file.is_file():
        try:
            secret_value = secret_file.read_text().strip()
            if secret_value:
                print(f"[settings] ✓ Loaded {secret_name} from /run/secrets")
                return secret_value
        except OSError as e:
            print(f"[settings] ✗ Failed to read /run/secrets/{secret_name}: {e}")

    if env_var:
        secret_value = os.getenv(env_var)
        if secret_value:
            return secret_value.strip()

    return None


def validate_encryption_key(key_hex: str | None) -> str:
    """Check that the vault key is exactly 256 bits of hex.

    Raises:
        VaultConfigError: If the key is absent, the wrong length or not hex.
            The message never echoes the key itself.
    """
    if not key_hex:
        raise VaultConfigError("ENCRYPTION_KEY is not set (expected 64 hex characters)")
    if len(key_hex) != ENCRYPTION_KEY_HEX_LENGTH:
        raise VaultConfigError(
            f"ENCRYPTION_KEY must be 32 bytes ({ENCRYPTION_KEY_HEX_LENGTH} hex characters), "
            f"got {len(key_hex)} characters"
        )
    if any(char not in string.hexdigits for char in key_hex):
        raise VaultConfigError("ENCRYPTION_KEY must contain only hexadecimal characters")
    return key_hex.lower()


def _int_env(var_name: str, default: int, minimum: int = 0) -> int:
    """Parse an integer env var, falling back to default on junk or out-of-range values."""
    raw = os.environ.get(var_name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        print(f"[settings] WARNING: {var_name}={raw!r} is not an integer, using {default}")
        return default
    if value < minimum:
        print(f"[settings] WARNING: {var_name} must be >= {minimum}, using {default}")
        return default
    return value


def _float_env(var_name: str, default: float) -> float:
    raw = os.environ.get(var_name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


@dataclass
class AppConfig:
    """Application configuration container."""
    # Mode
    demo_mode: bool

    # Flask
    secret_key: str

    # Credential vault (64 hex chars, never printed)
    encryption_key: str

    # Persistence
    database_url: str = DEFAULT_DATABASE_URL

    # Share links
    share_link_ttl_minutes: int = 2
    share_link_min_ttl_seconds: int = 30
    share_link_max_ttl_seconds: int = 60 * 60 * 24

    # Directory sync
    sync_request_timeout: float = 10.0
    sync_max_workers: int = 1
    sync_max_error_details: int = 50

    # Bearer token validation
    oidc_issuer: str = ""
    oidc_jwks_url: str = ""
    oidc_audience: str = ""
    admin_group: str = "directory-admins"

    # Audit
    audit_log_signing_key: str = ""

    # Scan enrichment (geolocation lookups leave the network)
    scan_geolocation_enabled: bool = True

    def __repr__(self) -> str:
        return (
            f"AppConfig(demo_mode={self.demo_mode}, database_url={self.database_url!r}, "
            f"oidc_issuer={self.oidc_issuer!r}, admin_group={self.admin_group!r})"
        )

    @property
    def default_share_ttl_seconds(self) -> int:
        return self.share_link_ttl_minutes * 60


def load_settings() -> AppConfig:
    """Load application settings from environment and /run/secrets.

    Raises:
        VaultConfigError: If ENCRYPTION_KEY is missing (outside demo mode)
            or malformed. This is fatal at startup.
        RuntimeError: If FLASK_SECRET_KEY is missing outside demo mode.
    """
    demo_mode = os.environ.get("DEMO_MODE", "false").lower() == "true"

    # Flask secret key
    secret_key = _load_secret_from_file("flask_secret_key", "FLASK_SECRET_KEY")
    if not secret_key:
        if not demo_mode:
            raise RuntimeError("FLASK_SECRET_KEY not found in /run/secrets or environment")
        secret_key = secrets.token_urlsafe(48)
        print("[demo-mode] Generated temporary FLASK_SECRET_KEY")

    # Vault key
    encryption_key = _load_secret_from_file("encryption_key", "ENCRYPTION_KEY")
    if not encryption_key and demo_mode:
        encryption_key = secrets.token_hex(32)
        print("[demo-mode] Generated temporary ENCRYPTION_KEY (stored secrets will not survive a restart)")
    encryption_key = validate_encryption_key(encryption_key)

    database_url = os.environ.get("DATABASE_URL", "").strip() or DEFAULT_DATABASE_URL

    # Share link TTL: non-positive or invalid values fall back to 2 minutes
    share_link_ttl_minutes = _int_env("SHARE_LINK_TTL_MINUTES", 2, minimum=1)
    share_link_min_ttl_seconds = _int_env("SHARE_LINK_MIN_TTL_SECONDS", 30, minimum=1)
    share_link_max_ttl_seconds = _int_env("SHARE_LINK_MAX_TTL_SECONDS", 60 * 60 * 24, minimum=1)
    if share_link_min_ttl_seconds > share_link_max_ttl_seconds:
        raise RuntimeError("SHARE_LINK_MIN_TTL_SECONDS must not exceed SHARE_LINK_MAX_TTL_SECONDS")

    sync_request_timeout = _float_env("SYNC_REQUEST_TIMEOUT", 10.0)
    sync_max_workers = _int_env("SYNC_MAX_WORKERS", 1, minimum=1)
    sync_max_error_details = _int_env("SYNC_MAX_ERROR_DETAILS", 50, minimum=0)

    oidc_issuer = os.environ.get("OIDC_ISSUER", "").rstrip("/")
    oidc_jwks_url = os.environ.get("OIDC_JWKS_URL", "")
    if not oidc_jwks_url and oidc_issuer:
        oidc_jwks_url = f"{oidc_issuer}/protocol/openid-connect/certs"
    oidc_audience = os.environ.get("OIDC_AUDIENCE", "")
    admin_group = os.environ.get("ADMIN_GROUP", "directory-admins").strip()

    audit_log_signing_key = _load_secret_from_file("audit_log_signing_key", "AUDIT_LOG_SIGNING_KEY") or ""
    if not audit_log_signing_key and demo_mode:
        audit_log_signing_key = "demo-audit-signing-key-change-in-production"

    is_testing = os.environ.get("PYTEST_CURRENT_TEST") is not None
    scan_geolocation_enabled = os.environ.get(
        "SCAN_GEOLOCATION_ENABLED", "false" if is_testing else "true"
    ).lower() == "true"

    mode_label = "DEMO" if demo_mode else "PRODUCTION"
    print(f"[settings] Mode={mode_label}; database={database_url.split('://', 1)[0]}; issuer={oidc_issuer or 'unset'}")

    if demo_mode:
        print("[settings] WARNING: Demo credentials in use. Do not deploy with these defaults.")

    return AppConfig(
        demo_mode=demo_mode,
        secret_key=secret_key,
        encryption_key=encryption_key,
        database_url=database_url,
        share_link_ttl_minutes=share_link_ttl_minutes,
        share_link_min_ttl_seconds=share_link_min_ttl_seconds,
        share_link_max_ttl_seconds=share_link_max_ttl_seconds,
        sync_request_timeout=sync_request_timeout,
        sync_max_workers=sync_max_workers,
        sync_max_error_details=sync_max_error_details,
        oidc_issuer=oidc_issuer,
        oidc_jwks_url=oidc_jwks_url,
        oidc_audience=oidc_audience,
        admin_group=admin_group,
        audit_log_signing_key=audit_log_signing_key,
        scan_geolocation_enabled=scan_geolocation_enabled,
    )
