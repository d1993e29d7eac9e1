"""Integration settings with secrets routed through the credential vault.

Non-secret fields (urls, usernames) live in ``config``; designated secret
fields are encrypted into ``encrypted_fields`` and never stored in config.
Reads return secrets decrypted server-side, never the ciphertext.
"""
from __future__ import annotations
import logging
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from directory_hub.db import isoformat, session_scope
from directory_hub.models import INTEGRATION_TYPES, IntegrationSettings
from .audit import AuditTrail
from .exceptions import IntegrationError, ValidationError, VaultDecryptError
from .vault import CredentialVault, EncryptedSecret, PlainSecret

logger = logging.getLogger(__name__)

SECRET_FIELDS: dict[str, frozenset[str]] = {
    "carddav": frozenset({"password"}),
    "mosyle": frozenset({"apiKey"}),
}
CONFIG_FIELDS: dict[str, tuple[str, ...]] = {
    "carddav": ("url", "username"),
    "mosyle": ("baseUrl",),
}
REQUIRED_FIELDS: dict[str, tuple[str, ...]] = {
    "carddav": ("url", "username", "password"),
    "mosyle": ("apiKey",),
}
DEFAULT_CONFIG: dict[str, dict[str, str]] = {
    "mosyle": {"baseUrl": "https://businessapi.mosyle.com"},
}


def _check_type(integration_type: str) -> None:
    if integration_type not in INTEGRATION_TYPES:
        raise ValidationError(f"Invalid integration type: {integration_type}")


class IntegrationSettingsService:
    """Reads and writes integration settings through the vault."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        vault: CredentialVault,
        audit: Optional[AuditTrail] = None,
    ):
        self._session_factory = session_factory
        self._vault = vault
        self._audit = audit

    def _decrypted_config(self, row: IntegrationSettings) -> dict[str, Any]:
        config = dict(row.config or {})
        for key, blob in (row.encrypted_fields or {}).items():
            try:
                config[key] = self._vault.reveal(EncryptedSecret(blob)).value
            except VaultDecryptError as exc:
                # One corrupt field is not fatal; the rest stays readable
                logger.error("Failed to decrypt %s.%s: %s", row.type, key, exc)
        return config

    def _to_dict(self, row: IntegrationSettings) -> dict[str, Any]:
        return {
            "type": row.type,
            "enabled": bool(row.enabled),
            "config": self._decrypted_config(row),
            "updatedAt": isoformat(row.updated_at),
        }

    def list_settings(self) -> list[dict[str, Any]]:
        with session_scope(self._session_factory) as session:
            rows = session.execute(select(IntegrationSettings).order_by(IntegrationSettings.type)).scalars().all()
            return [self._to_dict(row) for row in rows]

    def get_settings(self, integration_type: str) -> Optional[dict[str, Any]]:
        """Settings for one integration, or None when never configured."""
        _check_type(integration_type)
        with session_scope(self._session_factory) as session:
            row = self._find(session, integration_type)
            return self._to_dict(row) if row else None

    def update_settings(
        self,
        integration_type: str,
        payload: dict[str, Any],
        actor: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """Merge a settings write.

        ``enabled`` is kept when omitted; empty values leave the stored
        field untouched; secret fields are encrypted and dropped from config.
        """
        _check_type(integration_type)
        if not isinstance(payload, dict):
            raise ValidationError("Settings payload must be an object")
        enabled = payload.get("enabled")
        if enabled is not None and not isinstance(enabled, bool):
            raise ValidationError("enabled must be a boolean")

        secret_fields = SECRET_FIELDS[integration_type]
        with session_scope(self._session_factory) as session:
            row = self._find(session, integration_type)
            if row is None:
                row = IntegrationSettings(
                    type=integration_type,
                    enabled=False,
                    config=dict(DEFAULT_CONFIG.get(integration_type, {})),
                    encrypted_fields={},
                )
                session.add(row)

            if enabled is not None:
                row.enabled = enabled

            config = {k: v for k, v in (row.config or {}).items() if k not in secret_fields}
            for key in CONFIG_FIELDS[integration_type]:
                value = payload.get(key)
                if value is not None and not isinstance(value, str):
                    raise ValidationError(f"{key} must be a string")
                if value:
                    config[key] = value.strip()
            row.config = config

            encrypted = dict(row.encrypted_fields or {})
            for key in secret_fields:
                value = payload.get(key)
                if value is not None and not isinstance(value, str):
                    raise ValidationError(f"{key} must be a string")
                if value:
                    encrypted[key] = self._vault.seal(PlainSecret(value)).blob
            row.encrypted_fields = encrypted

            session.flush()
            result = self._to_dict(row)

        logger.info("Updated %s integration settings (enabled=%s)", integration_type, result["enabled"])
        if self._audit:
            self._audit.append(
                "settings-update", "settings", integration_type, {"enabled": result["enabled"]}, actor
            )
        return result

    def load_credentials(self, integration_type: str, require_enabled: bool = True) -> Optional[dict[str, Any]]:
        """Decrypted config for a connector, or None when absent (or disabled).

        Raises:
            IntegrationError: Enabled but a required field is missing
        """
        _check_type(integration_type)
        with session_scope(self._session_factory) as session:
            row = self._find(session, integration_type)
            if row is None or (require_enabled and not row.enabled):
                return None
            config = self._decrypted_config(row)

        missing = [key for key in REQUIRED_FIELDS[integration_type] if not config.get(key)]
        if missing:
            raise IntegrationError(
                f"{integration_type} credentials not configured (missing: {', '.join(missing)})"
            )
        return config

    @staticmethod
    def _find(session: Session, integration_type: str) -> Optional[IntegrationSettings]:
        return session.execute(
            select(IntegrationSettings).where(IntegrationSettings.type == integration_type)
        ).scalar_one_or_none()
