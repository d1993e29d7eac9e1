"""Exceptions shared by the sharing, vault and sync services."""
from __future__ import annotations
from typing import Optional


class DirectoryError(Exception):
    """Base exception for all directory hub operations.

    Attributes:
        status: HTTP-class status used by the API layer
        message: Human-readable error message
    """

    status = 500
    error_code: Optional[str] = None

    def __init__(self, message: str, status: Optional[int] = None):
        self.message = message
        if status is not None:
            self.status = status
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to the JSON error body returned by the API."""
        return {"error": self.error_code or self.__class__.__name__, "message": self.message}


class ValidationError(DirectoryError):
    """Caller supplied bad input (TTL, maxUses, malformed record...)."""

    status = 400


class AuthorizationError(DirectoryError):
    """Missing or invalid bearer claims, or insufficient group."""

    status = 401


class ResourceNotFoundError(DirectoryError):
    """Referenced record does not exist."""

    status = 404


class ShareLinkGoneError(DirectoryError):
    """Share token is unknown, expired or exhausted.

    The message is fixed so callers can't tell which predicate failed.
    """

    status = 410
    error_code = "Gone"
    MESSAGE = "Share link has expired or been used"

    def __init__(self):
        super().__init__(self.MESSAGE)


class IntegrationError(DirectoryError):
    """Integration is disabled or its credentials are not configured."""

    status = 400


class UpstreamSyncError(DirectoryError):
    """External directory call failed (HTTP error, timeout, unreachable).

    Attributes:
        status_code: HTTP status returned by the remote, None when no response
        endpoint: Remote URL that failed
    """

    status = 502

    def __init__(self, message: str, status_code: Optional[int] = None, endpoint: str = ""):
        self.status_code = status_code
        self.endpoint = endpoint
        prefix = f"[{status_code}] " if status_code is not None else ""
        super().__init__(f"{prefix}{message}")


class VaultError(DirectoryError):
    """Base class for credential vault failures."""

    status = 500


class VaultConfigError(VaultError):
    """Encryption key missing or malformed. Fatal at startup."""


class VaultDecryptError(VaultError):
    """Ciphertext is malformed, truncated or fails authentication."""
