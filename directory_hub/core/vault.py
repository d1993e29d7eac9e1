"""Credential vault for third-party integration secrets.

Secrets are sealed with AES-256-GCM under a single process-wide key.
Each blob is self-describing:

    v1:<urlsafe-base64(nonce || tag || ciphertext)>

so decryption needs nothing but the key. A tampered, truncated or foreign
blob raises VaultDecryptError; it never decrypts to different plaintext.

Usage:
    vault = CredentialVault(settings.encryption_key)
    blob = vault.encrypt_field("app-password")
    vault.decrypt_field(blob)  # "app-password"
"""
from __future__ import annotations
import base64
import binascii
import logging
import os
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from directory_hub.config.settings import validate_encryption_key
from .exceptions import VaultDecryptError, VaultError

logger = logging.getLogger(__name__)

BLOB_VERSION = "v1"
NONCE_LENGTH = 12
TAG_LENGTH = 16


@dataclass(frozen=True)
class PlainSecret:
    """Decrypted secret value. repr() is masked so it never lands in logs."""

    value: str

    def __repr__(self) -> str:
        return "PlainSecret('***')"

    __str__ = __repr__


@dataclass(frozen=True)
class EncryptedSecret:
    """Ciphertext blob as stored in IntegrationSettings.encrypted_fields."""

    blob: str


class CredentialVault:
    """Authenticated symmetric encryption of small secret blobs."""

    def __init__(self, key_hex: str):
        key_hex = validate_encryption_key(key_hex)
        self._aead = AESGCM(bytes.fromhex(key_hex))

    def __repr__(self) -> str:
        return "CredentialVault(key=***)"

    @classmethod
    def from_settings(cls, cfg) -> "CredentialVault":
        return cls(cfg.encryption_key)

    def encrypt_field(self, plaintext: str) -> str:
        """Encrypt a secret string with a fresh random nonce.

        Args:
            plaintext: Secret to protect

        Returns:
            Self-describing ciphertext blob
        """
        if not isinstance(plaintext, str):
            raise VaultError("Only string secrets can be encrypted")
        nonce = os.urandom(NONCE_LENGTH)
        # AESGCM appends the tag to the ciphertext; store it up front
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        payload = base64.urlsafe_b64encode(nonce + tag + ciphertext).decode("ascii")
        return f"{BLOB_VERSION}:{payload}"

    def decrypt_field(self, blob: str) -> str:
        """Decrypt a blob produced by encrypt_field.

        Raises:
            VaultDecryptError: On malformed, truncated or tampered input
        """
        if not isinstance(blob, str):
            raise VaultDecryptError("Invalid encrypted data format")
        version, sep, payload = blob.partition(":")
        if not sep or version != BLOB_VERSION:
            raise VaultDecryptError("Invalid encrypted data format")
        try:
            raw = base64.urlsafe_b64decode(payload.encode("ascii"))
        except (binascii.Error, ValueError, UnicodeEncodeError):
            raise VaultDecryptError("Invalid encrypted data encoding") from None
        # Reject non-canonical encodings so every edit of the blob is detected
        if base64.urlsafe_b64encode(raw).decode("ascii") != payload:
            raise VaultDecryptError("Invalid encrypted data encoding")
        if len(raw) < NONCE_LENGTH + TAG_LENGTH:
            raise VaultDecryptError("Encrypted data is truncated")

        nonce = raw[:NONCE_LENGTH]
        tag = raw[NONCE_LENGTH:NONCE_LENGTH + TAG_LENGTH]
        ciphertext = raw[NONCE_LENGTH + TAG_LENGTH:]
        try:
            plaintext = self._aead.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag:
            raise VaultDecryptError("Decryption failed: authentication tag mismatch") from None
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            raise VaultDecryptError("Decryption failed: invalid plaintext encoding") from None

    def seal(self, secret: PlainSecret) -> EncryptedSecret:
        return EncryptedSecret(self.encrypt_field(secret.value))

    def reveal(self, secret: EncryptedSecret) -> PlainSecret:
        return PlainSecret(self.decrypt_field(secret.blob))
