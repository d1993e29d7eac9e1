"""Audit trail for sharing, settings and sync operations.

Entries are appended to the ``audit_entries`` table and optionally signed
with HMAC-SHA256 (AUDIT_LOG_SIGNING_KEY) over their canonical JSON form.

Appending is best-effort: ``append`` never raises. A failed audit write is
logged and reported as ``False`` so the primary operation carries on.
"""
from __future__ import annotations
import hashlib
import hmac
import json
import logging
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from directory_hub.db import isoformat, session_scope, utcnow
from directory_hub.models import AuditEntry

logger = logging.getLogger(__name__)


def actor_from_claims(claims: Optional[dict]) -> dict[str, Any]:
    """Reduce bearer claims to the identity fields kept in the audit trail."""
    if not claims:
        return {"sub": "system", "email": None, "groups": []}
    return {
        "sub": claims.get("sub") or claims.get("azp") or "unknown",
        "email": claims.get("email"),
        "groups": list(claims.get("groups") or []),
    }


class AuditTrail:
    """Append-only audit log backed by the shared database."""

    def __init__(self, session_factory: sessionmaker[Session], signing_key: str = ""):
        self._session_factory = session_factory
        self._signing_key = signing_key.strip().encode("utf-8") if signing_key else b""

    def _sign_event(self, event: dict[str, Any]) -> str:
        """Generate HMAC-SHA256 signature for audit event."""
        if not self._signing_key:
            return ""
        canonical = json.dumps(event, sort_keys=True, separators=(",", ":"), default=str)
        return hmac.new(self._signing_key, canonical.encode("utf-8"), hashlib.sha256).hexdigest()

    @staticmethod
    def _event_payload(entry: AuditEntry) -> dict[str, Any]:
        return {
            "timestamp": isoformat(entry.timestamp),
            "action": entry.action,
            "resource_kind": entry.resource_kind,
            "resource_id": entry.resource_id,
            "actor": entry.actor or {},
            "details": entry.details or {},
        }

    def record(
        self,
        action: str,
        resource_kind: str,
        resource_id: Optional[str],
        details: Optional[dict[str, Any]],
        actor: Optional[dict[str, Any]],
    ) -> AuditEntry:
        """Persist an audit entry. Raises on storage failure; see append()."""
        entry = AuditEntry(
            action=action,
            resource_kind=resource_kind,
            resource_id=str(resource_id) if resource_id is not None else None,
            actor=actor or actor_from_claims(None),
            details=details or {},
            timestamp=utcnow(),
        )
        entry.signature = self._sign_event(self._event_payload(entry))
        with session_scope(self._session_factory) as session:
            session.add(entry)
        return entry

    def append(
        self,
        action: str,
        resource_kind: str,
        resource_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        actor: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Log an audit event, never raising.

        Returns:
            True if the entry was stored, False if storing it failed

        Note:
            Failures are logged but never propagated to the caller of the
            primary operation.
        """
        try:
            self.record(action, resource_kind, resource_id, details, actor)
            return True
        except Exception as exc:
            logger.warning(
                "Failed to log audit event %s on %s/%s: %s",
                action, resource_kind, resource_id, exc,
            )
            return False

    def list_entries(
        self,
        resource_kind: Optional[str] = None,
        resource_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        """Most recent entries first."""
        stmt = select(AuditEntry).order_by(AuditEntry.timestamp.desc(), AuditEntry.id.desc())
        if resource_kind:
            stmt = stmt.where(AuditEntry.resource_kind == resource_kind)
        if resource_id is not None:
            stmt = stmt.where(AuditEntry.resource_id == str(resource_id))
        stmt = stmt.limit(max(1, min(limit, 1000)))
        with session_scope(self._session_factory) as session:
            entries = session.execute(stmt).scalars().all()
            return [dict(self._event_payload(e), id=e.id, signature=e.signature) for e in entries]

    def verify_entries(self) -> tuple[int, int]:
        """Verify all signatures in the audit trail.

        Returns:
            Tuple of (total_entries, valid_signatures)
        """
        total = 0
        valid = 0
        with session_scope(self._session_factory) as session:
            for entry in session.execute(select(AuditEntry).order_by(AuditEntry.id)).scalars():
                total += 1
                if not entry.signature:
                    continue
                computed = self._sign_event(self._event_payload(entry))
                if computed and hmac.compare_digest(entry.signature, computed):
                    valid += 1
        return total, valid
