"""Share links: time- and use-bounded bearer access to one contact.

The raw token is returned to the caller exactly once and never stored;
the database keeps its SHA-256 digest. Consumption is a single conditional
UPDATE (match + not expired + under quota, increment in the same statement),
so N concurrent consumers of a single-use token yield exactly one success.

Every consumption failure surfaces as ShareLinkGoneError with the same
message, whatever the cause (unknown token, expired, exhausted).
"""
from __future__ import annotations
import hashlib
import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Union

from sqlalchemy import delete, or_, select, update
from sqlalchemy.orm import Session, sessionmaker

from directory_hub.db import isoformat, session_scope, utcnow
from directory_hub.models import ShareLink
from .audit import AuditTrail
from .exceptions import ShareLinkGoneError, ValidationError

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32
DEFAULT_TTL_SECONDS = 120
MIN_TTL_SECONDS = 30
MAX_TTL_SECONDS = 60 * 60 * 24


class _Unset:
    """Marker for "argument omitted", distinct from an explicit None."""

    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class IssuedShareLink:
    token: str
    expires_at: Optional[datetime]

    def __repr__(self) -> str:
        return f"IssuedShareLink(token='***', expires_at={self.expires_at!r})"

    def to_dict(self) -> dict:
        return {"token": self.token, "expiresAt": isoformat(self.expires_at)}


@dataclass(frozen=True)
class ShareGrant:
    """Successful consumption of a share link."""

    resource_id: str
    uses_count: int
    max_uses: Optional[int]
    expires_at: Optional[datetime]
    used_at: datetime


def _coerce_int(value: Any, field: str) -> int:
    # bool is an int subclass; "true" is never a valid TTL or quota
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and re.fullmatch(r"-?[0-9]+", value.strip()):
        return int(value.strip())
    raise ValidationError(f"{field} must be an integer")


class ShareTokenManager:
    """Issues and atomically consumes share tokens scoped to one resource."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        audit: Optional[AuditTrail] = None,
        *,
        default_ttl_seconds: int = DEFAULT_TTL_SECONDS,
        min_ttl_seconds: int = MIN_TTL_SECONDS,
        max_ttl_seconds: int = MAX_TTL_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._audit = audit
        self.default_ttl_seconds = default_ttl_seconds
        self.min_ttl_seconds = min_ttl_seconds
        self.max_ttl_seconds = max_ttl_seconds
        self._clock = clock

    @classmethod
    def from_settings(cls, cfg, session_factory, audit=None) -> "ShareTokenManager":
        return cls(
            session_factory,
            audit,
            default_ttl_seconds=cfg.default_share_ttl_seconds,
            min_ttl_seconds=cfg.share_link_min_ttl_seconds,
            max_ttl_seconds=cfg.share_link_max_ttl_seconds,
        )

    def _resolve_ttl(self, ttl_seconds: Union[int, None, _Unset]) -> Optional[int]:
        if ttl_seconds is UNSET:
            return self.default_ttl_seconds
        if ttl_seconds is None:
            return None
        ttl = _coerce_int(ttl_seconds, "ttlSeconds")
        if ttl < self.min_ttl_seconds or ttl > self.max_ttl_seconds:
            raise ValidationError(
                f"TTL must be between {self.min_ttl_seconds}s and {self.max_ttl_seconds}s"
            )
        return ttl

    @staticmethod
    def _resolve_max_uses(max_uses: Union[int, None, _Unset]) -> Optional[int]:
        if max_uses is UNSET:
            return 1
        if max_uses is None:
            return None
        try:
            parsed = _coerce_int(max_uses, "maxUses")
        except ValidationError:
            raise ValidationError("maxUses must be a positive number or null for unlimited") from None
        if parsed < 1:
            raise ValidationError("maxUses must be a positive number or null for unlimited")
        return parsed

    def issue(
        self,
        resource_id: str,
        actor: Optional[dict[str, Any]] = None,
        ttl_seconds: Union[int, None, _Unset] = UNSET,
        max_uses: Union[int, None, _Unset] = UNSET,
    ) -> IssuedShareLink:
        """Mint a share token for one resource.

        Args:
            resource_id: Id of the protected record
            actor: Identity of the caller (audit actor dict)
            ttl_seconds: UNSET for the default TTL, None for no expiry,
                otherwise seconds within [min_ttl, max_ttl]
            max_uses: UNSET for single use, None for unlimited,
                otherwise a positive integer

        Returns:
            IssuedShareLink carrying the raw token (only time it is exposed)

        Raises:
            ValidationError: Bad TTL or maxUses
        """
        if resource_id is None or str(resource_id).strip() == "":
            raise ValidationError("resourceId is required")
        ttl = self._resolve_ttl(ttl_seconds)
        resolved_max_uses = self._resolve_max_uses(max_uses)

        token = secrets.token_urlsafe(TOKEN_BYTES)
        now = self._clock()
        expires_at = None if ttl is None else now + timedelta(seconds=ttl)
        created_by = (actor or {}).get("email") or (actor or {}).get("sub")

        with session_scope(self._session_factory) as session:
            session.add(
                ShareLink(
                    resource_id=str(resource_id),
                    token_hash=hash_token(token),
                    created_by=created_by,
                    created_at=now,
                    expires_at=expires_at,
                    uses_count=0,
                    max_uses=resolved_max_uses,
                )
            )

        logger.info(
            "Issued share link for resource %s (ttl=%s, max_uses=%s, token_hash=%s)",
            resource_id, ttl, resolved_max_uses, hash_token(token)[:12],
        )
        if self._audit:
            self._audit.append(
                "share-create",
                "contact",
                str(resource_id),
                {"ttlSeconds": ttl, "maxUses": resolved_max_uses, "expiresAt": isoformat(expires_at)},
                actor,
            )
        return IssuedShareLink(token=token, expires_at=expires_at)

    def consume(self, resource_id: str, raw_token: str) -> ShareGrant:
        """Validate a presented token and count one use, atomically.

        Raises:
            ValidationError: Token missing or not a string
            ShareLinkGoneError: No matching, unexpired, under-quota link
        """
        if not raw_token or not isinstance(raw_token, str):
            raise ValidationError("Share link token is required")

        now = self._clock()
        token_hash = hash_token(raw_token)
        stmt = (
            update(ShareLink)
            .where(
                ShareLink.resource_id == str(resource_id),
                ShareLink.token_hash == token_hash,
                or_(ShareLink.expires_at.is_(None), ShareLink.expires_at > now),
                or_(ShareLink.max_uses.is_(None), ShareLink.uses_count < ShareLink.max_uses),
            )
            .values(uses_count=ShareLink.uses_count + 1, used_at=now)
            .execution_options(synchronize_session=False)
        )

        with session_scope(self._session_factory) as session:
            result = session.execute(stmt)
            if result.rowcount != 1:
                logger.info("Rejected share link for resource %s (token_hash=%s)", resource_id, token_hash[:12])
                raise ShareLinkGoneError()
            # Same transaction: the row is already write-locked by the update
            link = session.execute(
                select(ShareLink).where(ShareLink.token_hash == token_hash)
            ).scalar_one()
            grant = ShareGrant(
                resource_id=link.resource_id,
                uses_count=link.uses_count,
                max_uses=link.max_uses,
                expires_at=link.expires_at,
                used_at=now,
            )
        return grant

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Delete share links whose expiry has passed. Returns rows removed."""
        cutoff = now or self._clock()
        with session_scope(self._session_factory) as session:
            result = session.execute(
                delete(ShareLink)
                .where(ShareLink.expires_at.is_not(None), ShareLink.expires_at <= cutoff)
                .execution_options(synchronize_session=False)
            )
            removed = result.rowcount or 0
        if removed:
            logger.info("Purged %d expired share links", removed)
        return removed
