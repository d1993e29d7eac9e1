"""Directory sync engine: single-record push and full batch sync.

A batch never stops on a bad record. Every item is processed in isolation
and yields an ItemResult that is counted in the sync ledger; only failures
to start (disabled integration, missing credentials, failing upstream
listing) abort the whole run.

Usage:
    engine = DirectorySyncEngine("carddav", session_factory, integrations, ledger, audit)
    run = engine.sync_all()
    print(run.records_succeeded, run.records_failed)
"""
from __future__ import annotations
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session, sessionmaker

from directory_hub.db import session_scope, utcnow
from directory_hub.models import Contact
from ..audit import AuditTrail
from ..exceptions import (
    DirectoryError,
    IntegrationError,
    ResourceNotFoundError,
    UpstreamSyncError,
    ValidationError,
)
from ..integrations import IntegrationSettingsService
from ..sync_ledger import RunHandle, SyncLedger, SyncRunView
from .carddav import PUSH_ACTIONS, CardDavConnector
from .client import REQUEST_TIMEOUT
from .mosyle import MosyleConnector

logger = logging.getLogger(__name__)

CONNECTORS = {
    "carddav": CardDavConnector,
    "mosyle": MosyleConnector,
}

REACHABLE = "reachable"
AUTH_FAILED = "auth-failed"
UNREACHABLE = "unreachable"


@dataclass(frozen=True)
class ConnectionStatus:
    status: str
    message: str

    @property
    def ok(self) -> bool:
        return self.status == REACHABLE

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status, "message": self.message}


@dataclass(frozen=True)
class ItemResult:
    """Outcome of one item in a batch. Never an exception."""

    ok: bool
    item_ref: str
    error: Optional[str] = None
    index: Optional[int] = None


@dataclass(frozen=True)
class SyncOutcome:
    record_id: Any
    action: str
    ok: bool = True
    skipped: bool = False
    message: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "recordId": self.record_id,
            "action": self.action,
            "ok": self.ok,
            "skipped": self.skipped,
            "message": self.message,
        }


class CancelToken:
    """Cooperative cancellation flag checked between items."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class DirectorySyncEngine:
    """Synchronizes local records with one external directory."""

    def __init__(
        self,
        kind: str,
        session_factory: sessionmaker[Session],
        integrations: IntegrationSettingsService,
        ledger: SyncLedger,
        audit: Optional[AuditTrail] = None,
        *,
        timeout: float = REQUEST_TIMEOUT,
        max_workers: int = 1,
        http: Any = None,
    ):
        """Initialize the engine.

        Args:
            kind: Integration type ("carddav" or "mosyle")
            session_factory: Database sessions for records and devices
            integrations: Vault-backed credential source
            ledger: Sync run ledger
            audit: Optional audit trail
            timeout: Seconds allowed for each outbound call
            max_workers: Items processed concurrently during sync_all (1 = sequential)
            http: Transport passed to DirectoryClient (tests inject a stub)
        """
        if kind not in CONNECTORS:
            raise ValidationError(f"Invalid integration type: {kind}")
        self.kind = kind
        self._session_factory = session_factory
        self._integrations = integrations
        self._ledger = ledger
        self._audit = audit
        self.timeout = timeout
        self.max_workers = max(1, int(max_workers))
        self._http = http

    @classmethod
    def from_settings(cls, kind, cfg, session_factory, integrations, ledger, audit=None, http=None):
        return cls(
            kind,
            session_factory,
            integrations,
            ledger,
            audit,
            timeout=cfg.sync_request_timeout,
            max_workers=cfg.sync_max_workers,
            http=http,
        )

    def _connector(self, require_enabled: bool = True):
        """Build the connector from decrypted credentials; None when disabled."""
        credentials = self._integrations.load_credentials(self.kind, require_enabled=require_enabled)
        if credentials is None:
            return None
        return CONNECTORS[self.kind].from_credentials(credentials, timeout=self.timeout, http=self._http)

    def _audit_append(self, action: str, resource_kind: str, resource_id: Any, details: dict, actor=None) -> None:
        if self._audit:
            self._audit.append(action, resource_kind, resource_id, details, actor)

    # ------------------------------------------------------------------
    # Single record
    # ------------------------------------------------------------------

    def sync_one(self, record: Any, action: str, actor: Optional[dict] = None) -> SyncOutcome:
        """Push one contact create/update/delete to the remote directory.

        Args:
            record: Contact instance or contact id
            action: "create", "update" or "delete"
            actor: Audit actor dict

        Returns:
            SyncOutcome (skipped=True when the integration is disabled)

        Raises:
            ValidationError: Invalid action, pull-only integration, or record
                that cannot be translated
            ResourceNotFoundError: Unknown contact for create/update
            UpstreamSyncError: Remote rejected the write or could not be reached
        """
        if action not in PUSH_ACTIONS:
            raise ValidationError(f"Invalid sync action: {action}")
        connector_cls = CONNECTORS[self.kind]
        if connector_cls.direction != "push":
            raise ValidationError(f"{self.kind} integration is pull-only")

        record_id = getattr(record, "id", record)
        connector = self._connector()
        if connector is None:
            logger.info("%s integration disabled; skipping %s of contact %s", self.kind, action, record_id)
            return SyncOutcome(record_id=record_id, action=action, skipped=True)

        contact = record_id if action == "delete" else self._load_contact(record_id)
        try:
            self._push_record(connector, contact, action)
        except DirectoryError as exc:
            self._audit_append(
                "sync", "contact", record_id,
                {"integration": self.kind, "action": action, "ok": False, "error": exc.message}, actor,
            )
            raise
        self._audit_append("sync", "contact", record_id, {"integration": self.kind, "action": action, "ok": True}, actor)
        return SyncOutcome(record_id=record_id, action=action)

    def _load_contact(self, record_id: Any) -> Contact:
        with session_scope(self._session_factory) as session:
            contact = session.get(Contact, record_id)
            if contact is None:
                raise ResourceNotFoundError(f"Contact {record_id} not found")
            return contact

    def _push_record(self, connector: CardDavConnector, contact: Any, action: str) -> None:
        """Push and record the contact's sync status. Re-raises push failures."""
        record_id = getattr(contact, "id", contact)
        try:
            connector.push(contact, action)
        except DirectoryError:
            self._set_contact_status(record_id, "failed")
            raise
        self._set_contact_status(record_id, "synced", synced_at=utcnow())

    def _set_contact_status(self, record_id: Any, status: str, synced_at=None) -> None:
        values: dict[str, Any] = {"sync_status": status}
        if synced_at is not None:
            values["synced_at"] = synced_at
        # A deleted contact has no row left; the update is then a no-op
        with session_scope(self._session_factory) as session:
            session.execute(
                update(Contact)
                .where(Contact.id == record_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    def sync_all(self, cancel: Optional[CancelToken] = None, actor: Optional[dict] = None) -> SyncRunView:
        """Sync every item and return the finalized run.

        Raises:
            IntegrationError: Integration disabled or credentials missing
            UpstreamSyncError: Listing the remote items failed
        """
        handle = self._ledger.start_run(self.kind, metadata={"trigger": "manual" if actor else "system"})
        finished = False
        try:
            try:
                connector = self._connector()
                if connector is None:
                    raise IntegrationError(f"{self.kind} integration is not enabled")
                items = connector.list_items(self._session_factory)
            except DirectoryError as exc:
                view = self._ledger.finish(handle, "failed", detail=exc.message)
                finished = True
                logger.warning("%s sync run %s aborted: %s", self.kind, handle.run_id, exc.message)
                self._audit_run(view, actor)
                raise

            cancelled = self._process_items(connector, handle, items, cancel)
            if cancelled:
                view = self._ledger.finish(handle, "failed", detail="Sync cancelled", metadata={"cancelled": True})
            else:
                view = self._ledger.finish(handle, "completed")
            finished = True
        finally:
            if not finished:
                self._finalize_aborted(handle)

        self._audit_run(view, actor)
        return view

    def _process_items(self, connector, handle: RunHandle, items: list, cancel: Optional[CancelToken]) -> bool:
        """Run every item through the connector. Returns True if cancelled early."""
        if self.max_workers <= 1:
            for index, item in enumerate(items, start=1):
                if cancel is not None and cancel.cancelled:
                    return True
                self._record(handle, self._process_item(connector, item, index))
            return False

        skipped = threading.Event()

        def work(index: int, item: Any) -> None:
            if cancel is not None and cancel.cancelled:
                skipped.set()
                return
            self._record(handle, self._process_item(connector, item, index))

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix=f"sync-{self.kind}") as pool:
            futures = [pool.submit(work, index, item) for index, item in enumerate(items, start=1)]
            for future in futures:
                # Ledger failures are unexpected; surface them
                future.result()
        return skipped.is_set()

    def _process_item(self, connector, item: Any, index: int) -> ItemResult:
        """Sync one item; every failure becomes a failed ItemResult."""
        try:
            item_ref = connector.item_ref(item)
        except Exception:
            item_ref = f"item:{index}"
        try:
            if connector.direction == "push":
                self._push_record(connector, item, "update")
            else:
                with session_scope(self._session_factory) as session:
                    connector.apply_item(session, item)
        except DirectoryError as exc:
            logger.info("%s sync item %s failed: %s", self.kind, item_ref, exc.message)
            return ItemResult(ok=False, item_ref=item_ref, error=exc.message, index=index)
        except Exception as exc:
            logger.exception("Unexpected error syncing %s item %s", self.kind, item_ref)
            return ItemResult(ok=False, item_ref=item_ref, error=f"Unexpected error: {exc.__class__.__name__}", index=index)
        return ItemResult(ok=True, item_ref=item_ref, index=index)

    def _record(self, handle: RunHandle, result: ItemResult) -> None:
        self._ledger.record_item_outcome(handle, result.item_ref, result.ok, result.error, index=result.index)

    def _finalize_aborted(self, handle: RunHandle) -> None:
        try:
            self._ledger.finish(handle, "failed", detail="Sync aborted by an unexpected error")
        except DirectoryError as exc:
            logger.error("Could not finalize sync run %s: %s", handle.run_id, exc.message)

    def _audit_run(self, view: SyncRunView, actor: Optional[dict]) -> None:
        self._audit_append(
            "sync",
            "sync",
            view.id,
            {
                "integration": self.kind,
                "status": view.status,
                "recordsProcessed": view.records_processed,
                "recordsSucceeded": view.records_succeeded,
                "recordsFailed": view.records_failed,
            },
            actor,
        )

    # ------------------------------------------------------------------
    # Connection test
    # ------------------------------------------------------------------

    def test_connection(self) -> ConnectionStatus:
        """Probe the remote with the stored credentials. Read-only.

        Works whether or not the integration is enabled.

        Raises:
            IntegrationError: Credentials were never configured
        """
        connector = self._connector(require_enabled=False)
        if connector is None:
            raise IntegrationError(f"{self.kind} credentials not configured")

        failure = connector.probe()
        if failure is None:
            logger.info("%s connection test succeeded", self.kind)
            return ConnectionStatus(REACHABLE, f"Connected to {self.kind} successfully")

        logger.warning("%s connection test failed: %s", self.kind, failure.message)
        return self._classify(failure)

    def _classify(self, failure: UpstreamSyncError) -> ConnectionStatus:
        if failure.status_code in (401, 403):
            hint = "check username and password" if self.kind == "carddav" else "check API key"
            return ConnectionStatus(AUTH_FAILED, f"Authentication failed: {hint}")
        return ConnectionStatus(UNREACHABLE, failure.message)
