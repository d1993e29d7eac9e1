"""Sync run ledger: one row per synchronization attempt.

Counters are bumped with single SQL increments so parallel workers never
lose updates. Only the first ``max_error_details`` failures are kept for
display; the counters always reflect every processed item.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload, sessionmaker

from directory_hub.db import isoformat, session_scope, utcnow
from directory_hub.models import RUN_KINDS, SyncRun, SyncRunFailure
from .exceptions import ResourceNotFoundError, ValidationError

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = ("completed", "failed")
MAX_MESSAGE_LENGTH = 1000


@dataclass(frozen=True)
class RunHandle:
    run_id: int
    kind: str


@dataclass
class SyncRunView:
    """Detached snapshot of a SyncRun row."""

    id: int
    kind: str
    status: str
    started_at: datetime
    completed_at: Optional[datetime]
    records_processed: int
    records_succeeded: int
    records_failed: int
    detail: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    failures: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_model(cls, run: SyncRun) -> "SyncRunView":
        return cls(
            id=run.id,
            kind=run.kind,
            status=run.status,
            started_at=run.started_at,
            completed_at=run.completed_at,
            records_processed=run.records_processed,
            records_succeeded=run.records_succeeded,
            records_failed=run.records_failed,
            detail=run.detail,
            metadata=dict(run.run_metadata or {}),
            failures=[
                {"row": f.position, "itemRef": f.item_ref, "message": f.message}
                for f in run.failures
            ],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "type": self.kind,
            "status": self.status,
            "startedAt": isoformat(self.started_at),
            "completedAt": isoformat(self.completed_at),
            "recordsProcessed": self.records_processed,
            "recordsSucceeded": self.records_succeeded,
            "recordsFailed": self.records_failed,
            "errorDetails": list(self.failures),
            "detail": self.detail,
            "metadata": dict(self.metadata),
        }


class SyncLedger:
    """Append-only record of sync run outcomes."""

    def __init__(self, session_factory: sessionmaker[Session], max_error_details: int = 50):
        self._session_factory = session_factory
        self.max_error_details = max_error_details

    def start_run(self, kind: str, metadata: Optional[dict[str, Any]] = None) -> RunHandle:
        """Create a run row (pending) and move it to in-progress."""
        if kind not in RUN_KINDS:
            raise ValidationError(f"Unknown sync kind: {kind}")
        with session_scope(self._session_factory) as session:
            run = SyncRun(kind=kind, status="pending", started_at=utcnow(), run_metadata=metadata or {})
            session.add(run)
            session.flush()
            run.status = "in-progress"
            run_id = run.id
        logger.info("Started %s sync run %s", kind, run_id)
        return RunHandle(run_id=run_id, kind=kind)

    def record_item_outcome(
        self,
        handle: RunHandle,
        item_ref: str,
        ok: bool,
        error: Optional[str] = None,
        index: Optional[int] = None,
    ) -> None:
        """Count one processed item and keep its failure message if room remains.

        Args:
            handle: Run being recorded
            item_ref: Identifying reference of the item (e.g. "contact:42")
            ok: Whether the item synced
            error: Failure message for the run's error list
            index: 1-based position of the item in the batch; defaults to
                the failure ordinal
        """
        values = {"records_processed": SyncRun.records_processed + 1}
        if ok:
            values["records_succeeded"] = SyncRun.records_succeeded + 1
        else:
            values["records_failed"] = SyncRun.records_failed + 1

        with session_scope(self._session_factory) as session:
            result = session.execute(
                update(SyncRun)
                .where(SyncRun.id == handle.run_id, SyncRun.status == "in-progress")
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ValidationError(f"Sync run {handle.run_id} is not in progress")
            if ok:
                return
            # Read back inside the same transaction; the row stays locked
            failed = session.execute(
                select(SyncRun.records_failed).where(SyncRun.id == handle.run_id)
            ).scalar_one()
            if failed <= self.max_error_details:
                session.add(
                    SyncRunFailure(
                        run_id=handle.run_id,
                        position=index if index is not None else failed,
                        item_ref=str(item_ref),
                        message=(error or "Unknown error")[:MAX_MESSAGE_LENGTH],
                    )
                )

    def finish(
        self,
        handle: RunHandle,
        outcome: str,
        detail: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> SyncRunView:
        """Finalize a run to completed or failed. Terminal runs are immutable."""
        if outcome not in TERMINAL_STATUSES:
            raise ValidationError(f"Invalid sync outcome: {outcome}")
        with session_scope(self._session_factory) as session:
            run = session.get(SyncRun, handle.run_id)
            if run is None:
                raise ResourceNotFoundError(f"Sync run {handle.run_id} not found")
            values: dict[Any, Any] = {SyncRun.status: outcome, SyncRun.completed_at: utcnow()}
            if detail is not None:
                values[SyncRun.detail] = detail[:MAX_MESSAGE_LENGTH]
            if metadata:
                values[SyncRun.run_metadata] = {**(run.run_metadata or {}), **metadata}
            result = session.execute(
                update(SyncRun)
                .where(SyncRun.id == handle.run_id, SyncRun.status.in_(("pending", "in-progress")))
                .values(values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ValidationError(f"Sync run {handle.run_id} is already finalized")
        view = self.get_run(handle.run_id)
        logger.info(
            "Finished %s sync run %s: %s (processed=%d, succeeded=%d, failed=%d)",
            view.kind, view.id, view.status,
            view.records_processed, view.records_succeeded, view.records_failed,
        )
        return view

    def get_run(self, run_id: int) -> SyncRunView:
        with session_scope(self._session_factory) as session:
            run = session.execute(
                select(SyncRun).options(selectinload(SyncRun.failures)).where(SyncRun.id == run_id)
            ).scalar_one_or_none()
            if run is None:
                raise ResourceNotFoundError(f"Sync run {run_id} not found")
            return SyncRunView.from_model(run)

    def last_run(self, kind: Optional[str] = None) -> Optional[SyncRunView]:
        """Most recent run, optionally for one kind. None when there is none."""
        stmt = (
            select(SyncRun)
            .options(selectinload(SyncRun.failures))
            .order_by(SyncRun.started_at.desc(), SyncRun.id.desc())
            .limit(1)
        )
        if kind:
            stmt = stmt.where(SyncRun.kind == kind)
        with session_scope(self._session_factory) as session:
            run = session.execute(stmt).scalar_one_or_none()
            return SyncRunView.from_model(run) if run else None
