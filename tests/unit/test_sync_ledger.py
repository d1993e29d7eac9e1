"""Unit tests for the sync run ledger."""
from concurrent.futures import ThreadPoolExecutor

import pytest

from directory_hub.core.exceptions import ResourceNotFoundError, ValidationError
from directory_hub.core.sync_ledger import SyncLedger


def test_start_run_is_in_progress(ledger):
    handle = ledger.start_run("carddav", metadata={"trigger": "manual"})
    run = ledger.get_run(handle.run_id)

    assert run.status == "in-progress"
    assert run.kind == "carddav"
    assert run.completed_at is None
    assert run.metadata == {"trigger": "manual"}
    assert (run.records_processed, run.records_succeeded, run.records_failed) == (0, 0, 0)


def test_unknown_kind_is_rejected(ledger):
    with pytest.raises(ValidationError):
        ledger.start_run("ldap")


def test_outcomes_are_counted_and_failures_listed(ledger):
    handle = ledger.start_run("carddav")
    ledger.record_item_outcome(handle, "contact:1", True)
    ledger.record_item_outcome(handle, "contact:2", False, "[500] PUT failed", index=2)
    ledger.record_item_outcome(handle, "contact:3", True)

    run = ledger.finish(handle, "completed")

    assert run.status == "completed"
    assert run.completed_at is not None
    assert (run.records_processed, run.records_succeeded, run.records_failed) == (3, 2, 1)
    assert run.failures == [{"row": 2, "itemRef": "contact:2", "message": "[500] PUT failed"}]


def test_failure_list_is_bounded_but_counters_are_not(session_factory):
    ledger = SyncLedger(session_factory, max_error_details=3)
    handle = ledger.start_run("mosyle")
    for i in range(1, 8):
        ledger.record_item_outcome(handle, f"device:{i}", False, "missing serial", index=i)

    run = ledger.finish(handle, "completed")

    assert run.records_failed == 7
    assert [f["row"] for f in run.failures] == [1, 2, 3]


def test_finished_run_is_immutable(ledger):
    handle = ledger.start_run("carddav")
    ledger.finish(handle, "completed")

    with pytest.raises(ValidationError):
        ledger.finish(handle, "failed")
    with pytest.raises(ValidationError):
        ledger.record_item_outcome(handle, "contact:1", True)
    assert ledger.get_run(handle.run_id).status == "completed"


def test_invalid_outcome_is_rejected(ledger):
    handle = ledger.start_run("carddav")
    with pytest.raises(ValidationError):
        ledger.finish(handle, "in-progress")


def test_finish_merges_metadata_and_detail(ledger):
    handle = ledger.start_run("carddav", metadata={"trigger": "manual"})
    run = ledger.finish(handle, "failed", detail="Sync cancelled", metadata={"cancelled": True})

    assert run.status == "failed"
    assert run.detail == "Sync cancelled"
    assert run.metadata == {"trigger": "manual", "cancelled": True}


def test_concurrent_increments_are_not_lost(ledger):
    handle = ledger.start_run("carddav")

    def record(i):
        ledger.record_item_outcome(handle, f"contact:{i}", i % 4 != 0, None if i % 4 else "boom", index=i)

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(record, range(1, 41)))

    run = ledger.finish(handle, "completed")
    assert run.records_processed == 40
    assert run.records_succeeded == 30
    assert run.records_failed == 10
    assert run.records_processed == run.records_succeeded + run.records_failed


def test_last_run_returns_most_recent_by_kind(ledger):
    assert ledger.last_run() is None

    first = ledger.start_run("carddav")
    ledger.finish(first, "completed")
    second = ledger.start_run("mosyle")
    ledger.finish(second, "failed", detail="unreachable")

    assert ledger.last_run().id == second.run_id
    assert ledger.last_run("carddav").id == first.run_id
    assert ledger.last_run("bulk-upload") is None


def test_get_run_unknown_id(ledger):
    with pytest.raises(ResourceNotFoundError):
        ledger.get_run(9999)


def test_to_dict_has_status_endpoint_shape(ledger):
    handle = ledger.start_run("carddav")
    ledger.record_item_outcome(handle, "contact:7", False, "bad email", index=1)
    body = ledger.finish(handle, "completed").to_dict()

    assert body["id"] == str(handle.run_id)
    assert body["type"] == "carddav"
    assert body["status"] == "completed"
    assert body["startedAt"].endswith("Z")
    assert body["completedAt"].endswith("Z")
    assert body["recordsFailed"] == 1
    assert body["errorDetails"] == [{"row": 1, "itemRef": "contact:7", "message": "bad email"}]
