"""End-to-end: milestone → invoice → sync queue → worker outcome → statistics."""
from datetime import timedelta

import pytest
from sqlmodel import Session, select

from conftest import COMPANY, NOW, TODAY, add_all, make_connection, make_milestone
from ledgersync.models.entities import Bill, Vendor
from ledgersync.models.sync import SyncRecord
from ledgersync.scheduler.milestones import MilestoneScheduler
from ledgersync.sync.bulk import DependencyOrderedBulkTrigger
from ledgersync.sync.connection import ConnectionHealthMonitor
from ledgersync.sync.queuer import SyncQueuer
from ledgersync.sync.statistics import summarize
from ledgersync.sync.store import SyncRecordStore


@pytest.fixture(name="store")
def store_fixture(engine):
    return SyncRecordStore(engine)


def test_milestone_invoice_is_synced_once(engine, project, store):
    add_all(engine, make_connection(owner_id=project.owner_id))
    add_all(engine, make_milestone(project.id, "Deposit", due_date=TODAY - timedelta(days=1)))

    result = MilestoneScheduler(engine, invoice_due_days=30, clock=lambda: NOW).run()
    assert result.processed == 1

    # Bulk pass right after must not double-queue the same invoice
    bulk = DependencyOrderedBulkTrigger(SyncQueuer(engine), halt_on_upstream_error=False)
    queued = bulk.trigger_entity_sync(COMPANY, "invoice", 50)
    assert queued.total_queued == 0

    (record,) = store.snapshot(COMPANY)
    store.mark_processing(record.id)
    store.mark_success(record.id, provider_ref="QB-INV-88")

    summary = summarize(store.latest(COMPANY))
    assert summary.totals.success == 1
    assert summary.success_rate == 100


def test_failed_attempt_can_be_requeued(engine, store):
    (vendor,) = add_all(engine, Vendor(company_id=COMPANY, name="Lumber Co"))
    queuer = SyncQueuer(engine)

    assert queuer.enqueue(COMPANY, "vendor", 10).queued == 1
    # Still in flight, nothing new to queue
    assert queuer.enqueue(COMPANY, "vendor", 10).queued == 0

    (first,) = store.snapshot(COMPANY)
    store.mark_processing(first.id)
    store.mark_error(first.id, "Duplicate Name Exists Error")

    assert queuer.enqueue(COMPANY, "vendor", 10).queued == 1
    rows = store.snapshot(COMPANY)
    assert [r.status for r in rows] == ["error", "pending"]
    assert {r.entity_id for r in rows} == {vendor.id}

    every = summarize(rows)
    current = summarize(store.latest(COMPANY))
    assert every.totals.total == 2
    assert current.totals.total == 1
    assert current.totals.pending == 1


def test_bulk_sync_for_connected_owners(engine):
    add_all(engine, make_connection(owner_id=COMPANY))
    add_all(engine, make_connection(owner_id="stale", expires_in=timedelta(minutes=-5)))
    add_all(engine, Vendor(company_id=COMPANY, name="Lumber Co"),
            Vendor(company_id="stale", name="Concrete Inc"),
            Bill(company_id=COMPANY, amount=120.0))

    owners = ConnectionHealthMonitor(engine).connected_owner_ids(NOW)
    assert owners == [COMPANY]

    trigger = DependencyOrderedBulkTrigger(SyncQueuer(engine), halt_on_upstream_error=True)
    bulk = trigger.trigger_bulk_sync(owners[0], 50)

    assert bulk.total_queued == 2
    assert bulk.failed == []
    with Session(engine) as s:
        types = [r.entity_type for r in s.exec(select(SyncRecord).order_by(SyncRecord.id)).all()]
    assert types == ["vendor", "bill"]
