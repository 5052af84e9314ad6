"""Tests for SyncQueuer selection, batching and dedupe."""
from unittest.mock import patch

import pytest
from sqlmodel import Session, select

from conftest import COMPANY, add_all
from ledgersync.models.entities import Bill, Client, Invoice, Payment, Project, Vendor
from ledgersync.models.sync import SyncRecord
from ledgersync.sync.queuer import ENTITY_SOURCES, QueueError, QueueResult, SyncQueuer
from ledgersync.sync.store import SyncRecordStore


@pytest.fixture
def queuer(engine):
    return SyncQueuer(engine, provider="qbo")


def _records(engine):
    with Session(engine) as s:
        return s.exec(select(SyncRecord).order_by(SyncRecord.id)).all()


class TestEnqueue:
    def test_queues_only_unlinked_rows(self, queuer, engine):
        bills = [Bill(company_id=COMPANY, amount=10.0 * i) for i in range(10)]
        for bill in bills[:6]:
            bill.qbo_bill_id = f"qbo-{id(bill)}"
        add_all(engine, *bills)

        result = queuer.enqueue(COMPANY, "bill", 10)

        assert result == QueueResult(entity_type="bill", queued=4)
        records = _records(engine)
        assert len(records) == 4
        assert {r.entity_id for r in records} == {b.id for b in bills[6:]}
        assert all(r.status == "pending" and r.provider == "qbo" for r in records)
        assert all(r.company_id == COMPANY and r.entity_type == "bill" for r in records)

    def test_never_exceeds_batch_size(self, queuer, engine):
        add_all(engine, *[Vendor(company_id=COMPANY, name=f"V{i}") for i in range(8)])
        result = queuer.enqueue(COMPANY, "vendor", 3)
        assert result.queued == 3
        assert len(_records(engine)) == 3

    def test_batches_oldest_first(self, queuer, engine):
        vendors = add_all(engine, *[Vendor(company_id=COMPANY, name=f"V{i}") for i in range(5)])
        queuer.enqueue(COMPANY, "vendor", 2)
        assert [r.entity_id for r in _records(engine)] == [vendors[0].id, vendors[1].id]

    def test_scoped_to_company(self, queuer, engine):
        add_all(
            engine,
            Client(company_id=COMPANY, name="Mine"),
            Client(company_id="other", name="Theirs"),
        )
        assert queuer.enqueue(COMPANY, "client", 50).queued == 1

    def test_zero_batch_queues_nothing(self, queuer, engine):
        add_all(engine, Vendor(company_id=COMPANY, name="V"))
        assert queuer.enqueue(COMPANY, "vendor", 0).queued == 0

    def test_nothing_eligible(self, queuer):
        assert queuer.enqueue(COMPANY, "payment", 50) == QueueResult("payment", 0)

    @pytest.mark.parametrize("entity_type", sorted(ENTITY_SOURCES))
    def test_every_entity_type_has_a_source(self, queuer, engine, entity_type):
        model, _ = ENTITY_SOURCES[entity_type]
        fields = {"company_id": COMPANY}
        if model in (Vendor, Client):
            fields["name"] = "n"
        elif model is Project:
            fields.update(name="p", owner_id=COMPANY)
        elif model is Invoice:
            fields["invoice_number"] = "INV-1"
        add_all(engine, model(**fields))
        assert queuer.enqueue(COMPANY, entity_type, 5).queued == 1


class TestDedupe:
    def test_second_call_does_not_duplicate_in_flight(self, queuer, engine):
        add_all(engine, *[Bill(company_id=COMPANY) for _ in range(3)])
        assert queuer.enqueue(COMPANY, "bill", 10).queued == 3
        assert queuer.enqueue(COMPANY, "bill", 10).queued == 0
        assert len(_records(engine)) == 3

    def test_processing_rows_also_block(self, queuer, engine):
        add_all(engine, Bill(company_id=COMPANY))
        queuer.enqueue(COMPANY, "bill", 10)
        SyncRecordStore(engine).mark_processing(_records(engine)[0].id)
        assert queuer.enqueue(COMPANY, "bill", 10).queued == 0

    def test_errored_entity_can_be_requeued(self, queuer, engine):
        add_all(engine, Bill(company_id=COMPANY))
        queuer.enqueue(COMPANY, "bill", 10)
        store = SyncRecordStore(engine)
        first = _records(engine)[0]
        store.mark_processing(first.id)
        store.mark_error(first.id, "vendor missing")

        assert queuer.enqueue(COMPANY, "bill", 10).queued == 1
        statuses = [r.status for r in _records(engine)]
        assert statuses == ["error", "pending"]

    def test_in_flight_rows_do_not_consume_batch(self, queuer, engine):
        add_all(engine, *[Vendor(company_id=COMPANY, name=f"V{i}") for i in range(4)])
        queuer.enqueue(COMPANY, "vendor", 2)
        assert queuer.enqueue(COMPANY, "vendor", 2).queued == 2

    def test_other_provider_does_not_block(self, engine):
        add_all(engine, Vendor(company_id=COMPANY, name="V"))
        SyncQueuer(engine, provider="xero").enqueue(COMPANY, "vendor", 10)
        assert SyncQueuer(engine, provider="qbo").enqueue(COMPANY, "vendor", 10).queued == 1


class TestErrors:
    def test_unknown_entity_type_is_returned_not_raised(self, queuer):
        result = queuer.enqueue(COMPANY, "timesheet", 10)
        assert result.queued == 0
        assert result.error == "Unsupported entity type: timesheet"

    def test_store_failure_is_returned_not_raised(self, queuer):
        with patch.object(queuer, "_enqueue", side_effect=RuntimeError("connection reset")):
            result = queuer.enqueue(COMPANY, "bill", 10)
        assert result == QueueResult("bill", 0, error="connection reset")

    def test_as_dict_omits_error_when_absent(self):
        assert QueueResult("bill", 2).as_dict() == {"entityType": "bill", "queued": 2}
        assert QueueResult("bill", 0, "boom").as_dict()["error"] == "boom"


class TestQueueEntity:
    def test_stages_in_callers_session(self, queuer, engine):
        (invoice,) = add_all(engine, Invoice(company_id=COMPANY, invoice_number="INV-9"))
        with Session(engine) as s:
            record = queuer.queue_entity(
                s, company_id=COMPANY, entity_type="invoice", entity_id=invoice.id
            )
            assert record is not None
            s.rollback()
        assert _records(engine) == []

    def test_returns_none_when_in_flight(self, queuer, engine):
        (invoice,) = add_all(engine, Invoice(company_id=COMPANY, invoice_number="INV-9"))
        queuer.enqueue(COMPANY, "invoice", 10)
        with Session(engine) as s:
            assert queuer.queue_entity(
                s, company_id=COMPANY, entity_type="invoice", entity_id=invoice.id
            ) is None

    def test_unknown_type_raises(self, queuer, engine):
        with Session(engine) as s, pytest.raises(QueueError):
            queuer.queue_entity(s, company_id=COMPANY, entity_type="nope", entity_id=1)
