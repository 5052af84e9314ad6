"""Tests for DB models."""
from datetime import date

import sqlalchemy.exc
import pytest
from sqlmodel import Session, select

from conftest import COMPANY, NOW, make_connection
from ledgersync.models.connection import ConnectionRecord
from ledgersync.models.entities import Bill, Invoice, Project, Vendor
from ledgersync.models.milestone import Milestone, MilestoneLog
from ledgersync.models.sync import SyncRecord, SyncTriggerLog


class TestSyncRecord:
    def test_defaults(self):
        record = SyncRecord(company_id=COMPANY, entity_type="bill", entity_id=1)
        assert record.status == "pending"
        assert record.provider == "qbo"
        assert record.retries == 0
        assert record.error_message is None
        assert record.last_synced_at is None
        assert record.created_at is not None

    def test_persists_and_retrieves_from_db(self, test_session: Session):
        test_session.add(SyncRecord(company_id=COMPANY, entity_type="vendor", entity_id=7))
        test_session.commit()

        result = test_session.exec(
            select(SyncRecord).where(SyncRecord.entity_id == 7)
        ).first()
        assert result is not None
        assert result.entity_type == "vendor"

    def test_two_terminal_rows_for_same_entity_allowed(self, test_session: Session):
        """History is append-only; only in-flight rows are unique."""
        test_session.add(SyncRecord(company_id=COMPANY, entity_type="bill", entity_id=1,
                                    status="error"))
        test_session.add(SyncRecord(company_id=COMPANY, entity_type="bill", entity_id=1,
                                    status="error"))
        test_session.add(SyncRecord(company_id=COMPANY, entity_type="bill", entity_id=1))
        test_session.commit()
        assert len(test_session.exec(select(SyncRecord)).all()) == 3

    def test_in_flight_unique_per_provider(self, test_session: Session):
        test_session.add(SyncRecord(company_id=COMPANY, entity_type="bill", entity_id=1,
                                    provider="qbo"))
        test_session.add(SyncRecord(company_id=COMPANY, entity_type="bill", entity_id=1,
                                    provider="xero"))
        test_session.commit()

        test_session.add(SyncRecord(company_id=COMPANY, entity_type="bill", entity_id=1,
                                    provider="qbo", status="processing"))
        with pytest.raises(sqlalchemy.exc.IntegrityError):
            test_session.commit()


class TestEntities:
    def test_linkage_columns_default_to_none(self):
        assert Vendor(company_id=COMPANY, name="Lumber Co").qbo_vendor_id is None
        assert Bill(company_id=COMPANY).qbo_bill_id is None
        assert Project(company_id=COMPANY, owner_id=COMPANY, name="P").qbo_customer_id is None

    def test_invoice_defaults_to_draft(self, test_session: Session):
        invoice = Invoice(company_id=COMPANY, invoice_number="INV-1", amount=100.0,
                          due_date=date(2026, 4, 14))
        test_session.add(invoice)
        test_session.commit()
        test_session.refresh(invoice)
        assert invoice.status == "draft"
        assert invoice.source_milestone_id is None


class TestMilestone:
    def test_defaults(self):
        milestone = Milestone(project_id=1, name="Deposit")
        assert milestone.due_type == "time"
        assert milestone.status == "pending"
        assert milestone.is_completed is False
        assert milestone.completed_at is None

    def test_log_is_system_generated_by_default(self):
        log = MilestoneLog(milestone_id=1, action="auto_completed")
        assert log.system_generated is True


class TestConnectionRecord:
    def test_expiry_stored_as_text(self, test_session: Session):
        record = make_connection()
        test_session.add(record)
        test_session.commit()
        test_session.refresh(record)
        assert isinstance(record.expires_at, str)
        assert record.expires_at.startswith("2026-03-15T13:00")

    def test_multiple_rows_per_owner(self, test_session: Session):
        test_session.add(make_connection(created_at=NOW))
        test_session.add(make_connection())
        test_session.commit()
        rows = test_session.exec(select(ConnectionRecord)).all()
        assert len(rows) == 2


class TestSyncTriggerLog:
    def test_persists(self, test_session: Session):
        test_session.add(SyncTriggerLog(owner_id=COMPANY, function_name="trigger-entity-sync",
                                        payload_json='{"entityType": "all"}'))
        test_session.commit()
        (row,) = test_session.exec(select(SyncTriggerLog)).all()
        assert row.created_at is not None
