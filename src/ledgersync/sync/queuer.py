"""
SyncQueuer — finds local rows that have never reached the provider and
queues a pending SyncRecord for each.

A row is eligible when its remote linkage column is null and it has no
pending or processing attempt for the provider already. Each call queues
at most batch_size rows, oldest first.

enqueue() never raises: read/write failures come back as an error string
on the QueueResult so the caller can keep going with other entity types.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple, Type

from sqlmodel import Session, SQLModel, select

from ledgersync.config import get_settings
from ledgersync.models.entities import Bill, Client, Invoice, Payment, Project, Vendor
from ledgersync.models.sync import EntityType, SyncRecord
from ledgersync.sync.store import add_pending, in_flight_entity_ids

logger = logging.getLogger(__name__)

# entity type → (source table, remote linkage column)
ENTITY_SOURCES: Dict[str, Tuple[Type[SQLModel], str]] = {
    EntityType.VENDOR.value: (Vendor, "qbo_vendor_id"),
    EntityType.CLIENT.value: (Client, "qbo_customer_id"),
    EntityType.PROJECT.value: (Project, "qbo_customer_id"),
    EntityType.BILL.value: (Bill, "qbo_bill_id"),
    EntityType.INVOICE.value: (Invoice, "qbo_invoice_id"),
    EntityType.PAYMENT.value: (Payment, "qbo_payment_id"),
}


class QueueError(RuntimeError):
    """Raised inside the queuer when one entity type cannot be queued."""


@dataclass
class QueueResult:
    entity_type: str
    queued: int
    error: Optional[str] = None

    def as_dict(self) -> dict:
        out = {"entityType": self.entity_type, "queued": self.queued}
        if self.error is not None:
            out["error"] = self.error
        return out


class SyncQueuer:
    """Queues pending SyncRecords for unlinked rows of one entity type."""

    def __init__(self, engine, provider: Optional[str] = None):
        self.engine = engine
        self.provider = provider or get_settings().sync_provider

    def enqueue(self, company_id: str, entity_type: str, batch_size: int) -> QueueResult:
        try:
            queued = self._enqueue(company_id, entity_type, batch_size)
        except Exception as exc:
            logger.error("Error queuing %s sync for company %s: %s", entity_type, company_id, exc)
            return QueueResult(entity_type=entity_type, queued=0, error=str(exc))

        logger.info("Queued %d %s record(s) for company %s", queued, entity_type, company_id)
        return QueueResult(entity_type=entity_type, queued=queued)

    def _enqueue(self, company_id: str, entity_type: str, batch_size: int) -> int:
        if entity_type not in ENTITY_SOURCES:
            raise QueueError(f"Unsupported entity type: {entity_type}")
        if batch_size <= 0:
            return 0

        model, linkage = ENTITY_SOURCES[entity_type]
        with Session(self.engine) as s:
            ids = s.exec(
                select(model.id)
                .where(
                    model.company_id == company_id,
                    getattr(model, linkage).is_(None),
                    model.id.not_in(in_flight_entity_ids(entity_type, self.provider)),
                )
                .order_by(model.id)
                .limit(batch_size)
            ).all()

            for entity_id in ids:
                add_pending(
                    s,
                    company_id=company_id,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    provider=self.provider,
                )
            s.commit()
        return len(ids)

    def queue_entity(
        self,
        session: Session,
        *,
        company_id: str,
        entity_type: str,
        entity_id: int,
    ) -> Optional[SyncRecord]:
        """
        Stage a pending SyncRecord for one known entity in the caller's session.

        Returns None if the entity already has an attempt in flight.
        """
        if entity_type not in ENTITY_SOURCES:
            raise QueueError(f"Unsupported entity type: {entity_type}")

        already = session.exec(
            in_flight_entity_ids(entity_type, self.provider).where(
                SyncRecord.entity_id == entity_id
            )
        ).first()
        if already is not None:
            return None
        return add_pending(
            session,
            company_id=company_id,
            entity_type=entity_type,
            entity_id=entity_id,
            provider=self.provider,
        )
