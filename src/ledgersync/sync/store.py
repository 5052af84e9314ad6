"""
SyncRecordStore — data access for SyncRecord rows.

Rows are append-only: the store inserts pending attempts and advances
their status, but never deletes a row or moves it backwards. The legal
transitions are:

    pending -> processing -> success
                          -> error

Re-trying an errored entity means inserting a new pending row; the old
error row stays as history.
"""
import asyncio
import logging
import time
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func
from sqlmodel import Session, select

from ledgersync.models.sync import IN_FLIGHT_STATUSES, SyncRecord, SyncStatus
from ledgersync.time_utils import utcnow

logger = logging.getLogger(__name__)

# (entity_type, entity_id, provider)
EntityKey = Tuple[str, int, str]


def entity_key(record: SyncRecord) -> EntityKey:
    return (record.entity_type, record.entity_id, record.provider)


_TRANSITIONS = {
    SyncStatus.PENDING.value: {SyncStatus.PROCESSING.value},
    SyncStatus.PROCESSING.value: {SyncStatus.SUCCESS.value, SyncStatus.ERROR.value},
}


class InvalidSyncTransition(ValueError):
    """Raised when a status write would move a SyncRecord backwards or sideways."""


class SyncRecordNotFound(LookupError):
    """Raised when a status write targets a missing SyncRecord."""


def in_flight_entity_ids(entity_type: str, provider: str):
    """Subquery of entity ids with a pending or processing attempt."""
    return select(SyncRecord.entity_id).where(
        SyncRecord.entity_type == entity_type,
        SyncRecord.provider == provider,
        SyncRecord.status.in_(IN_FLIGHT_STATUSES),
    )


def add_pending(
    session: Session,
    *,
    company_id: str,
    entity_type: str,
    entity_id: int,
    provider: str,
) -> SyncRecord:
    """Stage a new pending attempt in the caller's transaction."""
    record = SyncRecord(
        company_id=company_id,
        entity_type=entity_type,
        entity_id=entity_id,
        provider=provider,
        status=SyncStatus.PENDING.value,
        created_at=utcnow(),
    )
    session.add(record)
    return record


class SyncRecordStore:
    """Reads and status writes for SyncRecord rows."""

    def __init__(self, engine):
        self.engine = engine

    # ─── Status writes (the push mechanism's contract) ───────────────────────

    def mark_processing(self, record_id: int) -> SyncRecord:
        return self._transition(record_id, SyncStatus.PROCESSING.value)

    def mark_success(self, record_id: int, provider_ref: Optional[str] = None) -> SyncRecord:
        return self._transition(
            record_id, SyncStatus.SUCCESS.value, provider_ref=provider_ref
        )

    def mark_error(self, record_id: int, error_message: str) -> SyncRecord:
        return self._transition(
            record_id, SyncStatus.ERROR.value, error_message=error_message
        )

    def _transition(
        self,
        record_id: int,
        status: str,
        *,
        provider_ref: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> SyncRecord:
        with Session(self.engine) as s:
            record = s.get(SyncRecord, record_id)
            if record is None:
                raise SyncRecordNotFound(f"SyncRecord {record_id} not found")
            if status not in _TRANSITIONS.get(record.status, set()):
                raise InvalidSyncTransition(
                    f"SyncRecord {record_id}: {record.status} -> {status} is not allowed"
                )
            now = utcnow()
            record.status = status
            record.updated_at = now
            if status in (SyncStatus.SUCCESS.value, SyncStatus.ERROR.value):
                record.last_synced_at = now
            if provider_ref is not None:
                record.provider_ref = provider_ref
            if error_message is not None:
                record.error_message = error_message
            s.add(record)
            s.commit()
            s.refresh(record)
            logger.debug("SyncRecord %s -> %s", record_id, status)
            return record

    # ─── Reads ───────────────────────────────────────────────────────────────

    def snapshot(self, company_id: str) -> List[SyncRecord]:
        """Every row for the company, oldest first."""
        with Session(self.engine) as s:
            return list(
                s.exec(
                    select(SyncRecord)
                    .where(SyncRecord.company_id == company_id)
                    .order_by(SyncRecord.id)
                ).all()
            )

    def latest(
        self,
        company_id: str,
        entity_types: Optional[Iterable[str]] = None,
    ) -> List[SyncRecord]:
        """Latest row (highest id) per (entity_type, entity_id, provider) for the company."""
        latest_ids = select(func.max(SyncRecord.id)).where(
            SyncRecord.company_id == company_id
        )
        if entity_types is not None:
            latest_ids = latest_ids.where(SyncRecord.entity_type.in_(list(entity_types)))
        latest_ids = latest_ids.group_by(
            SyncRecord.entity_type, SyncRecord.entity_id, SyncRecord.provider
        )
        with Session(self.engine) as s:
            return list(
                s.exec(
                    select(SyncRecord)
                    .where(SyncRecord.id.in_(latest_ids))
                    .order_by(SyncRecord.id)
                ).all()
            )

    def count_in_flight(
        self,
        company_id: str,
        entity_types: Optional[Iterable[str]] = None,
    ) -> int:
        return sum(
            1
            for r in self.latest(company_id, entity_types)
            if r.status in IN_FLIGHT_STATUSES
        )

    def unfinished(
        self,
        company_id: str,
        entity_types: Optional[Iterable[str]] = None,
    ) -> Dict[EntityKey, SyncRecord]:
        """Latest row per entity whose status is not success (errored or in flight)."""
        return {
            entity_key(r): r
            for r in self.latest(company_id, entity_types)
            if r.status != SyncStatus.SUCCESS.value
        }

    def count_unsettled(
        self,
        company_id: str,
        baseline: Dict[EntityKey, SyncRecord],
        entity_types: Optional[Iterable[str]] = None,
    ) -> int:
        """
        Entities still waiting on retried work relative to a baseline.

        An entity whose baseline row was an error counts until a newer row
        for it reaches a terminal status. One that was in flight counts
        until its latest row is terminal. Attempts started after the
        baseline count while they are in flight.
        """
        current = {entity_key(r): r for r in self.latest(company_id, entity_types)}
        remaining = 0
        for key, before in baseline.items():
            row = current.get(key)
            if row is None or row.status in IN_FLIGHT_STATUSES:
                remaining += 1
            elif before.status == SyncStatus.ERROR.value and row.id == before.id:
                remaining += 1
        remaining += sum(
            1
            for key, row in current.items()
            if key not in baseline and row.status in IN_FLIGHT_STATUSES
        )
        return remaining

    async def wait_until_settled(
        self,
        company_id: str,
        entity_types: Optional[Iterable[str]] = None,
        *,
        baseline: Optional[Dict[EntityKey, SyncRecord]] = None,
        timeout: float = 30.0,
        poll_interval: float = 2.0,
    ) -> bool:
        """
        Poll until the given entity types have no outstanding work.

        Without a baseline, outstanding means an in-flight latest row. With
        one (from unfinished(), taken before work was requested), errored
        entities must also have been superseded by a newer terminal row.

        Returns:
            True once settled, False if the timeout elapsed first.
        """
        types = list(entity_types) if entity_types is not None else None
        deadline = time.monotonic() + timeout
        while True:
            if baseline is None:
                remaining = self.count_in_flight(company_id, types)
            else:
                remaining = self.count_unsettled(company_id, baseline, types)
            if remaining == 0:
                return True
            if time.monotonic() >= deadline:
                logger.info(
                    "Sync for company %s not settled after %.1fs (%d outstanding)",
                    company_id, timeout, remaining,
                )
                return False
            await asyncio.sleep(poll_interval)
