"""
Sync statistics read model.

Pure functions from a snapshot of SyncRecord rows (already scoped to one
company) to aggregated counts. Nothing here touches the database: callers
load a snapshot through SyncRecordStore and recompute on every pull.

Records only need entity_type, entity_id, provider, status and
last_synced_at attributes, so plain objects work as well as ORM rows.
"""
import math
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple


@dataclass
class EntityStats:
    total: int = 0
    success: int = 0
    error: int = 0
    pending: int = 0
    processing: int = 0

    def add(self, other: "EntityStats") -> None:
        self.total += other.total
        self.success += other.success
        self.error += other.error
        self.pending += other.pending
        self.processing += other.processing

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class SyncStatistics:
    """Counts for one (entity_type, provider) group."""
    entity_type: str
    provider: str
    total_count: int = 0
    success_count: int = 0
    error_count: int = 0
    pending_count: int = 0
    processing_count: int = 0
    last_sync_date: Optional[datetime] = None

    def as_stats(self) -> EntityStats:
        return EntityStats(
            total=self.total_count,
            success=self.success_count,
            error=self.error_count,
            pending=self.pending_count,
            processing=self.processing_count,
        )


@dataclass
class SyncSummary:
    totals: EntityStats
    by_entity_type: Dict[str, EntityStats] = field(default_factory=dict)
    success_rate: int = 0


def group_statistics(records: Iterable[Any]) -> List[SyncStatistics]:
    """
    Count records per (entity_type, provider), in first-seen order.

    A status outside the four known values still counts toward total_count.
    """
    groups: Dict[Tuple[str, str], SyncStatistics] = {}
    for record in records:
        key = (record.entity_type, record.provider)
        stat = groups.get(key)
        if stat is None:
            stat = groups[key] = SyncStatistics(
                entity_type=record.entity_type, provider=record.provider
            )

        stat.total_count += 1
        if record.status == "success":
            stat.success_count += 1
        elif record.status == "error":
            stat.error_count += 1
        elif record.status == "pending":
            stat.pending_count += 1
        elif record.status == "processing":
            stat.processing_count += 1

        synced = getattr(record, "last_synced_at", None)
        if synced and (stat.last_sync_date is None or synced > stat.last_sync_date):
            stat.last_sync_date = synced

    return list(groups.values())


def compute_totals(records: Iterable[Any]) -> EntityStats:
    """Sum every (entity_type, provider) group into one EntityStats."""
    totals = EntityStats()
    for stat in group_statistics(records):
        totals.add(stat.as_stats())
    return totals


def compute_by_entity_type(records: Iterable[Any]) -> Dict[str, EntityStats]:
    """Same sums as compute_totals, grouped by entity type with providers merged."""
    by_type: Dict[str, EntityStats] = {}
    for stat in group_statistics(records):
        by_type.setdefault(stat.entity_type, EntityStats()).add(stat.as_stats())
    return by_type


def success_rate(success: int, total: int) -> int:
    """Percentage of successful attempts, halves rounded up; 0 when total is 0."""
    if total == 0:
        return 0
    return int(math.floor(success / total * 100 + 0.5))


def latest_per_entity(records: Iterable[Any]) -> List[Any]:
    """
    Keep only the latest row per (entity_type, entity_id, provider).

    "Latest" is the highest id, the same rule SyncRecordStore.latest()
    applies in SQL; rows are append-only so id order is insertion order.
    Output keeps the order in which each key was first seen.
    """
    latest: Dict[Tuple[str, Any, str], Any] = {}
    for record in records:
        key = (record.entity_type, record.entity_id, record.provider)
        current = latest.get(key)
        if current is None or (record.id or 0) > (current.id or 0):
            latest[key] = record
    return list(latest.values())


def summarize(records: Iterable[Any]) -> SyncSummary:
    rows = list(records)
    totals = compute_totals(rows)
    return SyncSummary(
        totals=totals,
        by_entity_type=compute_by_entity_type(rows),
        success_rate=success_rate(totals.success, totals.total),
    )
