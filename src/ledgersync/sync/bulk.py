"""
Dependency-ordered bulk queuing across all entity types.

Dependents reference remotely-created parents (a bill needs its vendor
and project, a payment its invoice or bill), so entity types are queued
in a topological order of ENTITY_DEPENDENCIES:

    vendor, client, project, bill, invoice, payment

Ordering only decides which type is queued first. It does not wait for
the parent's remote creation to finish before queuing the dependent.

By default a failed type is recorded and the run continues with the rest.
With halt_on_upstream_error, every type that depends (directly or
transitively) on a failed type is skipped instead.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from ledgersync.config import get_settings
from ledgersync.models.sync import EntityType
from ledgersync.sync.queuer import ENTITY_SOURCES, QueueResult, SyncQueuer

logger = logging.getLogger(__name__)

ALL_ENTITY_TYPES = "all"

# Tie-break order among types whose dependencies are satisfied.
_PRIORITY: Tuple[str, ...] = tuple(e.value for e in EntityType)

ENTITY_DEPENDENCIES: Dict[str, Tuple[str, ...]] = {
    EntityType.VENDOR.value: (),
    EntityType.CLIENT.value: (),
    EntityType.PROJECT.value: (EntityType.CLIENT.value,),
    EntityType.BILL.value: (EntityType.VENDOR.value, EntityType.PROJECT.value),
    EntityType.INVOICE.value: (EntityType.CLIENT.value, EntityType.PROJECT.value),
    EntityType.PAYMENT.value: (EntityType.BILL.value, EntityType.INVOICE.value),
}


class DependencyCycleError(ValueError):
    """Raised when the dependency map cannot be ordered."""


def dependency_order(dependencies: Optional[Dict[str, Tuple[str, ...]]] = None) -> List[str]:
    """Topologically sort entity types, taking the highest-priority ready type each step."""
    deps = dependencies if dependencies is not None else ENTITY_DEPENDENCIES
    remaining = {name: set(parents) for name, parents in deps.items()}
    rank = {name: i for i, name in enumerate(_PRIORITY)}
    order: List[str] = []

    while remaining:
        ready = [name for name, parents in remaining.items() if not parents]
        if not ready:
            raise DependencyCycleError(
                f"Dependency cycle among: {', '.join(sorted(remaining))}"
            )
        nxt = min(ready, key=lambda name: (rank.get(name, len(rank)), name))
        order.append(nxt)
        del remaining[nxt]
        for parents in remaining.values():
            parents.discard(nxt)
    return order


def downstream_of(entity_type: str, dependencies: Optional[Dict[str, Tuple[str, ...]]] = None) -> List[str]:
    """Every type that depends on entity_type, directly or transitively."""
    deps = dependencies if dependencies is not None else ENTITY_DEPENDENCIES
    found: List[str] = []
    frontier = [entity_type]
    while frontier:
        current = frontier.pop()
        for name, parents in deps.items():
            if current in parents and name not in found:
                found.append(name)
                frontier.append(name)
    return found


@dataclass
class BulkSyncResult:
    results: List[QueueResult] = field(default_factory=list)

    @property
    def total_queued(self) -> int:
        return sum(r.queued for r in self.results)

    @property
    def failed(self) -> List[QueueResult]:
        return [r for r in self.results if r.error is not None]


class DependencyOrderedBulkTrigger:
    """Drives SyncQueuer across every entity type in dependency order."""

    def __init__(self, queuer: SyncQueuer, halt_on_upstream_error: Optional[bool] = None):
        self.queuer = queuer
        if halt_on_upstream_error is None:
            halt_on_upstream_error = get_settings().halt_on_upstream_error
        self.halt_on_upstream_error = halt_on_upstream_error

    def trigger_bulk_sync(self, company_id: str, batch_size: int) -> BulkSyncResult:
        bulk = BulkSyncResult()
        blocked: Dict[str, str] = {}  # skipped type → failed ancestor

        for entity_type in dependency_order():
            if entity_type in blocked:
                bulk.results.append(QueueResult(
                    entity_type=entity_type,
                    queued=0,
                    error=f"skipped: upstream {blocked[entity_type]} failed",
                ))
                continue

            result = self.queuer.enqueue(company_id, entity_type, batch_size)
            bulk.results.append(result)

            if result.error is not None and self.halt_on_upstream_error:
                for child in downstream_of(entity_type):
                    blocked.setdefault(child, entity_type)

        logger.info(
            "Bulk sync for company %s queued %d record(s), %d type(s) failed",
            company_id, bulk.total_queued, len(bulk.failed),
        )
        return bulk

    def trigger_entity_sync(self, company_id: str, entity_type: str, batch_size: int) -> BulkSyncResult:
        """Queue one entity type, or every type in order when entity_type is "all"."""
        if entity_type == ALL_ENTITY_TYPES:
            return self.trigger_bulk_sync(company_id, batch_size)
        return BulkSyncResult(results=[self.queuer.enqueue(company_id, entity_type, batch_size)])


def is_supported(entity_type: str) -> bool:
    return entity_type == ALL_ENTITY_TYPES or entity_type in ENTITY_SOURCES
