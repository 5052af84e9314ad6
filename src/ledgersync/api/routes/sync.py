"""Sync trigger, retry, statistics and connection routes."""
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlmodel import Session

from ledgersync.api.deps import get_app_engine, get_session
from ledgersync.config import get_settings
from ledgersync.models.sync import SyncTriggerLog
from ledgersync.sync.bulk import DependencyOrderedBulkTrigger, is_supported
from ledgersync.sync.connection import ConnectionHealthMonitor, ConnectionStatus
from ledgersync.sync.queuer import SyncQueuer
from ledgersync.sync.retry import RetryDispatcher
from ledgersync.sync.statistics import group_statistics, summarize
from ledgersync.sync.store import SyncRecordStore
from ledgersync.time_utils import to_utc_z, utcnow

logger = logging.getLogger(__name__)

router = APIRouter()

CONNECTION_MISSING = "QBO connection not found or disconnected"


class TriggerSyncRequest(BaseModel):
    company_id: str = Field(alias="companyId")
    entity_type: str = Field(alias="entityType")
    batch_size: Optional[int] = Field(default=None, alias="batchSize", ge=1)

    class Config:
        populate_by_name = True


class RetryRequest(BaseModel):
    company_id: str = Field(alias="companyId")
    entity_type: Optional[str] = Field(default=None, alias="entityType")
    wait: bool = False  # poll SyncRecords until the retried work settles

    class Config:
        populate_by_name = True


def get_retry_dispatcher(engine=Depends(get_app_engine)) -> RetryDispatcher:
    return RetryDispatcher(store=SyncRecordStore(engine))


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@router.post("/trigger-entity-sync")
def trigger_entity_sync(
    request: TriggerSyncRequest,
    engine=Depends(get_app_engine),
    session: Session = Depends(get_session),
):
    """Queue unlinked records of one entity type, or of all types in dependency order."""
    batch_size = request.batch_size or get_settings().default_batch_size
    logger.info(
        "Trigger sync request: company=%s entity_type=%s batch_size=%d",
        request.company_id, request.entity_type, batch_size,
    )
    try:
        connection = ConnectionHealthMonitor(engine).latest_record(request.company_id)
        if connection is None:
            logger.error("QBO connection check failed for %s", request.company_id)
            return _error(400, CONNECTION_MISSING)
        if not is_supported(request.entity_type):
            return _error(400, f"Unsupported entity type: {request.entity_type}")

        trigger = DependencyOrderedBulkTrigger(SyncQueuer(engine))
        bulk = trigger.trigger_entity_sync(request.company_id, request.entity_type, batch_size)

        session.add(SyncTriggerLog(
            owner_id=connection.owner_id,
            function_name="trigger-entity-sync",
            payload_json=json.dumps({
                "entityType": request.entity_type,
                "batchSize": batch_size,
                "companyId": request.company_id,
            }),
        ))
        session.commit()
    except Exception as exc:
        logger.exception("Manual sync trigger error")
        return _error(500, str(exc))

    return {
        "success": True,
        "entityType": request.entity_type,
        "results": [r.as_dict() for r in bulk.results],
        "totalQueued": bulk.total_queued,
    }


@router.post("/sync/retry")
async def retry_failed_syncs(
    request: RetryRequest,
    engine=Depends(get_app_engine),
    dispatcher: RetryDispatcher = Depends(get_retry_dispatcher),
):
    """Dispatch provider retries; with wait=true, also report whether the work settled."""
    status = ConnectionHealthMonitor(engine).check_connection(request.company_id)
    if status is not ConnectionStatus.CONNECTED:
        return _error(400, f"QBO connection is {status.value}")

    if not request.wait:
        results = await dispatcher.retry_failed_syncs(request.entity_type)
        return {"results": [r.as_dict() for r in results]}

    outcome = await dispatcher.retry_and_wait(request.company_id, request.entity_type)
    return {
        "results": [r.as_dict() for r in outcome.results],
        "settled": outcome.settled,
        "totals": outcome.summary.totals.as_dict(),
        "successRate": outcome.summary.success_rate,
    }


@router.get("/sync/statistics")
def sync_statistics(
    company_id: str = Query(alias="companyId"),
    latest_only: bool = Query(default=False, alias="latestOnly"),
    engine=Depends(get_app_engine),
):
    """
    Aggregated sync counts for a company.

    latest_only counts only the current attempt per entity instead of
    every attempt ever made.
    """
    store = SyncRecordStore(engine)
    records = store.latest(company_id) if latest_only else store.snapshot(company_id)
    summary = summarize(records)
    return {
        "statistics": [
            {
                "entityType": stat.entity_type,
                "provider": stat.provider,
                "totalCount": stat.total_count,
                "successCount": stat.success_count,
                "errorCount": stat.error_count,
                "pendingCount": stat.pending_count,
                "processingCount": stat.processing_count,
                "lastSyncDate": to_utc_z(stat.last_sync_date),
            }
            for stat in group_statistics(records)
        ],
        "totals": summary.totals.as_dict(),
        "byEntityType": {k: v.as_dict() for k, v in summary.by_entity_type.items()},
        "successRate": summary.success_rate,
        "generatedAt": to_utc_z(utcnow()),
    }


@router.get("/sync/connection")
def connection_status(owner_id: str = Query(alias="ownerId"), engine=Depends(get_app_engine)):
    return ConnectionHealthMonitor(engine).connection_health(owner_id)


@router.delete("/sync/connection")
def disconnect(owner_id: str = Query(alias="ownerId"), engine=Depends(get_app_engine)):
    return {"deleted": ConnectionHealthMonitor(engine).disconnect(owner_id)}
