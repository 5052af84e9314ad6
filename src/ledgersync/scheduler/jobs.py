"""
APScheduler jobs for the sync engine.

  milestone_runner  daily cron: promote due milestones into invoices.
  bulk_sync         interval: queue unlinked records for every owner whose
                    connection is usable, in dependency order.

Both jobs are stateless batch runs. Overlapping runs are not prevented;
the milestone claim and the in-flight SyncRecord index keep them from
double-processing.
"""
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from ledgersync.config import get_settings
from ledgersync.time_utils import utcnow

logger = logging.getLogger(__name__)


def build_scheduler(engine) -> AsyncIOScheduler:
    """
    Create and configure the APScheduler.

    Args:
        engine: SQLAlchemy engine passed to each job.

    Returns:
        Configured AsyncIOScheduler (not yet started).
    """
    settings = get_settings()
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        _milestone_runner,
        trigger="cron",
        hour=settings.milestone_runner_hour,
        minute=0,
        id="milestone_runner",
        replace_existing=True,
        kwargs={"engine": engine},
    )
    scheduler.add_job(
        _bulk_sync,
        trigger="interval",
        minutes=settings.bulk_sync_interval_minutes,
        id="bulk_sync",
        replace_existing=True,
        kwargs={"engine": engine},
    )

    return scheduler


async def _milestone_runner(engine) -> None:
    """Scheduled milestone run. Never raises, so the scheduler stays alive."""
    from ledgersync.scheduler.milestones import MilestoneScheduler

    logger.info("Milestone runner starting at %s", utcnow().isoformat())
    try:
        result = MilestoneScheduler(engine).run(dry_run=False)
        for err in result.errors:
            logger.warning("Milestone runner: %s", err)
        logger.info("Milestone runner: %s", result.message)
    except Exception as exc:
        logger.error("Milestone runner failed: %s", exc)


async def _bulk_sync(engine) -> None:
    """Queue pending syncs for every connected owner. Never raises."""
    from ledgersync.sync.bulk import DependencyOrderedBulkTrigger
    from ledgersync.sync.connection import ConnectionHealthMonitor
    from ledgersync.sync.queuer import SyncQueuer

    settings = get_settings()
    try:
        owners = ConnectionHealthMonitor(engine).connected_owner_ids()
        trigger = DependencyOrderedBulkTrigger(SyncQueuer(engine))
        for owner_id in owners:
            bulk = trigger.trigger_bulk_sync(owner_id, settings.default_batch_size)
            logger.info("Bulk sync for %s queued %d record(s)", owner_id, bulk.total_queued)
    except Exception as exc:
        logger.error("Bulk sync failed: %s", exc)
