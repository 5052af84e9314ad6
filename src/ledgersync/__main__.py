"""
Main entrypoint.

Usage:
    python -m ledgersync                          # starts the APScheduler jobs
    python -m ledgersync run-milestones [--dry-run]
    python -m ledgersync sync COMPANY_ID [ENTITY_TYPE] [--batch-size N]
    uvicorn ledgersync.api.main:app --host 0.0.0.0 --port 8000  # starts API
"""
import argparse
import asyncio
import logging
import sys

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


def _run_milestones(dry_run: bool) -> int:
    from ledgersync.db.engine import get_engine
    from ledgersync.scheduler.milestones import MilestoneBatchError, MilestoneScheduler

    try:
        result = MilestoneScheduler(get_engine()).run(dry_run=dry_run)
    except MilestoneBatchError as exc:
        logger.error("%s", exc)
        return 1
    for err in result.errors:
        logger.warning("%s", err)
    logger.info(result.message)
    return 1 if result.errors else 0


def _run_sync(company_id: str, entity_type: str, batch_size: int) -> int:
    from ledgersync.db.engine import get_engine
    from ledgersync.sync.bulk import DependencyOrderedBulkTrigger, is_supported
    from ledgersync.sync.queuer import SyncQueuer

    if not is_supported(entity_type):
        logger.error("Unsupported entity type: %s", entity_type)
        return 2
    trigger = DependencyOrderedBulkTrigger(SyncQueuer(get_engine()))
    bulk = trigger.trigger_entity_sync(company_id, entity_type, batch_size)
    for r in bulk.results:
        if r.error:
            logger.warning("%s: %s", r.entity_type, r.error)
        else:
            logger.info("%s: queued %d", r.entity_type, r.queued)
    logger.info("Total queued: %d", bulk.total_queued)
    return 1 if bulk.failed else 0


async def _run_scheduler() -> None:
    from ledgersync.config import get_settings
    from ledgersync.db.engine import get_engine
    from ledgersync.scheduler.jobs import build_scheduler

    settings = get_settings()
    scheduler = build_scheduler(get_engine())
    scheduler.start()
    logger.info(
        "Scheduler started (milestone runner at %02d:00 UTC, bulk sync every %d min)",
        settings.milestone_runner_hour,
        settings.bulk_sync_interval_minutes,
    )
    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Shutting down...")
    finally:
        scheduler.shutdown()


def main(argv=None) -> int:
    from ledgersync.config import get_settings

    parser = argparse.ArgumentParser(prog="ledgersync")
    sub = parser.add_subparsers(dest="command")

    runner = sub.add_parser("run-milestones", help="promote due milestones into invoices")
    runner.add_argument("--dry-run", action="store_true")

    sync = sub.add_parser("sync", help="queue unlinked records for sync")
    sync.add_argument("company_id")
    sync.add_argument("entity_type", nargs="?", default="all")
    sync.add_argument("--batch-size", type=int, default=get_settings().default_batch_size)

    args = parser.parse_args(argv)
    if args.command == "run-milestones":
        return _run_milestones(args.dry_run)
    if args.command == "sync":
        return _run_sync(args.company_id, args.entity_type, args.batch_size)
    asyncio.run(_run_scheduler())
    return 0


if __name__ == "__main__":
    sys.exit(main())
