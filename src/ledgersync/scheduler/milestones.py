"""
MilestoneScheduler — promotes due milestones into draft invoices.

A milestone is due when it is not completed and either
  - due_type="time" and due_date <= today, or
  - due_type="event" and a user has set status="completed".

Flow for one milestone (one transaction):
  1. Claim it: UPDATE ... SET is_completed=1 WHERE is_completed=0.
     A concurrent run that claimed it first leaves rowcount 0 and the
     milestone is skipped.
  2. Create a draft Invoice from the project's client fields.
  3. If the project owner's connection is usable, queue a pending
     SyncRecord for the invoice (best-effort).
  4. Stamp status="completed" and completed_at (part of the claim).
  5. Insert a MilestoneLog row.
  6. Insert a Notification for the project owner.
  7. Commit.

Any exception rolls that milestone back, is appended to the error list,
and the batch moves on. Only a failure to select milestones at all is
fatal (MilestoneBatchError).
"""
import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy import and_, or_, update
from sqlmodel import Session, select

from ledgersync.config import get_settings
from ledgersync.models.entities import Invoice, Project
from ledgersync.models.milestone import DueType, Milestone, MilestoneLog, Notification
from ledgersync.models.sync import EntityType
from ledgersync.sync.connection import ConnectionHealthMonitor
from ledgersync.sync.queuer import SyncQueuer
from ledgersync.time_utils import utcnow

logger = logging.getLogger(__name__)

AUTO_COMPLETED = "auto_completed"
REASON_DUE_DATE = "due_date_reached"
REASON_STATUS = "status_completed"


# ── Exceptions ────────────────────────────────────────────────────────────────

class MilestoneBatchError(RuntimeError):
    """Raised when the batch cannot start (e.g. the selection query fails)."""


class MilestoneProcessingError(RuntimeError):
    """One milestone failed; carries the id and name for the error list."""

    def __init__(self, milestone_id: int, name: str, cause: Exception):
        self.milestone_id = milestone_id
        self.name = name
        self.cause = cause
        super().__init__(f"Milestone {milestone_id} ({name}): {cause}")


class MilestoneNotFound(LookupError):
    pass


class MilestoneStateError(ValueError):
    """Raised when a manual completion is not allowed for the milestone."""


# ── Result ────────────────────────────────────────────────────────────────────

@dataclass
class MilestoneRunResult:
    processed: int = 0
    errors: List[str] = field(default_factory=list)
    skipped: int = 0  # claimed by a concurrent run
    dry_run: bool = False
    invoice_ids: List[int] = field(default_factory=list)

    @property
    def message(self) -> str:
        suffix = " (DRY RUN)" if self.dry_run else ""
        return f"Processed {self.processed} milestones{suffix}"


# ── Scheduler ─────────────────────────────────────────────────────────────────

class MilestoneScheduler:
    """Batch job turning due milestones into draft invoices."""

    def __init__(
        self,
        engine,
        *,
        monitor: Optional[ConnectionHealthMonitor] = None,
        queuer: Optional[SyncQueuer] = None,
        invoice_due_days: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Args:
            engine: SQLAlchemy engine (SQLModel create_engine result).
            monitor: Connection check gating the sync hand-off.
            queuer: Queues the new invoice for sync.
            invoice_due_days: Days from today until the invoice is due.
            clock: Returns UTC-naive "now"; tests pin it.
        """
        self.engine = engine
        self.monitor = monitor or ConnectionHealthMonitor(engine)
        self.queuer = queuer or SyncQueuer(engine)
        if invoice_due_days is None:
            invoice_due_days = get_settings().invoice_due_days
        self.invoice_due_days = invoice_due_days
        self.clock = clock

    def select_due(self, today: date) -> List[Milestone]:
        """Due, not-yet-completed milestones ordered by due date ascending."""
        with Session(self.engine) as s:
            return list(
                s.exec(
                    select(Milestone)
                    .where(
                        Milestone.is_completed == False,  # noqa: E712
                        or_(
                            and_(
                                Milestone.due_type == DueType.TIME.value,
                                Milestone.due_date <= today,
                            ),
                            and_(
                                Milestone.due_type == DueType.EVENT.value,
                                Milestone.status == "completed",
                            ),
                        ),
                    )
                    .order_by(
                        Milestone.due_date.is_(None),
                        Milestone.due_date,
                        Milestone.id,
                    )
                ).all()
            )

    def run(self, dry_run: bool = False) -> MilestoneRunResult:
        """
        Process every due milestone.

        Returns:
            MilestoneRunResult. processed counts milestones committed (or,
            in a dry run, selected with a resolvable project).

        Raises:
            MilestoneBatchError: if the due milestones cannot be selected.
        """
        now = self.clock()
        logger.info(
            "Starting milestone run%s at %s", " (DRY RUN)" if dry_run else "", now.isoformat()
        )
        try:
            milestones = self.select_due(now.date())
        except Exception as exc:
            raise MilestoneBatchError(f"Error fetching milestones: {exc}") from exc

        logger.info("Found %d milestones to process", len(milestones))
        result = MilestoneRunResult(dry_run=dry_run)

        for milestone in milestones:
            try:
                if dry_run:
                    project = self._load_project(milestone)
                    logger.info(
                        "DRY RUN: would create invoice for milestone %r (%s) on project %s "
                        "for amount %.2f",
                        milestone.name, milestone.id, project.id, milestone.amount,
                    )
                    result.processed += 1
                    continue
                invoice_id = self._process(milestone, now)
            except Exception as exc:
                err = MilestoneProcessingError(milestone.id, milestone.name, exc)
                logger.error("Error processing %s", err)
                result.errors.append(str(err))
                continue

            if invoice_id is None:
                result.skipped += 1
                continue
            result.processed += 1
            result.invoice_ids.append(invoice_id)

        logger.info(
            "Milestone run finished: %d processed, %d error(s), %d skipped",
            result.processed, len(result.errors), result.skipped,
        )
        return result

    # ─── Per-milestone steps ──────────────────────────────────────────────────

    def _process(self, milestone: Milestone, now: datetime) -> Optional[int]:
        """Run all steps for one milestone. Returns the invoice id, or None if lost the claim."""
        # Reads that open their own sessions happen before the write transaction starts.
        project = self._load_project(milestone)
        can_sync = self.monitor.is_connected(project.owner_id, now)

        with Session(self.engine) as s:
            if not self._claim(s, milestone, now):
                logger.info("Milestone %s already claimed by another run; skipping", milestone.id)
                return None

            invoice = self._create_invoice(s, milestone, project, now.date())
            sync_queued = self._forward_to_sync(s, invoice, project, can_sync)
            reason = REASON_STATUS if milestone.due_type == DueType.EVENT.value else REASON_DUE_DATE
            self._write_log(s, milestone, invoice, reason, sync_queued, now)
            self._notify(s, milestone, project, invoice, now)
            s.commit()
            logger.info("Processed milestone %s -> invoice %s", milestone.id, invoice.id)
            return invoice.id

    def _load_project(self, milestone: Milestone) -> Project:
        with Session(self.engine) as s:
            project = s.get(Project, milestone.project_id)
        if project is None:
            raise LookupError(f"Project {milestone.project_id} not found")
        return project

    def _claim(self, session: Session, milestone: Milestone, now: datetime) -> bool:
        """Compare-and-swap is_completed False → True; True if this run won."""
        result = session.connection().execute(
            update(Milestone)
            .where(
                Milestone.id == milestone.id,
                Milestone.is_completed == False,  # noqa: E712
            )
            .values(is_completed=True, status="completed", completed_at=now)
        )
        return result.rowcount == 1

    def _create_invoice(
        self, session: Session, milestone: Milestone, project: Project, today: date
    ) -> Invoice:
        invoice = Invoice(
            company_id=project.company_id,
            invoice_number=f"INV-{today:%Y%m%d}-{milestone.id}",
            client_name=project.client,
            client_email=project.contact_email or "",
            project_id=project.id,
            amount=milestone.amount,
            due_date=today + timedelta(days=self.invoice_due_days),
            status="draft",
            source_milestone_id=milestone.id,
        )
        session.add(invoice)
        session.flush()
        return invoice

    def _forward_to_sync(
        self, session: Session, invoice: Invoice, project: Project, can_sync: bool
    ) -> bool:
        """Queue the invoice for sync if the owner can push. Never fails the milestone."""
        if not can_sync:
            logger.info(
                "No usable connection for owner %s; invoice %s left for a later sync pass",
                project.owner_id, invoice.id,
            )
            return False
        try:
            record = self.queuer.queue_entity(
                session,
                company_id=project.company_id,
                entity_type=EntityType.INVOICE.value,
                entity_id=invoice.id,
            )
        except Exception as exc:
            logger.warning("Sync hand-off failed for invoice %s: %s", invoice.id, exc)
            return False
        return record is not None

    def _write_log(
        self,
        session: Session,
        milestone: Milestone,
        invoice: Invoice,
        reason: str,
        sync_queued: bool,
        now: datetime,
    ) -> None:
        session.add(MilestoneLog(
            milestone_id=milestone.id,
            action=AUTO_COMPLETED,
            system_generated=True,
            metadata_json=json.dumps({
                "invoice_id": invoice.id,
                "auto_reason": reason,
                "sync_queued": sync_queued,
            }),
            created_at=now,
        ))

    def _notify(
        self,
        session: Session,
        milestone: Milestone,
        project: Project,
        invoice: Invoice,
        now: datetime,
    ) -> None:
        session.add(Notification(
            owner_id=project.owner_id,
            project_id=project.id,
            title="Milestone Completed",
            message=(
                f'Milestone "{milestone.name}" for project "{project.name}" has been '
                "automatically completed and an invoice created."
            ),
            type="milestone",
            metadata_json=json.dumps({"milestone_id": milestone.id, "invoice_id": invoice.id}),
            created_at=now,
        ))


def complete_event_milestone(engine, milestone_id: int) -> Milestone:
    """
    Mark an event-based milestone's event as having happened.

    Only sets status="completed"; the next scheduler run creates the
    invoice and sets is_completed.

    Raises:
        MilestoneNotFound: no such milestone.
        MilestoneStateError: already completed, or not event-based.
    """
    with Session(engine) as s:
        milestone = s.get(Milestone, milestone_id)
        if milestone is None:
            raise MilestoneNotFound(f"Milestone {milestone_id} not found")
        if milestone.is_completed:
            raise MilestoneStateError("Milestone is already completed")
        if milestone.due_type != DueType.EVENT.value:
            raise MilestoneStateError("Only event-based milestones can be manually completed")

        milestone.status = "completed"
        s.add(milestone)
        s.commit()
        s.refresh(milestone)
        return milestone
