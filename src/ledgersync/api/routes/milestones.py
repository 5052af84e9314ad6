"""Milestone batch runner and manual completion routes."""
import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from ledgersync.api.deps import get_app_engine
from ledgersync.scheduler.milestones import (
    MilestoneNotFound,
    MilestoneScheduler,
    MilestoneStateError,
    complete_event_milestone,
)
from ledgersync.time_utils import to_utc_z, utcnow

logger = logging.getLogger(__name__)

router = APIRouter()


@router.api_route("/milestone-runner", methods=["GET", "POST"])
def milestone_runner(dry_run: bool = False, engine=Depends(get_app_engine)):
    """Run the milestone batch once (normally invoked by a schedule)."""
    try:
        result = MilestoneScheduler(engine).run(dry_run=dry_run)
    except Exception:
        logger.exception("milestone-runner failed")
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "message": "Milestone run failed",
                "timestamp": to_utc_z(utcnow()),
            },
        )

    return {
        "success": True,
        "message": result.message,
        "errors": result.errors,
        "timestamp": to_utc_z(utcnow()),
    }


@router.post("/milestones/{milestone_id}/complete")
def complete_milestone(milestone_id: int, engine=Depends(get_app_engine)):
    """Record that an event-based milestone's event happened."""
    try:
        milestone = complete_event_milestone(engine, milestone_id)
    except MilestoneNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except MilestoneStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return {"id": milestone.id, "status": milestone.status}
