"""Project milestones, their audit log, and owner notifications."""
from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlmodel import Field, SQLModel

from ledgersync.time_utils import utcnow


class DueType(str, Enum):
    TIME = "time"
    EVENT = "event"


class Milestone(SQLModel, table=True):
    """
    A contractual payment trigger on a project.

    Time-based milestones fall due on due_date; event-based ones when a
    user marks status="completed". Terminal once is_completed is True.
    """

    id: Optional[int] = Field(default=None, primary_key=True)
    project_id: int = Field(foreign_key="project.id", index=True)
    name: str
    due_type: str = DueType.TIME.value
    due_date: Optional[date] = None
    amount: float = 0.0
    percentage: Optional[float] = None
    is_completed: bool = Field(default=False, index=True)
    status: str = "pending"  # "pending", "completed"
    completed_at: Optional[datetime] = None


class MilestoneLog(SQLModel, table=True):
    """Immutable audit row, one per completion."""

    id: Optional[int] = Field(default=None, primary_key=True)
    milestone_id: int = Field(foreign_key="milestone.id", index=True)
    action: str  # "auto_completed"
    metadata_json: Optional[str] = None  # {"invoice_id", "auto_reason", "sync_queued"}
    system_generated: bool = True
    created_at: datetime = Field(default_factory=utcnow)


class Notification(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    owner_id: str = Field(index=True)
    project_id: Optional[int] = Field(default=None, foreign_key="project.id")
    title: str
    message: str
    type: str = "milestone"
    read: bool = False
    metadata_json: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
