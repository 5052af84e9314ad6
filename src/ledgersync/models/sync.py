"""Sync attempt rows and the manual-trigger audit log."""
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Index, text
from sqlmodel import Field, SQLModel

from ledgersync.time_utils import utcnow


class EntityType(str, Enum):
    VENDOR = "vendor"
    CLIENT = "client"
    PROJECT = "project"
    BILL = "bill"
    INVOICE = "invoice"
    PAYMENT = "payment"


class SyncStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    ERROR = "error"


TERMINAL_STATUSES = (SyncStatus.SUCCESS.value, SyncStatus.ERROR.value)
IN_FLIGHT_STATUSES = (SyncStatus.PENDING.value, SyncStatus.PROCESSING.value)

_IN_FLIGHT_WHERE = text("status IN ('pending', 'processing')")


class SyncRecord(SQLModel, table=True):
    """
    One sync attempt for one local entity against one provider.

    Rows are append-only history: a retry produces a new row rather than
    rewriting an old one. The current status of an entity is its latest
    row per (entity_type, entity_id, provider).
    """

    __table_args__ = (
        Index(
            "ix_syncrecord_latest",
            "company_id", "entity_type", "entity_id", "provider", "created_at",
        ),
        # At most one in-flight attempt per entity and provider
        Index(
            "ux_syncrecord_in_flight",
            "entity_type", "entity_id", "provider",
            unique=True,
            sqlite_where=_IN_FLIGHT_WHERE,
            postgresql_where=_IN_FLIGHT_WHERE,
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    company_id: str = Field(index=True)
    entity_type: str  # EntityType value
    entity_id: int
    provider: str = "qbo"
    status: str = SyncStatus.PENDING.value
    error_message: Optional[str] = None
    provider_ref: Optional[str] = None  # remote id once pushed
    retries: int = 0
    last_synced_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None


class SyncTriggerLog(SQLModel, table=True):
    """Append-only audit row for each manual sync trigger call."""

    id: Optional[int] = Field(default=None, primary_key=True)
    owner_id: str = Field(index=True)
    function_name: str
    payload_json: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
