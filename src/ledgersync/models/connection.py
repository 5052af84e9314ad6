"""Stored OAuth credentials for the accounting provider."""
from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from ledgersync.time_utils import utcnow


class ConnectionRecord(SQLModel, table=True):
    """
    One OAuth grant for an owner. The latest row by created_at is the
    effective one; disconnecting deletes the owner's rows.
    """

    id: Optional[int] = Field(default=None, primary_key=True)
    owner_id: str = Field(index=True)
    realm_id: Optional[str] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[str] = None  # ISO-8601 as written by the OAuth callback
    created_at: datetime = Field(default_factory=utcnow)
