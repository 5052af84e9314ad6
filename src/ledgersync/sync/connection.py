"""
Connection health for the accounting provider.

The effective credential for an owner is their most recent
ConnectionRecord. Status is derived from it as follows:

    no record                              → not_connected
    no refresh token / unparsable expiry   → needs_reauth
    expires_at >  now + grace window       → connected
    expires_at <= now + grace window       → needs_reauth

The grace window (five minutes by default) makes callers refresh early
rather than push with a token that lapses mid-request.
"""
import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from sqlmodel import Session, select

from ledgersync.config import get_settings
from ledgersync.models.connection import ConnectionRecord
from ledgersync.time_utils import parse_iso_datetime, utcnow

logger = logging.getLogger(__name__)


class ConnectionStatus(str, Enum):
    CONNECTED = "connected"
    NEEDS_REAUTH = "needs_reauth"
    NOT_CONNECTED = "not_connected"
    ERROR = "error"


def evaluate_connection(
    record: Optional[ConnectionRecord],
    now: datetime,
    grace: timedelta,
) -> ConnectionStatus:
    """Derive a status from one (possibly missing) record. Pure."""
    if record is None:
        return ConnectionStatus.NOT_CONNECTED
    if not record.refresh_token:
        return ConnectionStatus.NEEDS_REAUTH
    try:
        expires_at = parse_iso_datetime(record.expires_at)
    except ValueError:
        return ConnectionStatus.NEEDS_REAUTH
    if expires_at is None:
        return ConnectionStatus.NEEDS_REAUTH
    if expires_at > now + grace:
        return ConnectionStatus.CONNECTED
    return ConnectionStatus.NEEDS_REAUTH


class ConnectionHealthMonitor:
    """Reads stored credentials and reports whether a push may be attempted."""

    def __init__(self, engine, grace_seconds: Optional[int] = None):
        self.engine = engine
        if grace_seconds is None:
            grace_seconds = get_settings().reauth_grace_seconds
        self.grace = timedelta(seconds=grace_seconds)

    def latest_record(self, owner_id: str) -> Optional[ConnectionRecord]:
        with Session(self.engine) as s:
            return s.exec(
                select(ConnectionRecord)
                .where(ConnectionRecord.owner_id == owner_id)
                .order_by(ConnectionRecord.created_at.desc(), ConnectionRecord.id.desc())
            ).first()

    def check_connection(self, owner_id: str, now: Optional[datetime] = None) -> ConnectionStatus:
        """
        Args:
            owner_id: Owner of the OAuth grant.
            now: UTC-naive reference time; defaults to the current time.

        Returns:
            ConnectionStatus. Store failures are logged and reported as ERROR.
        """
        try:
            record = self.latest_record(owner_id)
        except Exception as exc:
            logger.error("Error checking connection for %s: %s", owner_id, exc)
            return ConnectionStatus.ERROR
        return evaluate_connection(record, now or utcnow(), self.grace)

    def is_connected(self, owner_id: str, now: Optional[datetime] = None) -> bool:
        return self.check_connection(owner_id, now) is ConnectionStatus.CONNECTED

    def connection_health(self, owner_id: str, now: Optional[datetime] = None) -> dict:
        """Operator-facing read model."""
        status = self.check_connection(owner_id, now)
        return {
            "isConnected": status is ConnectionStatus.CONNECTED,
            "status": status.value,
        }

    def disconnect(self, owner_id: str) -> int:
        """Delete every stored credential for owner_id. Returns rows deleted."""
        with Session(self.engine) as s:
            records = s.exec(
                select(ConnectionRecord).where(ConnectionRecord.owner_id == owner_id)
            ).all()
            for record in records:
                s.delete(record)
            s.commit()
            deleted = len(records)
        logger.info("Disconnected %s (%d credential row(s) removed)", owner_id, deleted)
        return deleted

    def connected_owner_ids(self, now: Optional[datetime] = None) -> list:
        """Distinct owners whose effective credential is currently usable."""
        with Session(self.engine) as s:
            owners = s.exec(select(ConnectionRecord.owner_id).distinct()).all()
        return [o for o in sorted(owners) if self.is_connected(o, now)]
